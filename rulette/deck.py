"""
Deck and discard pile management for Rulette.

CardManager owns one draw pile and one discard pile per deck type. Each deck
is shuffled once at construction with a Fisher-Yates permutation; after that
cards only move by draw, discard, put_back or an explicit reshuffle.

Conservation:
    For every deck type, cards in the deck + cards in the discard pile +
    cards held by players stays constant. Drawing never reads the discard
    pile; reshuffle_discard() is the explicit way to recycle it.

Replacement draws:
    draw_replacement_card() is for draws that replace a card a player just
    gave up. A short per-player memory (ReplacementGuard) keeps the same card
    id from coming back twice in a row.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from cards import Card
from constants import DECK_FALLBACK_ORDER, REPLACEMENT_MAX_ATTEMPTS, REPLACEMENT_MEMORY_SECONDS
from errors import (
    DeckEmptyError,
    DeckNotFoundError,
    DiscardPileMissingError,
    InvalidDeckTypeError,
)

logger = logging.getLogger(__name__)


@dataclass
class RecentCard:
    """A player's most recent replacement draw."""

    card_id: str
    drawn_at: float


class ReplacementGuard:
    """
    Per-player memory of the last replacement card.

    Entries older than memory_seconds are treated as absent.
    """

    def __init__(
        self,
        memory_seconds: float = REPLACEMENT_MEMORY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.memory_seconds = memory_seconds
        self.clock = clock
        self._recent: dict[str, RecentCard] = {}

    def is_repeat(self, player_id: str, card_id: str) -> bool:
        """True if card_id is the player's last replacement and still remembered."""
        recent = self._recent.get(player_id)
        if recent is None:
            return False
        if self.clock() - recent.drawn_at > self.memory_seconds:
            return False
        return recent.card_id == card_id

    def remember(self, player_id: str, card_id: str) -> None:
        self._recent[player_id] = RecentCard(card_id=card_id, drawn_at=self.clock())

    def recent_card_id(self, player_id: str) -> Optional[str]:
        recent = self._recent.get(player_id)
        return recent.card_id if recent else None

    def clear(self, player_id: Optional[str] = None) -> None:
        """Forget one player's record, or everyone's when player_id is None."""
        if player_id is None:
            self._recent.clear()
        else:
            self._recent.pop(player_id, None)


class CardManager:
    """
    Draw piles and discard piles keyed by deck type.

    Attributes:
        decks: Deck type -> cards, top of deck is the end of the list.
        discard_piles: Deck type -> discarded cards, append-only.
        replacement_guard: Memory used by draw_replacement_card().
    """

    def __init__(
        self,
        deck_definitions: dict[str, Iterable[Union[dict, Card]]],
        rng: Optional[random.Random] = None,
        replacement_guard: Optional[ReplacementGuard] = None,
    ) -> None:
        """
        Build and shuffle every deck.

        Args:
            deck_definitions: Deck type -> card records or Card instances.
            rng: Random source for shuffling (seeded in tests).
            replacement_guard: Custom guard (e.g. with a fake clock).
        """
        self.rng = rng or random.Random()
        self.replacement_guard = replacement_guard or ReplacementGuard()
        self.decks: dict[str, list[Card]] = {}
        self.discard_piles: dict[str, list[Card]] = {}

        for deck_type, definitions in deck_definitions.items():
            cards = [Card.from_record(definition) for definition in definitions]
            self._shuffle(cards)
            self.decks[deck_type] = cards
            self.discard_piles[deck_type] = []

    def _shuffle(self, cards: list[Card]) -> None:
        """Fisher-Yates shuffle in place."""
        for i in range(len(cards) - 1, 0, -1):
            j = self.rng.randint(0, i)
            cards[i], cards[j] = cards[j], cards[i]

    def _require_deck(self, deck_type: Optional[str]) -> list[Card]:
        if not deck_type:
            raise InvalidDeckTypeError("Cannot draw card: deck type is undefined or empty")
        if deck_type not in self.decks:
            logger.error(
                f'Attempted to draw from deck type "{deck_type}". '
                f"Available decks: {', '.join(self.decks)}"
            )
            raise DeckNotFoundError(deck_type, list(self.decks))
        return self.decks[deck_type]

    # -------------------------------------------------------------------------
    # Draw / discard
    # -------------------------------------------------------------------------

    def draw(self, deck_type: str) -> Card:
        """
        Remove and return the top card of a deck.

        Args:
            deck_type: Deck to draw from.

        Returns:
            The drawn Card.

        Raises:
            InvalidDeckTypeError: deck_type is empty or None.
            DeckNotFoundError: No such deck.
            DeckEmptyError: The deck has no cards.
        """
        deck = self._require_deck(deck_type)
        if not deck:
            raise DeckEmptyError(deck_type)

        card = deck.pop()
        logger.debug(f"Drew card {card.id} from {deck_type} ({len(deck)} left)")
        return card

    def discard(self, deck_type: str, card: Card) -> None:
        """
        Put a spent card on a discard pile.

        Raises:
            DiscardPileMissingError: No discard pile for deck_type.
        """
        if deck_type not in self.discard_piles:
            raise DiscardPileMissingError(deck_type)
        card.set_owner(None)
        self.discard_piles[deck_type].append(card)

    def put_back(self, deck_type: str, card: Card, shuffle: bool = False) -> None:
        """
        Return a card to the front (bottom) of its deck.

        Args:
            deck_type: Deck to return the card to.
            card: The card.
            shuffle: Reshuffle the whole deck afterwards.
        """
        deck = self._require_deck(deck_type)
        card.set_owner(None)
        deck.insert(0, card)
        if shuffle:
            self._shuffle(deck)

    def reshuffle_discard(self, deck_type: str) -> int:
        """
        Move a discard pile back into its deck and shuffle.

        Never called implicitly by draw().

        Returns:
            Number of cards recycled.
        """
        deck = self._require_deck(deck_type)
        pile = self.discard_piles[deck_type]
        moved = len(pile)
        if moved:
            deck.extend(pile)
            pile.clear()
            self._shuffle(deck)
            logger.info(f"Reshuffled {moved} discarded cards into {deck_type}")
        return moved

    def draw_with_fallback(self, deck_type: str) -> tuple[str, Card]:
        """
        Draw from deck_type, or from the closest non-empty alternative.

        Returns:
            (deck type actually drawn from, card).

        Raises:
            DeckEmptyError: The primary deck and every alternative are empty.
        """
        self._require_deck(deck_type)
        for candidate in [deck_type, *DECK_FALLBACK_ORDER.get(deck_type, [])]:
            if self.decks.get(candidate):
                if candidate != deck_type:
                    logger.info(f"Deck {deck_type} is empty, drawing from {candidate}")
                return candidate, self.draw(candidate)
        raise DeckEmptyError(deck_type)

    # -------------------------------------------------------------------------
    # Replacement draws
    # -------------------------------------------------------------------------

    def draw_replacement_card(
        self,
        deck_type: str,
        player_id: str,
        max_attempts: int = REPLACEMENT_MAX_ATTEMPTS,
    ) -> Card:
        """
        Draw a replacement card, avoiding the player's previous replacement.

        A repeat is put back at the front of the deck and the remaining cards
        are reshuffled before the next attempt. After max_attempts the last
        card drawn is accepted even if it repeats.

        Args:
            deck_type: Deck to draw from.
            player_id: Player receiving the card.
            max_attempts: Draw attempts before giving up on avoiding a repeat.

        Returns:
            The drawn Card.

        Raises:
            Any error from draw().
        """
        guard = self.replacement_guard
        attempts = max(1, max_attempts)
        card = None

        for attempt in range(1, attempts + 1):
            card = self.draw(deck_type)
            if not guard.is_repeat(player_id, card.id) or attempt == attempts:
                break

            logger.debug(
                f"Replacement draw {attempt}/{attempts} repeated {card.id} for {player_id}, retrying"
            )
            deck = self.decks[deck_type]
            self._shuffle(deck)
            deck.insert(0, card)

        if guard.is_repeat(player_id, card.id):
            logger.warning(f"Accepting repeated replacement card {card.id} for {player_id}")

        guard.remember(player_id, card.id)
        return card

    def clear_recent_replacement_cards(self, player_id: Optional[str] = None) -> None:
        self.replacement_guard.clear(player_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_deck_types(self) -> list[str]:
        return list(self.decks)

    def has_deck(self, deck_type: Optional[str]) -> bool:
        return bool(deck_type) and deck_type in self.decks

    def remaining(self, deck_type: str) -> int:
        """Cards left in a deck (0 for unknown decks)."""
        return len(self.decks.get(deck_type, []))

    def discarded(self, deck_type: str) -> int:
        """Cards in a discard pile (0 for unknown decks)."""
        return len(self.discard_piles.get(deck_type, []))

    def is_exhausted(self, deck_type: str) -> bool:
        """True when both the deck and its discard pile are empty."""
        return self.remaining(deck_type) == 0 and self.discarded(deck_type) == 0

    def __str__(self) -> str:
        counts = ", ".join(
            f"{deck_type}={self.remaining(deck_type)}/{self.discarded(deck_type)}"
            for deck_type in self.decks
        )
        return f"CardManager({counts})"
