"""
Card entities for Rulette.

A Card has a stable identity (id, type, texts) and mutable display state
(current side, flipped flag, owner). Cards arrive from three places:

    - Static definitions (the cards CSV or dicts passed to CardManager)
    - Stored records read back from the durable store
    - Dynamic creation (clones, the referee card)

All three go through Card.from_record(), so the rest of the engine only ever
sees Card instances. Card.to_record() and Card.to_rule_record() are the way
back out.

Flip state machine:
    FRONT <-> BACK, toggles indefinitely. is_flipped records "has ever been
    flipped" and never reverts to False.
"""

import csv
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from constants import DECK_TYPE_BY_CARD_TYPE, REFEREE_CARD_NAME, REFEREE_CARD_TEXT

logger = logging.getLogger(__name__)


class CardType(str, Enum):
    """All card kinds in the game."""

    RULE = "rule"
    MODIFIER = "modifier"
    PROMPT = "prompt"
    CLONE = "clone"
    FLIP = "flip"
    SWAP = "swap"
    REFEREE = "referee"

    @classmethod
    def parse(cls, value: Union[str, "CardType"]) -> "CardType":
        """
        Resolve a card type case-insensitively.

        Raises:
            ValueError: If the value names no known card type.
        """
        if isinstance(value, CardType):
            return value
        return cls(str(value).strip().lower())


class CardSide(str, Enum):
    """Which side of a card is showing."""

    FRONT = "front"
    BACK = "back"


# Legacy record fields accepted as synonyms, first match wins
FRONT_TEXT_FIELDS = ("frontText", "frontRule", "sideA", "front_text")
BACK_TEXT_FIELDS = ("backText", "backRule", "sideB", "back_text")


def generate_card_id(prefix: str = "card") -> str:
    """Generate a globally unique card id."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _first_present(record: dict, keys: tuple) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return None


@dataclass
class Card:
    """
    A single card instance.

    Attributes:
        type: Card kind (rule, modifier, prompt, clone, flip, swap, referee).
        front_text: Text on the front side.
        back_text: Text on the back side (None for one-sided cards).
        name: Optional display name.
        question: Optional question text (prompt cards).
        id: Unique identifier, also unique across clones.
        current_side: Side currently showing.
        is_flipped: True once the card has been flipped at least once.
        owner: Player id of the owner, or None while in a deck.
        is_clone: Whether this card was cloned from another card.
        source_card_id: Id of the card this clone was made from.
        source_owner_id: Owner of the source card at clone time.
    """

    type: CardType
    front_text: Optional[str] = None
    back_text: Optional[str] = None
    name: Optional[str] = None
    question: Optional[str] = None
    id: str = field(default_factory=generate_card_id)
    current_side: CardSide = CardSide.FRONT
    is_flipped: bool = False
    owner: Optional[str] = None
    is_clone: bool = False
    source_card_id: Optional[str] = None
    source_owner_id: Optional[str] = None

    def __post_init__(self):
        self.type = CardType.parse(self.type)
        self.current_side = CardSide(self.current_side)

    # -------------------------------------------------------------------------
    # Side resolution
    # -------------------------------------------------------------------------

    def get_current_text(self) -> Optional[str]:
        """Text of the side currently showing."""
        if self.current_side == CardSide.FRONT:
            return self.front_text
        return self.back_text

    def get_current_rule(self) -> Optional[str]:
        """Alias of get_current_text() for rule and modifier cards."""
        return self.get_current_text()

    @property
    def has_back(self) -> bool:
        return bool(self.back_text)

    def can_flip(self) -> bool:
        """Prompt cards never flip, and a card needs back text to flip."""
        return self.type != CardType.PROMPT and self.has_back

    def flip(self) -> bool:
        """
        Toggle the showing side.

        Returns:
            True if flipped, False if the card cannot be flipped.
        """
        if self.type == CardType.PROMPT:
            logger.warning(f"Cannot flip prompt card {self.id}")
            return False
        if not self.has_back:
            logger.warning(f"Cannot flip card {self.id} with no back side")
            return False

        self.current_side = CardSide.BACK if self.current_side == CardSide.FRONT else CardSide.FRONT
        self.is_flipped = True
        return True

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def set_owner(self, player_id: Optional[str]) -> None:
        self.owner = player_id

    def make_clone(self, new_owner_id: str) -> "Card":
        """
        Create a clone owned by another player.

        The clone copies texts and display state, gets a fresh id, and keeps
        a reference to this card and its owner.

        Args:
            new_owner_id: Player who will own the clone.

        Returns:
            The new Card.
        """
        return Card(
            type=self.type,
            front_text=self.front_text,
            back_text=self.back_text,
            name=self.name,
            question=self.question,
            id=generate_card_id("clone"),
            current_side=self.current_side,
            is_flipped=self.is_flipped,
            owner=new_owner_id,
            is_clone=True,
            source_card_id=self.id,
            source_owner_id=self.owner,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.get_current_text() or self.front_text or self.id

    def display_info(self) -> dict:
        """Summary used by UI layers to render the card."""
        return {
            "id": self.id,
            "type": self.type.value,
            "text": self.get_current_text(),
            "side": self.current_side.value,
            "is_flipped": self.is_flipped,
            "has_flip_side": self.has_back,
        }

    # -------------------------------------------------------------------------
    # Record boundary
    # -------------------------------------------------------------------------

    def to_record(self) -> dict:
        """
        Convert card to a plain record for storage.

        Only fields with a value are included; the durable store rejects
        undefined values.
        """
        record = {
            "id": self.id,
            "type": self.type.value,
            "currentSide": self.current_side.value,
            "isFlipped": self.is_flipped,
        }
        optional = {
            "name": self.name,
            "frontText": self.front_text,
            "backText": self.back_text,
            "question": self.question,
            "owner": self.owner,
            "sourceCardId": self.source_card_id,
            "sourceOwnerId": self.source_owner_id,
        }
        record.update({k: v for k, v in optional.items() if v is not None})
        if self.is_clone:
            record["isClone"] = True
        return record

    def to_rule_record(self) -> dict:
        """
        Convert card to the compact record stored in a player's rule cards.

        Contains id, type and isFlipped, plus whichever of name, frontRule,
        backRule, question and currentSide are present.
        """
        record = {
            "id": self.id,
            "type": self.type.value,
            "isFlipped": bool(self.is_flipped),
        }
        optional = {
            "name": self.name,
            "frontRule": self.front_text,
            "backRule": self.back_text,
            "question": self.question,
            "currentSide": self.current_side.value,
        }
        record.update({k: v for k, v in optional.items() if v is not None})
        return record

    @classmethod
    def from_record(cls, record: Union[dict, "Card"]) -> "Card":
        """
        Build a Card from a stored or static record.

        Accepts legacy field names (frontRule/sideA, backRule/sideB, face)
        as synonyms. Records without an id get a fresh one.

        Raises:
            ValueError: If the record has no valid type.
        """
        if isinstance(record, Card):
            return record

        side = record.get("currentSide") or record.get("face") or record.get("current_side")
        kwargs = {
            "type": CardType.parse(record.get("type", "")),
            "front_text": _first_present(record, FRONT_TEXT_FIELDS),
            "back_text": _first_present(record, BACK_TEXT_FIELDS),
            "name": record.get("name"),
            "question": record.get("question"),
            "current_side": CardSide(side) if side else CardSide.FRONT,
            "is_flipped": bool(record.get("isFlipped", record.get("is_flipped", False))),
            "owner": record.get("owner"),
            "is_clone": bool(record.get("isClone", record.get("is_clone", False))),
            "source_card_id": record.get("sourceCardId") or record.get("originalCardId"),
            "source_owner_id": record.get("sourceOwnerId") or record.get("clonedFromPlayer"),
        }
        if record.get("id"):
            kwargs["id"] = record["id"]
        return cls(**kwargs)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.display_name}"


def create_referee_card(owner: Optional[str] = None) -> Card:
    """Build the special referee card."""
    return Card(
        type=CardType.REFEREE,
        name=REFEREE_CARD_NAME,
        front_text=REFEREE_CARD_TEXT,
        id=generate_card_id("referee"),
        owner=owner,
    )


def is_referee_card(card: Card) -> bool:
    """Referee cards are recognized by type or by their fixed name."""
    return card.type == CardType.REFEREE or card.name == REFEREE_CARD_NAME


# =============================================================================
# Card data loading
# =============================================================================

DECK_CARD_TYPES = (CardType.RULE, CardType.PROMPT, CardType.MODIFIER,
                   CardType.CLONE, CardType.FLIP, CardType.SWAP)


def parse_cards_csv(lines) -> list[Card]:
    """
    Parse card rows from CSV text lines.

    The first row is a header. Columns: type, front text, optional back text.
    Quoted fields may contain commas. Rows with unknown types are skipped.

    Args:
        lines: Iterable of CSV lines (including the header).

    Returns:
        Parsed cards, in file order.
    """
    rows = csv.reader(line for line in lines if line.strip())
    next(rows, None)  # header

    cards = []
    for row in rows:
        if len(row) < 2:
            continue
        raw_type = row[0].strip().lower()
        try:
            card_type = CardType.parse(raw_type)
        except ValueError:
            card_type = None
        if card_type not in DECK_CARD_TYPES:
            logger.warning(f"Unknown card type: {raw_type}, skipping card")
            continue

        back_text = row[2].strip() if len(row) > 2 and row[2].strip() else None
        cards.append(Card(type=card_type, front_text=row[1].strip(), back_text=back_text))

    logger.info(f"Parsed {len(cards)} cards from CSV")
    return cards


def group_by_deck_type(cards: list[Card]) -> dict[str, list[Card]]:
    """
    Distribute cards across the six wheel deck types.

    Every deck type is present in the result, possibly empty.
    """
    decks: dict[str, list[Card]] = {deck_type: [] for deck_type in DECK_TYPE_BY_CARD_TYPE.values()}
    for card in cards:
        decks[DECK_TYPE_BY_CARD_TYPE[card.type.value]].append(card)
    return decks


def load_card_definitions(path: Union[str, Path]) -> dict[str, list[Card]]:
    """
    Load the cards CSV and group it by deck type.

    Args:
        path: Path to the CSV file.

    Returns:
        Mapping of deck type to cards, ready for CardManager.
    """
    with open(path, encoding="utf-8", newline="") as f:
        cards = parse_cards_csv(f.read().splitlines())

    decks = group_by_deck_type(cards)
    for deck_type, deck_cards in decks.items():
        logger.debug(f"{deck_type}: {len(deck_cards)} cards")
    return decks
