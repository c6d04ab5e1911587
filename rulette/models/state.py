"""
In-memory session and player state.

The engine keeps one authoritative copy of this state per session and
mutates it synchronously before any durable write is issued. Each player
carries a hand_version counter that increments on every hand or rule-card
change, so listeners can tell a stale snapshot from a fresh one without
relying on timing.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cards import Card


class PlayerStatus(str, Enum):
    """Presence of a player in a session."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SessionStatus(str, Enum):
    LOBBY = "lobby"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class CardLocation(str, Enum):
    """Where a player keeps a card."""

    HAND = "hand"
    RULE_CARDS = "ruleCards"


@dataclass
class Player:
    """
    A player's cards and presence.

    hand and rule_cards are separate sequences; an active rule card is
    usually in both.

    Attributes:
        player_id: Unique player identifier.
        display_name: Name shown to other players.
        hand: Cards the player owns.
        rule_cards: Active rule/modifier/clone/referee cards.
        status: Whether the player is active in the session.
        hand_version: Incremented on every hand or rule-card mutation.
    """

    player_id: str
    display_name: str = ""
    hand: list[Card] = field(default_factory=list)
    rule_cards: list[Card] = field(default_factory=list)
    status: PlayerStatus = PlayerStatus.ACTIVE
    hand_version: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == PlayerStatus.ACTIVE

    def bump_version(self) -> int:
        self.hand_version += 1
        return self.hand_version

    def find_in_hand(self, card_id: str) -> Optional[Card]:
        return next((c for c in self.hand if c.id == card_id), None)

    def find_in_rule_cards(self, card_id: str) -> Optional[Card]:
        return next((c for c in self.rule_cards if c.id == card_id), None)

    def find_card(self, card_id: str) -> tuple[Optional[Card], Optional[CardLocation]]:
        """
        Locate a card, searching the hand first and then the rule cards.

        Returns:
            (card, location), or (None, None) if the player doesn't hold it.
        """
        card = self.find_in_hand(card_id)
        if card is not None:
            return card, CardLocation.HAND
        card = self.find_in_rule_cards(card_id)
        if card is not None:
            return card, CardLocation.RULE_CARDS
        return None, None

    def collection(self, location: CardLocation) -> list[Card]:
        return self.hand if location == CardLocation.HAND else self.rule_cards

    def add_card(self, card: Card, location: CardLocation = CardLocation.HAND) -> bool:
        """
        Add a card unless one with the same id is already there.

        Returns:
            True if the card was added.
        """
        cards = self.collection(location)
        if any(c.id == card.id for c in cards):
            return False
        cards.append(card)
        self.bump_version()
        return True

    def remove_card(self, card_id: str, location: CardLocation) -> Optional[Card]:
        """Remove a card by id from one collection."""
        cards = self.collection(location)
        for i, card in enumerate(cards):
            if card.id == card_id:
                self.bump_version()
                return cards.pop(i)
        return None

    def to_dict(self) -> dict:
        """Plain record for the durable store."""
        return {
            "playerId": self.player_id,
            "displayName": self.display_name,
            "status": self.status.value,
            "hand": [card.to_record() for card in self.hand],
            "ruleCards": [card.to_rule_record() for card in self.rule_cards],
            "handVersion": self.hand_version,
        }


@dataclass
class Session:
    """
    A game session.

    Attributes:
        session_id: Unique session identifier.
        host_id: Player who created the session.
        players: Player ids in join order.
        referee: Player id currently holding the referee card.
        status: Lobby / in progress / completed.
        referee_card: The referee Card currently in play.
    """

    session_id: str
    host_id: Optional[str] = None
    players: list[str] = field(default_factory=list)
    referee: Optional[str] = None
    status: SessionStatus = SessionStatus.LOBBY
    referee_card: Optional[Card] = None

    def add_player(self, player_id: str) -> bool:
        if player_id in self.players:
            return False
        self.players.append(player_id)
        return True

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "hostId": self.host_id,
            "players": list(self.players),
            "referee": self.referee,
            "status": self.status.value,
        }


@dataclass
class PromptChallenge:
    """
    A prompt card waiting for the referee's judgment.

    Transient: kept in memory only. time_limit is advisory; nothing in the
    engine enforces it. status moves from "active" to "completed" or
    "failed" when the referee judges it.
    """

    session_id: str
    player_id: str
    prompt_card: Card
    status: str = "active"
    start_time: float = field(default_factory=lambda: time.time() * 1000)
    time_limit: int = 60000
    end_time: Optional[float] = None
    referee_judgment: Optional[str] = None

    def is_expired(self, now_ms: Optional[float] = None) -> bool:
        now_ms = time.time() * 1000 if now_ms is None else now_ms
        return now_ms - self.start_time > self.time_limit

    def resolve(self, successful: bool, now_ms: Optional[float] = None) -> None:
        """Record the referee's judgment and close the challenge."""
        self.status = "completed" if successful else "failed"
        self.referee_judgment = "successful" if successful else "unsuccessful"
        self.end_time = time.time() * 1000 if now_ms is None else now_ms

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "playerId": self.player_id,
            "promptCard": self.prompt_card.to_record(),
            "status": self.status,
            "startTime": self.start_time,
            "timeLimit": self.time_limit,
            "endTime": self.end_time,
            "refereeJudgment": self.referee_judgment,
        }
