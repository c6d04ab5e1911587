"""
Event records attached to a session.

Events are small, immutable records written next to the session so other
clients' listeners can react (fan-out itself happens outside the engine).
They carry the acting player's hand_version so a listener can ignore events
older than the snapshot it already has.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """All event types written to a session."""

    RULE_CARD_UPDATE = "rule_card_update"
    CARD_TRANSFERRED = "card_transferred"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionEvent:
    """
    A record of something that happened in a session.

    Attributes:
        event_type: The type of event (from EventType enum).
        session_id: Session this event belongs to.
        player_id: Player the event is about.
        timestamp: Milliseconds since the epoch.
        version: Player's hand_version when the event was built.
        data: Event-specific payload.
    """

    event_type: EventType
    session_id: str
    player_id: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    version: Optional[int] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to the flat record shape stored on the session."""
        record = {
            "type": self.event_type.value,
            "sessionId": self.session_id,
            "playerId": self.player_id,
            **self.data,
            "timestamp": self.timestamp,
        }
        if self.version is not None:
            record["version"] = self.version
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "SessionEvent":
        """Deserialize event from its stored record."""
        reserved = {"type", "sessionId", "playerId", "timestamp", "version"}
        return cls(
            event_type=EventType(d["type"]),
            session_id=d["sessionId"],
            player_id=d.get("playerId"),
            timestamp=d.get("timestamp", 0),
            version=d.get("version"),
            data={k: v for k, v in d.items() if k not in reserved},
        )

    @classmethod
    def from_json(cls, json_str: str) -> "SessionEvent":
        return cls.from_dict(json.loads(json_str))


# =============================================================================
# Event Factory Functions
# =============================================================================


def rule_card_update(
    session_id: str,
    player_id: str,
    rule_card,
    version: Optional[int] = None,
) -> SessionEvent:
    """
    Create a RuleCardUpdate event.

    Emitted when a player gains or changes an active rule card. Only a
    lightweight summary of the card is included, with safe defaults so the
    record never holds empty values.

    Args:
        session_id: Session UUID.
        player_id: Player whose rule cards changed.
        rule_card: The Card that changed.
        version: Player's hand_version after the change.
    """
    return SessionEvent(
        event_type=EventType.RULE_CARD_UPDATE,
        session_id=session_id,
        player_id=player_id,
        version=version,
        data={
            "ruleCard": {
                "id": rule_card.id or "unknown-id",
                "name": rule_card.name or rule_card.get_current_text() or "Unknown Rule Card",
                "type": rule_card.type.value if rule_card.type else "rule",
                "isFlipped": bool(rule_card.is_flipped),
            },
        },
    )


def card_transferred(
    session_id: str,
    from_player_id: str,
    to_player_id: str,
    card,
    reason: str = "",
    context: Optional[dict] = None,
) -> SessionEvent:
    """
    Create a CardTransferred event.

    Emitted when a card moves from one player's hand to another's.

    Args:
        session_id: Session UUID.
        from_player_id: Player giving the card.
        to_player_id: Player receiving the card.
        card: The Card moved.
        reason: Why the card moved (swap, callout penalty, ...).
        context: Free-form caller context.
    """
    return SessionEvent(
        event_type=EventType.CARD_TRANSFERRED,
        session_id=session_id,
        player_id=from_player_id,
        data={
            "fromPlayerId": from_player_id,
            "toPlayerId": to_player_id,
            "cardId": card.id,
            "cardType": card.type.value,
            "cardName": card.display_name,
            "reason": reason,
            "context": context or {},
        },
    )
