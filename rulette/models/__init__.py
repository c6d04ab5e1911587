"""Models package for Rulette session state."""

from .events import EventType, SessionEvent, rule_card_update, card_transferred
from .results import ActionResult, DrawCheck, RestrictionCheck
from .state import CardLocation, Player, PlayerStatus, PromptChallenge, Session, SessionStatus

__all__ = [
    "EventType",
    "SessionEvent",
    "rule_card_update",
    "card_transferred",
    "ActionResult",
    "DrawCheck",
    "RestrictionCheck",
    "CardLocation",
    "Player",
    "PlayerStatus",
    "PromptChallenge",
    "Session",
    "SessionStatus",
]
