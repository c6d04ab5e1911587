"""
Error taxonomy for the Rulette card engine.

Every expected failure carries a stable string code (ErrorCode). Callers
branch on the code, never on message text, and map codes to user-facing
text with get_error_message().

Categories:
    InvalidInputError   - malformed deck type, missing selection, bad identifier
    NotFoundError       - deck, card, player or session absent
    StateConflictError  - card already removed, flip refused
    ExhaustionError     - deck empty
    PersistenceError    - durable store read/write failed

Persistence errors are logged at the core boundary and never fail an
operation whose local mutation already happened.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    # Invalid input
    INVALID_DECK_TYPE = "INVALID_DECK_TYPE"
    UNKNOWN_CARD_TYPE = "UNKNOWN_CARD_TYPE"
    MISSING_SELECTION = "MISSING_SELECTION"

    # Not found
    DECK_NOT_FOUND = "DECK_NOT_FOUND"
    DISCARD_PILE_MISSING = "DISCARD_PILE_MISSING"
    CARD_NOT_FOUND = "CARD_NOT_FOUND"
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"
    FROM_PLAYER_NOT_FOUND = "FROM_PLAYER_NOT_FOUND"
    TO_PLAYER_NOT_FOUND = "TO_PLAYER_NOT_FOUND"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PROMPT_NOT_FOUND = "PROMPT_NOT_FOUND"

    # State conflict
    NO_RULE_TEXT = "NO_RULE_TEXT"
    NO_MODIFIER_TEXT = "NO_MODIFIER_TEXT"
    CARD_ALREADY_REMOVED = "CARD_ALREADY_REMOVED"
    FLIP_FAILED = "FLIP_FAILED"
    DRAW_RESTRICTED = "DRAW_RESTRICTED"
    NOT_REFEREE = "NOT_REFEREE"

    # Exhaustion
    DECK_EMPTY = "DECK_EMPTY"

    # Persistence
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


class CardError(Exception):
    """
    Base class for all engine errors.

    Attributes:
        code: Stable error code.
        message: Developer-facing message (not for branching).
        details: Extra context for logs.
    """

    default_code = ErrorCode.INVALID_DECK_TYPE

    def __init__(
        self,
        message: str = "",
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
    ):
        self.code = code or self.default_code
        self.message = message or get_error_message(self.code)
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code.value}] {self.message} | Details: {self.details}"
        return f"[{self.code.value}] {self.message}"


class InvalidInputError(CardError):
    """Malformed input: bad deck type, missing selection, unknown card type."""
    default_code = ErrorCode.INVALID_DECK_TYPE


class NotFoundError(CardError):
    """A deck, card, player or session does not exist."""
    default_code = ErrorCode.CARD_NOT_FOUND


class StateConflictError(CardError):
    """The requested transition is not allowed from the current state."""
    default_code = ErrorCode.FLIP_FAILED


class ExhaustionError(CardError):
    """A resource ran out."""
    default_code = ErrorCode.DECK_EMPTY


class PersistenceError(CardError):
    """The durable store failed to read or write."""
    default_code = ErrorCode.PERSISTENCE_FAILURE


# -----------------------------------------------------------------------------
# Deck errors
# -----------------------------------------------------------------------------

class InvalidDeckTypeError(InvalidInputError):
    default_code = ErrorCode.INVALID_DECK_TYPE


class DeckNotFoundError(NotFoundError):
    default_code = ErrorCode.DECK_NOT_FOUND

    def __init__(self, deck_type: str, available: Optional[list[str]] = None):
        available = available or []
        super().__init__(
            f'Deck type "{deck_type}" does not exist. Available decks: {", ".join(available)}',
            details={"deck_type": deck_type, "available": available},
        )
        self.deck_type = deck_type


class DiscardPileMissingError(NotFoundError):
    default_code = ErrorCode.DISCARD_PILE_MISSING

    def __init__(self, deck_type: str):
        super().__init__(
            f"Discard pile for {deck_type} does not exist",
            details={"deck_type": deck_type},
        )
        self.deck_type = deck_type


class DeckEmptyError(ExhaustionError):
    default_code = ErrorCode.DECK_EMPTY

    def __init__(self, deck_type: str):
        super().__init__(
            f'No cards left in deck "{deck_type}"',
            details={"deck_type": deck_type},
        )
        self.deck_type = deck_type


# =============================================================================
# User-facing messages
# =============================================================================

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."

ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_DECK_TYPE: "That deck could not be identified.",
    ErrorCode.UNKNOWN_CARD_TYPE: "This card type is not supported.",
    ErrorCode.MISSING_SELECTION: "Choose a player and a card first.",
    ErrorCode.DECK_NOT_FOUND: "That deck does not exist.",
    ErrorCode.DISCARD_PILE_MISSING: "That deck has no discard pile.",
    ErrorCode.CARD_NOT_FOUND: "That card could not be found.",
    ErrorCode.TARGET_NOT_FOUND: "The selected player could not be found.",
    ErrorCode.FROM_PLAYER_NOT_FOUND: "The player giving the card could not be found.",
    ErrorCode.TO_PLAYER_NOT_FOUND: "The player receiving the card could not be found.",
    ErrorCode.PLAYER_NOT_FOUND: "That player could not be found.",
    ErrorCode.SESSION_NOT_FOUND: "That game session could not be found.",
    ErrorCode.PROMPT_NOT_FOUND: "There is no prompt waiting to be judged.",
    ErrorCode.NO_RULE_TEXT: "This rule card has no text on its active side.",
    ErrorCode.NO_MODIFIER_TEXT: "This modifier card has no text on its active side.",
    ErrorCode.CARD_ALREADY_REMOVED: "That card has already been removed.",
    ErrorCode.FLIP_FAILED: "This card cannot be flipped.",
    ErrorCode.DRAW_RESTRICTED: "Drawing from this deck is currently restricted.",
    ErrorCode.NOT_REFEREE: "Only the referee can do that.",
    ErrorCode.DECK_EMPTY: "The deck is empty. No more cards available.",
    ErrorCode.PERSISTENCE_FAILURE: "Your change was saved locally but could not be synced.",
}


def get_error_message(code) -> str:
    """
    Map an error code to a human-readable message.

    Args:
        code: ErrorCode or its string value. Unknown codes are allowed.

    Returns:
        User-facing message, or a generic message for unknown codes.
    """
    try:
        return ERROR_MESSAGES.get(ErrorCode(code), GENERIC_ERROR_MESSAGE)
    except ValueError:
        return GENERIC_ERROR_MESSAGE
