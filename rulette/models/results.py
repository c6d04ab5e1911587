"""
Structured results returned by engine operations.

Expected failures never escape as raw exceptions: they come back as an
ActionResult with success=False and a stable ErrorCode. Callers branch on
result.success and result.error, and use result.user_message for display.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from errors import CardError, ErrorCode, get_error_message


@dataclass
class ActionResult:
    """
    Outcome of a player action.

    Attributes:
        success: Whether the action was applied.
        error: Error code when success is False.
        message: Developer-facing detail (logs, debugging).
        data: Action-specific payload (card, effect, transfer record...).
    """

    success: bool
    error: Optional[ErrorCode] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ErrorCode, message: str = "", **data: Any) -> "ActionResult":
        return cls(success=False, error=error, message=message or get_error_message(error), data=data)

    @classmethod
    def from_error(cls, exc: CardError, **data: Any) -> "ActionResult":
        return cls(success=False, error=exc.code, message=exc.message, data={**exc.details, **data})

    @property
    def user_message(self) -> str:
        """Human-readable message for the UI."""
        if self.success:
            return ""
        return get_error_message(self.error)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> dict:
        """Serialize for clients. Cards in the payload are converted to records."""
        result: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error.value
            result["message"] = self.message
        for key, value in self.data.items():
            result[key] = value.to_record() if hasattr(value, "to_record") else value
        return result


@dataclass
class DrawCheck:
    """Answer to "may this player draw from this deck right now?"."""

    can_draw: bool
    reason: Optional[str] = None
    restrictions: list = field(default_factory=list)
    error: Optional[ErrorCode] = None


@dataclass
class RestrictionCheck:
    """Answer from an injected rule-restriction evaluator."""

    allowed: bool
    reason: Optional[str] = None
    restrictions: list = field(default_factory=list)
