"""
Logging setup for the Rulette card engine.

Two output formats share one notion of context:
- JSONFormatter, one JSON object per line, for production log shipping
- DevelopmentFormatter, colored single lines for a terminal

Context (session, player, card, deck) comes from two places. A caller can
bind the session and player for a block of work with log_context(); a
single call can pass them as extras, usually through ContextLogger. Extras
win when both are present.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
player_id_var: ContextVar[Optional[str]] = ContextVar("player_id", default=None)

# Record attributes copied into the output, with their short terminal labels
CONTEXT_FIELDS = {
    "session_id": "session",
    "player_id": "player",
    "card_id": "card",
    "deck_type": "deck",
}


@contextmanager
def log_context(session_id: Optional[str] = None, player_id: Optional[str] = None) -> Iterator[None]:
    """
    Bind a session and player to every log line emitted inside the block.

    Usage:
        with log_context(session_id="sess-1a2b3c4"):
            await manager.draw_card(...)
    """
    tokens = []
    if session_id is not None:
        tokens.append((session_id_var, session_id_var.set(session_id)))
    if player_id is not None:
        tokens.append((player_id_var, player_id_var.set(player_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def collect_context(record: logging.LogRecord) -> dict:
    """Context for a record: bound context variables, then record extras."""
    context = {}
    if session_id_var.get():
        context["session_id"] = session_id_var.get()
    if player_id_var.get():
        context["player_id"] = player_id_var.get()
    for key in CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with context keys at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **collect_context(record),
        }

        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Colored single-line output for local runs.

    Example:
        14:02:11.093 INFO     game [session=sess-1a2b3c4, player=alice] - Player Alice joined
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        parts = [f"{CONTEXT_FIELDS[key]}={value}" for key, value in collect_context(record).items()]
        context = f" [{', '.join(parts)}]" if parts else ""

        line = f"{timestamp} {color}{record.levelname:8}{reset} {record.name}{context} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Level name; unknown names fall back to INFO.
        environment: "production" selects JSON output.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if environment == "production" else DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for noisy in ("redis", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured: level={level}, environment={environment}")


class ContextLogger(logging.LoggerAdapter):
    """
    LoggerAdapter carrying fixed context into every call.

    Usage:
        log = get_logger(__name__).with_context(session_id=session_id)
        log.with_context(card_id=card.id).info("Card flipped")
    """

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        super().__init__(logger, extra or {})

    def with_context(self, **kwargs) -> "ContextLogger":
        """Return a new adapter with kwargs added to the context."""
        return ContextLogger(self.logger, {**self.extra, **kwargs})

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name))
