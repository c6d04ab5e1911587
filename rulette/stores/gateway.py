"""
Persistence gateway interface.

The engine never talks to the durable store directly. It calls the
operations below and treats every call as best-effort: local state has
already been mutated when a call is issued, and a failure is logged rather
than rolled back.

StateCache (stores/state_cache.py) is the Redis implementation. Tests pass
an AsyncMock with the same methods.
"""

import logging
from typing import Any, Optional, Protocol

from cards import Card

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Durable store operations the engine depends on."""

    async def persist_hand(
        self,
        session_id: str,
        player_id: str,
        hand: list[Card],
        version: Optional[int] = None,
    ) -> None:
        """Upsert a player's hand."""

    async def persist_rule_cards(
        self,
        player_id: str,
        rule_cards: list[Card],
        version: Optional[int] = None,
    ) -> None:
        """Upsert a player's active rule cards (as compact rule records)."""

    async def persist_referee_card(self, session_id: str, referee_player_id: str) -> None:
        """Point the session's referee field at a player."""

    async def fetch_active_players(self, session_id: str) -> list[dict[str, Any]]:
        """Read every player record in a session, each with a status field."""

    async def broadcast_rule_card_update(
        self,
        session_id: str,
        player_id: str,
        rule_card: Card,
        version: Optional[int] = None,
    ) -> None:
        """Attach a rule_card_update event to the session."""

    async def save_session(self, session_record: dict) -> None:
        """Create or overwrite a session document."""

    async def save_player(self, session_id: str, player_record: dict) -> None:
        """Create or overwrite a player document and link it to a session."""

    async def update_player_status(self, player_id: str, status: str) -> None:
        """Update a player's presence status."""


async def persist_safely(
    gateway: Optional[PersistenceGateway],
    operation: str,
    *args: Any,
    **kwargs: Any,
) -> bool:
    """
    Call a gateway operation, logging instead of raising on failure.

    Args:
        gateway: The gateway, or None when running without a durable store.
        operation: Gateway method name, e.g. "persist_hand".
        *args: Positional arguments for the operation.
        **kwargs: Keyword arguments for the operation.

    Returns:
        True if the call completed, False if skipped or failed.
    """
    if gateway is None:
        return False
    try:
        await getattr(gateway, operation)(*args, **kwargs)
        return True
    except Exception as e:
        logger.error(f"Persistence call {operation} failed: {e}", exc_info=True)
        return False
