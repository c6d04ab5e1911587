"""
Referee rotation.

Exactly one active player in a session holds the referee card. Assigning
the referee always re-reads the player list from the durable store, since
the local list may include players who have since left.
"""

import logging
import math
import random
from typing import Optional, Union

from cards import Card, CardType, create_referee_card, is_referee_card
from constants import PLAYER_ID_FIELDS
from models.state import CardLocation, Player, PlayerStatus, Session
from stores.gateway import PersistenceGateway, persist_safely

logger = logging.getLogger(__name__)


def resolve_player_id(record: dict) -> Optional[str]:
    """Pick the player id out of a fetched player record."""
    for key in PLAYER_ID_FIELDS:
        if record.get(key):
            return record[key]
    return None


def coerce_referee_card(referee_card: Union[Card, dict, None]) -> Card:
    """
    Turn whatever was handed in as the referee card into a Card.

    None gives a fresh default referee card. Records without a type are
    taken to be referee cards.

    Raises:
        ValueError: If the record names a type that does not exist.
    """
    if referee_card is None:
        return create_referee_card()
    if isinstance(referee_card, dict) and not referee_card.get("type"):
        referee_card = {**referee_card, "type": CardType.REFEREE.value}
    return Card.from_record(referee_card)


class RefereeRotation:
    """
    Picks a random active player as referee and hands them the referee card.

    Attributes:
        sessions: Session id -> Session, shared with the GameManager.
        players: Player id -> Player, shared with the GameManager.
        gateway: Durable store used to fetch players and persist the result.
        rng: Random source; tests pass a stub.
    """

    def __init__(
        self,
        sessions: dict[str, Session],
        players: dict[str, Player],
        gateway: Optional[PersistenceGateway] = None,
        rng: Optional[random.Random] = None,
    ):
        self.sessions = sessions
        self.players = players
        self.gateway = gateway
        self.rng = rng or random.Random()

    async def _fetch_active_players(self, session_id: str) -> Optional[list[dict]]:
        if self.gateway is None:
            # In-memory sessions: the local tables are the only copy
            session = self.sessions[session_id]
            return [
                {"id": pid, **self.players[pid].to_dict()}
                for pid in session.players
                if pid in self.players and self.players[pid].is_active
            ]
        try:
            records = await self.gateway.fetch_active_players(session_id)
        except Exception as e:
            logger.error(f"Failed to fetch players for {session_id}: {e}", exc_info=True)
            return None
        return [r for r in records if r.get("status") == PlayerStatus.ACTIVE.value]

    def _strip_referee_cards(self, player_id: str) -> int:
        player = self.players.get(player_id)
        if player is None:
            logger.warning(f"Previous referee {player_id} is not a local player")
            return 0

        referee_cards = [c for c in player.rule_cards if is_referee_card(c)]
        for card in referee_cards:
            player.remove_card(card.id, CardLocation.RULE_CARDS)
            card.set_owner(None)

        if not referee_cards:
            logger.info(f"No referee card found on previous referee {player_id}")
        return len(referee_cards)

    async def assign_referee_card(
        self,
        session_id: str,
        referee_card: Union[Card, dict, None] = None,
    ) -> Optional[str]:
        """
        Give the referee card to a randomly chosen active player.

        Args:
            session_id: Session to assign a referee in.
            referee_card: The card to hand over; a default referee card is
                created when None. Nothing changes if it cannot be read.

        Returns:
            The new referee's player id, or None if no one could be chosen.
            session.referee is left untouched on None.
        """
        session = self.sessions.get(session_id)
        if session is None:
            logger.warning(f"No session found for {session_id}")
            return None

        try:
            card = coerce_referee_card(referee_card)
        except ValueError as e:
            logger.error(f"Invalid referee card for session {session_id}: {e}")
            return None

        active = await self._fetch_active_players(session_id)
        if not active:
            logger.warning(f"No active players in session {session_id} to assign referee card")
            return None

        index = math.floor(self.rng.random() * len(active))
        chosen = active[min(index, len(active) - 1)]
        referee_id = resolve_player_id(chosen)
        if referee_id is None:
            logger.error(f"Selected player has no id field: {sorted(chosen)}")
            return None

        if session.referee:
            self._strip_referee_cards(session.referee)

        card.set_owner(referee_id)

        player = self.players.get(referee_id)
        if player is None:
            player = Player(
                player_id=referee_id,
                display_name=chosen.get("displayName", ""),
            )
            self.players[referee_id] = player
            session.add_player(referee_id)
        player.add_card(card, CardLocation.RULE_CARDS)

        session.referee = referee_id
        session.referee_card = card

        await persist_safely(self.gateway, "persist_referee_card", session_id, referee_id)
        await persist_safely(
            self.gateway, "persist_rule_cards",
            referee_id, player.rule_cards, version=player.hand_version,
        )

        logger.info(f"Referee card assigned to {referee_id} in session {session_id}")
        return referee_id
