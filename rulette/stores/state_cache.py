"""
Redis-backed session and player state store.

Implements the PersistenceGateway used by the engine. Redis provides:
- Sub-millisecond reads/writes for session and player documents
- TTL expiration for abandoned sessions
- Pub/sub fan-out of session events to other clients

The in-memory GameManager is the source of truth during a session; this
store is what other clients and reconnecting players read.

Key patterns:
- rulette:session:{session_id}          -> JSON (session document)
- rulette:session:{session_id}:players  -> Set (player IDs in session)
- rulette:player:{player_id}            -> JSON (player document)
- rulette:sessions:active               -> Set (active session IDs)

Channel pattern:
- rulette:session:{session_id}          -> session events (see pubsub.py)
"""

import json
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

import redis.asyncio as redis

from cards import Card
from errors import PersistenceError
from models.events import rule_card_update

logger = logging.getLogger(__name__)


class StateCache:
    """Redis-backed session and player store."""

    # Key patterns
    SESSION_KEY = "rulette:session:{session_id}"
    SESSION_PLAYERS_KEY = "rulette:session:{session_id}:players"
    PLAYER_KEY = "rulette:player:{player_id}"
    ACTIVE_SESSIONS_KEY = "rulette:sessions:active"
    SESSION_CHANNEL = "rulette:session:{session_id}"

    # TTLs - long enough that an active evening of play never expires
    STATE_TTL = timedelta(hours=24)

    def __init__(self, redis_client: redis.Redis, ttl: Optional[timedelta] = None):
        """
        Initialize state cache with Redis client.

        Args:
            redis_client: Async Redis client.
            ttl: Override for the document TTL.
        """
        self.redis = redis_client
        self.ttl = ttl or self.STATE_TTL

    @classmethod
    async def create(cls, redis_url: str, ttl_hours: Optional[int] = None) -> "StateCache":
        """
        Create a StateCache with a new Redis connection.

        Args:
            redis_url: Redis connection URL.
            ttl_hours: Document TTL in hours.

        Returns:
            Configured StateCache instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        await client.ping()
        logger.info("StateCache connected to Redis")
        ttl = timedelta(hours=ttl_hours) if ttl_hours else None
        return cls(client, ttl)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.close()

    @property
    def _ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    # -------------------------------------------------------------------------
    # Document helpers
    # -------------------------------------------------------------------------

    async def _get_doc(self, key: str) -> Optional[dict]:
        try:
            data = await self.redis.get(key)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to read {key}: {e}", details={"key": key}) from e
        if not data:
            return None
        if isinstance(data, bytes):
            data = data.decode()
        return json.loads(data)

    async def _set_doc(self, key: str, doc: dict) -> None:
        try:
            await self.redis.set(key, json.dumps(doc), ex=self._ttl_seconds)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to write {key}: {e}", details={"key": key}) from e

    async def _merge_doc(self, key: str, updates: dict) -> dict:
        """Partial update (get, merge, set). Missing documents are created."""
        doc = await self._get_doc(key) or {}
        doc.update(updates)
        doc["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        await self._set_doc(key, doc)
        return doc

    # -------------------------------------------------------------------------
    # Session Operations
    # -------------------------------------------------------------------------

    async def save_session(self, session_record: dict) -> None:
        """
        Create or overwrite a session document.

        Args:
            session_record: Session.to_dict() output.
        """
        session_id = session_record["sessionId"]
        await self._set_doc(self.SESSION_KEY.format(session_id=session_id), session_record)
        try:
            await self.redis.sadd(self.ACTIVE_SESSIONS_KEY, session_id)
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to index session {session_id}: {e}") from e
        logger.debug(f"Saved session {session_id}")

    async def get_session(self, session_id: str) -> Optional[dict]:
        """
        Get a session document.

        Returns:
            Session dict, or None if not found.
        """
        return await self._get_doc(self.SESSION_KEY.format(session_id=session_id))

    async def get_active_sessions(self) -> set[str]:
        """Get all active session IDs."""
        sessions = await self.redis.smembers(self.ACTIVE_SESSIONS_KEY)
        return {s.decode() if isinstance(s, bytes) else s for s in sessions}

    async def delete_session(self, session_id: str) -> None:
        """
        Delete a session and its player links.

        Player documents are left alone; they expire on their own.
        """
        pipe = self.redis.pipeline()
        pipe.delete(self.SESSION_KEY.format(session_id=session_id))
        pipe.delete(self.SESSION_PLAYERS_KEY.format(session_id=session_id))
        pipe.srem(self.ACTIVE_SESSIONS_KEY, session_id)
        await pipe.execute()
        logger.debug(f"Deleted session {session_id}")

    async def persist_referee_card(self, session_id: str, referee_player_id: str) -> None:
        """
        Point the session's referee field at a player.

        Args:
            session_id: Session to update.
            referee_player_id: Player now holding the referee card.
        """
        await self._merge_doc(
            self.SESSION_KEY.format(session_id=session_id),
            {"refereeCard": referee_player_id, "referee": referee_player_id},
        )
        logger.debug(f"Referee for {session_id} set to {referee_player_id}")

    async def broadcast_rule_card_update(
        self,
        session_id: str,
        player_id: str,
        rule_card: Card,
        version: Optional[int] = None,
    ) -> None:
        """
        Attach a rule_card_update event to the session and publish it.

        Listeners that missed the publish can still read lastRuleCardUpdate
        from the session document.
        """
        event = rule_card_update(session_id, player_id, rule_card, version)
        record = event.to_dict()
        await self._merge_doc(
            self.SESSION_KEY.format(session_id=session_id),
            {"lastRuleCardUpdate": record},
        )
        try:
            await self.redis.publish(
                self.SESSION_CHANNEL.format(session_id=session_id),
                json.dumps(record),
            )
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to publish rule card update: {e}") from e
        logger.debug(f"Broadcast rule card {rule_card.id} for {player_id} in {session_id}")

    # -------------------------------------------------------------------------
    # Player Operations
    # -------------------------------------------------------------------------

    async def save_player(self, session_id: str, player_record: dict) -> None:
        """
        Create or overwrite a player document and link it to a session.

        Args:
            session_id: Session the player belongs to.
            player_record: Player.to_dict() output.
        """
        player_id = player_record["playerId"]
        doc = {**player_record, "sessionId": session_id}
        await self._set_doc(self.PLAYER_KEY.format(player_id=player_id), doc)

        pipe = self.redis.pipeline()
        players_key = self.SESSION_PLAYERS_KEY.format(session_id=session_id)
        pipe.sadd(players_key, player_id)
        pipe.expire(players_key, self._ttl_seconds)
        try:
            await pipe.execute()
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to link player {player_id}: {e}") from e

    async def get_player(self, player_id: str) -> Optional[dict]:
        """Get a player document, or None if not found."""
        return await self._get_doc(self.PLAYER_KEY.format(player_id=player_id))

    async def update_player_status(self, player_id: str, status: str) -> None:
        await self._merge_doc(self.PLAYER_KEY.format(player_id=player_id), {"status": status})

    async def persist_hand(
        self,
        session_id: str,
        player_id: str,
        hand: list[Card],
        version: Optional[int] = None,
    ) -> None:
        """
        Upsert a player's hand.

        Args:
            session_id: Session the player is in.
            player_id: Player to update.
            hand: The player's full hand.
            version: Player's hand_version, stored for staleness checks.
        """
        updates: dict[str, Any] = {
            "sessionId": session_id,
            "hand": [card.to_record() for card in hand],
        }
        if version is not None:
            updates["handVersion"] = version
        await self._merge_doc(self.PLAYER_KEY.format(player_id=player_id), updates)
        logger.debug(f"Player hand updated: {player_id} ({len(hand)} cards)")

    async def persist_rule_cards(
        self,
        player_id: str,
        rule_cards: list[Card],
        version: Optional[int] = None,
    ) -> None:
        """
        Upsert a player's rule cards as compact rule records.

        Args:
            player_id: Player to update.
            rule_cards: The player's active rule cards.
            version: Player's hand_version, stored for staleness checks.
        """
        updates: dict[str, Any] = {"ruleCards": [card.to_rule_record() for card in rule_cards]}
        if version is not None:
            updates["handVersion"] = version
        await self._merge_doc(self.PLAYER_KEY.format(player_id=player_id), updates)
        logger.debug(f"Player rule cards updated: {player_id} ({len(rule_cards)} cards)")

    async def fetch_active_players(self, session_id: str) -> list[dict]:
        """
        Read every player document in a session.

        Despite the name, inactive players are returned too; callers filter
        on the status field.

        Returns:
            Player dicts, each with an "id" field added.
        """
        try:
            members = await self.redis.smembers(
                self.SESSION_PLAYERS_KEY.format(session_id=session_id)
            )
        except redis.RedisError as e:
            raise PersistenceError(f"Failed to list players in {session_id}: {e}") from e

        players = []
        for member in sorted(m.decode() if isinstance(m, bytes) else m for m in members):
            doc = await self.get_player(member)
            if doc is None or doc.get("sessionId") != session_id:
                continue
            players.append({"id": member, **doc})

        logger.debug(f"Players in session {session_id}: {len(players)}")
        return players

    async def touch_session(self, session_id: str) -> None:
        """
        Refresh session TTLs on activity.

        Args:
            session_id: Session to refresh.
        """
        pipe = self.redis.pipeline()
        pipe.expire(self.SESSION_KEY.format(session_id=session_id), self._ttl_seconds)
        pipe.expire(self.SESSION_PLAYERS_KEY.format(session_id=session_id), self._ttl_seconds)
        await pipe.execute()

