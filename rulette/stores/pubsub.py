"""
Session event listener over Redis pub/sub.

StateCache publishes a rule_card_update on "rulette:session:{session_id}"
every time a player's active rules change. Each client at the table runs a
SessionPubSub so it can refresh that player's cards without polling.

Events carry the acting player's hand_version. A handler holding a newer
snapshot drops the event.

Usage:
    listener = SessionPubSub(redis_client, client_id="table-1")
    await listener.subscribe(session_id, on_event)
    await listener.start()
    ...
    await listener.stop()
"""

import asyncio
import contextlib
import json
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

from models.events import SessionEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SessionEvent], Awaitable[None]]


class SessionPubSub:
    """
    Fans session events out to local handlers.

    Messages this client published itself (matched on senderId) are not
    delivered back to it.
    """

    CHANNEL_PREFIX = "rulette:session:"
    POLL_TIMEOUT = 1.0
    RECONNECT_DELAY = 1.0

    def __init__(self, redis_client: redis.Redis, client_id: str = "default"):
        """
        Args:
            redis_client: Async Redis client.
            client_id: Tag written into published events as senderId.
        """
        self.redis = redis_client
        self.client_id = client_id
        self.pubsub = redis_client.pubsub()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._listener: Optional[asyncio.Task] = None

    def channel_for(self, session_id: str) -> str:
        return self.CHANNEL_PREFIX + session_id

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def subscribe(self, session_id: str, handler: EventHandler) -> None:
        """Register a handler; the channel is subscribed on first use."""
        channel = self.channel_for(session_id)
        handlers = self._handlers.setdefault(channel, [])
        if not handlers:
            await self.pubsub.subscribe(channel)
            logger.debug(f"Listening on {channel}")
        handlers.append(handler)

    async def unsubscribe(self, session_id: str) -> None:
        """Drop every handler for a session and leave its channel."""
        channel = self.channel_for(session_id)
        if self._handlers.pop(channel, None) is not None:
            await self.pubsub.unsubscribe(channel)
            logger.debug(f"Left {channel}")

    async def publish(self, event: SessionEvent) -> int:
        """
        Publish an event tagged with this client's id.

        Returns:
            Number of Redis subscribers that received it.
        """
        channel = self.channel_for(event.session_id)
        payload = json.dumps({**event.to_dict(), "senderId": self.client_id})
        receivers = await self.redis.publish(channel, payload)
        logger.debug(f"{event.event_type.value} -> {channel} ({receivers} receivers)")
        return receivers

    async def start(self) -> None:
        if self.listening:
            return
        self._listener = asyncio.create_task(self._poll_forever())
        logger.info(f"Session listener started for {self.client_id}")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None

        await self.pubsub.close()
        self._handlers.clear()
        logger.info(f"Session listener stopped for {self.client_id}")

    async def _poll_forever(self) -> None:
        while True:
            try:
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.POLL_TIMEOUT
                )
            except redis.ConnectionError as e:
                logger.error(f"Lost pub/sub connection: {e}")
                await asyncio.sleep(self.RECONNECT_DELAY)
                continue
            if message is not None and message.get("type") == "message":
                await self._handle_message(message)

    async def _handle_message(self, raw_message: dict) -> None:
        """Decode one Redis message and run the channel's handlers on it."""
        channel, data = raw_message["channel"], raw_message["data"]
        channel = channel.decode() if isinstance(channel, bytes) else channel
        data = data.decode() if isinstance(data, bytes) else data

        try:
            record = json.loads(data)
            sender_id = record.pop("senderId", None)
            event = SessionEvent.from_dict(record)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Dropping malformed event on {channel}: {e}")
            return

        if sender_id == self.client_id:
            return

        for handler in list(self._handlers.get(channel, [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Handler for {channel} failed: {e}", exc_info=True)
