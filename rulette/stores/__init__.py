"""Stores package for Rulette persistence."""

from .gateway import PersistenceGateway, persist_safely
from .state_cache import StateCache
from .pubsub import SessionPubSub, EventHandler

__all__ = [
    # Gateway interface
    "PersistenceGateway",
    "persist_safely",
    # State cache
    "StateCache",
    # Pub/sub
    "SessionPubSub",
    "EventHandler",
]
