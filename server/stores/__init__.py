"""Stores package for Big Two game persistence."""

from .game_store import (
    ChangeHandler,
    ConcurrencyError,
    GameNotFoundError,
    GameStore,
    StoreUnavailableError,
    Unsubscribe,
)
from .memory_store import InMemoryGameStore
from .postgres_store import PostgresGameStore
from .pubsub import GamePubSub

__all__ = [
    # Interface
    "GameStore",
    "ChangeHandler",
    "Unsubscribe",
    "ConcurrencyError",
    "GameNotFoundError",
    "StoreUnavailableError",
    # Backends
    "InMemoryGameStore",
    "PostgresGameStore",
    # Pub/sub
    "GamePubSub",
]
