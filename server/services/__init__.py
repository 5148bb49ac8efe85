"""Services package for Big Two game operations and client sync."""

from .turn_guard import TurnGuard
from .game_service import GameService
from .turn_timer import TurnTimer
from .sync_service import (
    GameSyncSession,
    MessageType,
    NetworkMonitor,
    NetworkStatus,
    OfflineOperation,
    OperationType,
    SyncMessage,
    SyncStatus,
    backoff_delay,
)

__all__ = [
    "TurnGuard",
    "GameService",
    "TurnTimer",
    "GameSyncSession",
    "MessageType",
    "NetworkMonitor",
    "NetworkStatus",
    "OfflineOperation",
    "OperationType",
    "SyncMessage",
    "SyncStatus",
    "backoff_delay",
]
