"""
Centralized configuration for the Big Two game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.sync.interval_seconds)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def parse_bool(value, default: bool = False) -> bool:
    """Interpret a bool, number, or "true"/"off"-style string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    val = str(value).strip().lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    return parse_bool(os.environ.get(key, ""), default)


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameDefaults:
    """Default settings for newly created games."""
    preset: str = "classic"  # "classic", "fast", or "casual"
    max_players: int = 4
    turn_time_seconds: int = 30


@dataclass
class SyncSettings:
    """Client reconciliation cadence and retry policy."""
    interval_seconds: float = 5.0
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    unstable_latency_ms: int = 3000
    quality_check_seconds: float = 10.0
    queue_limit: int = 50
    queue_trim_to: int = 30


@dataclass
class CleanupSettings:
    """Expiry of stale games."""
    interval_seconds: float = 3600.0
    finished_ttl_hours: float = 24.0  # finished games, by last update
    waiting_ttl_hours: float = 72.0  # games never started, by creation


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    SERVER_ID: str = "default"

    # Storage
    STORE_BACKEND: str = "memory"  # "memory" or "postgres"
    POSTGRES_URL: str = ""
    REDIS_URL: str = ""

    game_defaults: GameDefaults = field(default_factory=GameDefaults)
    sync: SyncSettings = field(default_factory=SyncSettings)
    cleanup: CleanupSettings = field(default_factory=CleanupSettings)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            SERVER_ID=get_env("SERVER_ID", "default"),
            STORE_BACKEND=get_env("STORE_BACKEND", "memory").lower(),
            POSTGRES_URL=get_env("POSTGRES_URL", ""),
            REDIS_URL=get_env("REDIS_URL", ""),
            game_defaults=GameDefaults(
                preset=get_env("DEFAULT_PRESET", "classic"),
                max_players=get_env_int("DEFAULT_MAX_PLAYERS", 4),
                turn_time_seconds=get_env_int("DEFAULT_TURN_TIME", 30),
            ),
            sync=SyncSettings(
                interval_seconds=get_env_float("SYNC_INTERVAL_SECONDS", 5.0),
                max_retries=get_env_int("SYNC_MAX_RETRIES", 3),
                base_delay_seconds=get_env_float("SYNC_BASE_DELAY_SECONDS", 1.0),
                max_delay_seconds=get_env_float("SYNC_MAX_DELAY_SECONDS", 10.0),
                unstable_latency_ms=get_env_int("SYNC_UNSTABLE_LATENCY_MS", 3000),
                quality_check_seconds=get_env_float("SYNC_QUALITY_CHECK_SECONDS", 10.0),
                queue_limit=get_env_int("SYNC_QUEUE_LIMIT", 50),
                queue_trim_to=get_env_int("SYNC_QUEUE_TRIM_TO", 30),
            ),
            cleanup=CleanupSettings(
                interval_seconds=get_env_float("CLEANUP_INTERVAL_SECONDS", 3600.0),
                finished_ttl_hours=get_env_float("CLEANUP_FINISHED_TTL_HOURS", 24.0),
                waiting_ttl_hours=get_env_float("CLEANUP_WAITING_TTL_HOURS", 72.0),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()
