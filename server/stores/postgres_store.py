"""
PostgreSQL-backed game store.

Three tables mirror the game model: ``games``, ``players`` (one row per seat
or spectator) and ``game_state`` (one row per game). Card lists and history
are JSONB.

Turn commits are a single ``UPDATE game_state ... WHERE turn_count = $n``
inside a transaction that also writes the affected hands. Zero updated rows
means another writer got there first, which surfaces as ConcurrencyError.

Change notifications go to local subscribers directly and, when a
GamePubSub is attached, to other servers through Redis.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import asyncpg
from redis.exceptions import RedisError

from errors import ConcurrencyError, GameNotFoundError, StoreUnavailableError
from models.events import ChangeEvent, ChangeOp, Table
from stores.game_store import ChangeHandler, GameStore, Unsubscribe
from stores.pubsub import GamePubSub

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS games (
    id VARCHAR(64) PRIMARY KEY,
    name VARCHAR(30) NOT NULL DEFAULT '',
    status VARCHAR(20) NOT NULL DEFAULT 'waiting',  -- waiting, in_progress, finished
    max_players INT NOT NULL DEFAULT 4 CHECK (max_players BETWEEN 2 AND 4),
    current_players INT NOT NULL DEFAULT 0,
    spectators INT NOT NULL DEFAULT 0,
    host_name VARCHAR(20),
    options JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS players (
    id VARCHAR(64) PRIMARY KEY,
    game_id VARCHAR(64) NOT NULL REFERENCES games(id) ON DELETE CASCADE,
    player_name VARCHAR(20) NOT NULL,
    position INT NOT NULL DEFAULT -1,
    cards JSONB NOT NULL DEFAULT '[]',
    is_spectator BOOLEAN NOT NULL DEFAULT FALSE,
    joined_at TIMESTAMPTZ DEFAULT NOW(),

    UNIQUE(game_id, player_name)
);

CREATE TABLE IF NOT EXISTS game_state (
    game_id VARCHAR(64) PRIMARY KEY REFERENCES games(id) ON DELETE CASCADE,
    status VARCHAR(20) NOT NULL DEFAULT 'waiting',
    current_player INT NOT NULL DEFAULT 0,
    last_play JSONB NOT NULL DEFAULT '[]',
    last_player INT,
    turn_count INT NOT NULL DEFAULT 0,
    play_history JSONB NOT NULL DEFAULT '[]',
    deck JSONB NOT NULL DEFAULT '[]',
    winner INT,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- One seated player per position; spectators all use -1
CREATE UNIQUE INDEX IF NOT EXISTS idx_players_seat
    ON players(game_id, position) WHERE position >= 0;
CREATE INDEX IF NOT EXISTS idx_players_game ON players(game_id);
CREATE INDEX IF NOT EXISTS idx_games_status ON games(status);
"""

JSON_COLUMNS = {"options", "cards", "last_play", "play_history", "deck"}

GAME_COLUMNS = {
    "id", "name", "status", "max_players", "current_players",
    "spectators", "host_name", "options",
}
PLAYER_COLUMNS = {"id", "game_id", "player_name", "position", "cards", "is_spectator"}
STATE_COLUMNS = {
    "status", "current_player", "last_play", "last_player",
    "turn_count", "play_history", "deck", "winner",
}

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
)


def _record_to_dict(record) -> dict:
    row = dict(record)
    for key, value in row.items():
        if key in JSON_COLUMNS and isinstance(value, str):
            row[key] = json.loads(value)
    return row


def _encode(key: str, value):
    return json.dumps(value) if key in JSON_COLUMNS else value


def _placeholder(key: str, index: int) -> str:
    return f"${index}::jsonb" if key in JSON_COLUMNS else f"${index}"


def _set_clause(fields: dict, allowed: set[str], first_index: int) -> tuple[str, list]:
    """Build ``col = $n`` assignments for a dynamic UPDATE."""
    parts, args = [], []
    for key, value in fields.items():
        if key not in allowed:
            raise ValueError(f"Unknown column: {key}")
        parts.append(f"{key} = {_placeholder(key, first_index + len(args))}")
        args.append(_encode(key, value))
    return ", ".join(parts), args


class PostgresGameStore(GameStore):
    """
    PostgreSQL-backed GameStore.

    Uses an asyncpg pool; optional GamePubSub fans change events out to
    other servers.
    """

    def __init__(self, pool: asyncpg.Pool, pubsub: Optional[GamePubSub] = None):
        self.pool = pool
        self.pubsub = pubsub
        self._handlers: dict[tuple[Table, str], list[ChangeHandler]] = {}

    @classmethod
    async def create(cls, postgres_url: str, pubsub: Optional[GamePubSub] = None) -> "PostgresGameStore":
        """Create a store with a new connection pool and ensure the schema exists."""
        pool = await asyncpg.create_pool(postgres_url, min_size=2, max_size=10)
        store = cls(pool, pubsub)
        await store.initialize_schema()
        return store

    async def initialize_schema(self) -> None:
        async with self._connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Game store schema initialized")

    async def close(self) -> None:
        await self.pool.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, mapping connectivity failures."""
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except _CONNECTION_ERRORS as e:
            raise StoreUnavailableError(f"Database unavailable: {e}") from e

    # -------------------------------------------------------------------------
    # Games
    # -------------------------------------------------------------------------

    async def create_game(self, fields: dict) -> dict:
        fields = {**fields, "id": fields.get("id") or str(uuid.uuid4())}
        columns = [key for key in fields if key in GAME_COLUMNS]
        placeholders = [_placeholder(key, i + 1) for i, key in enumerate(columns)]
        async with self._connection() as conn:
            record = await conn.fetchrow(
                f"INSERT INTO games ({', '.join(columns)}) "
                f"VALUES ({', '.join(placeholders)}) RETURNING *",
                *[_encode(key, fields[key]) for key in columns],
            )
        row = _record_to_dict(record)
        await self._notify(Table.GAMES, row["id"], ChangeOp.INSERT)
        return row

    async def get_game(self, game_id: str) -> dict:
        async with self._connection() as conn:
            record = await conn.fetchrow("SELECT * FROM games WHERE id = $1", game_id)
        if record is None:
            raise GameNotFoundError(game_id)
        return _record_to_dict(record)

    async def get_game_details(self, game_id: str) -> dict:
        async with self._connection() as conn:
            async with conn.transaction(readonly=True):
                game = await conn.fetchrow("SELECT * FROM games WHERE id = $1", game_id)
                if game is None:
                    raise GameNotFoundError(game_id)
                players = await conn.fetch(
                    """
                    SELECT * FROM players WHERE game_id = $1
                    ORDER BY position < 0, position, player_name
                    """,
                    game_id,
                )
                state = await conn.fetchrow("SELECT * FROM game_state WHERE game_id = $1", game_id)
        return {
            "game": _record_to_dict(game),
            "players": [_record_to_dict(p) for p in players],
            "game_state": _record_to_dict(state) if state is not None else None,
        }

    async def update_game(self, game_id: str, fields: dict) -> dict:
        assignments, args = _set_clause(fields, GAME_COLUMNS - {"id"}, 2)
        async with self._connection() as conn:
            record = await conn.fetchrow(
                f"UPDATE games SET {assignments}, updated_at = NOW() WHERE id = $1 RETURNING *",
                game_id,
                *args,
            )
        if record is None:
            raise GameNotFoundError(game_id)
        await self._notify(Table.GAMES, game_id)
        return _record_to_dict(record)

    async def delete_game(self, game_id: str) -> None:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM games WHERE id = $1", game_id)
        if not result.endswith(" 0"):
            await self._notify(Table.GAMES, game_id, ChangeOp.DELETE)

    async def delete_expired_games(self, finished_before: datetime, waiting_before: datetime) -> list[str]:
        async with self._connection() as conn:
            async with conn.transaction():
                finished = await conn.fetch(
                    "DELETE FROM games WHERE status = $1 AND updated_at < $2 RETURNING id",
                    "finished",
                    finished_before,
                )
                waiting = await conn.fetch(
                    "DELETE FROM games WHERE status = $1 AND created_at < $2 RETURNING id",
                    "waiting",
                    waiting_before,
                )
                await conn.execute("DELETE FROM players WHERE game_id NOT IN (SELECT id FROM games)")
                await conn.execute("DELETE FROM game_state WHERE game_id NOT IN (SELECT id FROM games)")

        expired = [record["id"] for record in [*finished, *waiting]]
        for game_id in expired:
            await self._notify(Table.GAMES, game_id, ChangeOp.DELETE)
        return expired

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    async def get_players(self, game_id: str) -> list[dict]:
        async with self._connection() as conn:
            records = await conn.fetch(
                """
                SELECT * FROM players WHERE game_id = $1
                ORDER BY position < 0, position, player_name
                """,
                game_id,
            )
        return [_record_to_dict(r) for r in records]

    async def add_player(self, fields: dict) -> dict:
        position = fields.get("position", -1)
        row = {
            "cards": [],
            "is_spectator": position < 0,
            **fields,
            "id": fields.get("id") or str(uuid.uuid4()),
            "position": position,
        }
        columns = [key for key in row if key in PLAYER_COLUMNS]
        placeholders = [_placeholder(key, i + 1) for i, key in enumerate(columns)]
        async with self._connection() as conn:
            try:
                record = await conn.fetchrow(
                    f"INSERT INTO players ({', '.join(columns)}) "
                    f"VALUES ({', '.join(placeholders)}) RETURNING *",
                    *[_encode(key, row[key]) for key in columns],
                )
            except asyncpg.UniqueViolationError:
                raise ConcurrencyError(
                    f"Name or seat already taken in game {row['game_id']}"
                )
            except asyncpg.ForeignKeyViolationError:
                raise GameNotFoundError(row["game_id"])
        await self._notify(Table.PLAYERS, row["game_id"], ChangeOp.INSERT)
        return _record_to_dict(record)

    async def remove_player(
        self,
        game_id: str,
        player_name: str,
        *,
        expected_status: Optional[str] = None,
    ) -> None:
        sql = "DELETE FROM players WHERE game_id = $1 AND player_name = $2"
        args = [game_id, player_name]
        if expected_status is not None:
            sql += " AND EXISTS (SELECT 1 FROM game_state WHERE game_id = $1 AND status = $3)"
            args.append(expected_status)

        async with self._connection() as conn:
            result = await conn.execute(sql, *args)
            if result.endswith(" 0"):
                still_there = await conn.fetchval(
                    "SELECT 1 FROM players WHERE game_id = $1 AND player_name = $2",
                    game_id,
                    player_name,
                )
                if still_there is None:
                    raise GameNotFoundError(game_id)
                raise ConcurrencyError(f"Game {game_id} is no longer {expected_status}")
        await self._notify(Table.PLAYERS, game_id, ChangeOp.DELETE)

    async def update_player_hand(self, game_id: str, player_name: str, hand: list[dict]) -> None:
        async with self._connection() as conn:
            result = await conn.execute(
                "UPDATE players SET cards = $3::jsonb WHERE game_id = $1 AND player_name = $2",
                game_id,
                player_name,
                json.dumps(hand),
            )
        if result.endswith(" 0"):
            raise GameNotFoundError(game_id)
        await self._notify(Table.PLAYERS, game_id)

    # -------------------------------------------------------------------------
    # Game state
    # -------------------------------------------------------------------------

    async def create_game_state(self, game_id: str, fields: dict) -> dict:
        fields = {key: value for key, value in fields.items() if key in STATE_COLUMNS}
        columns = ["game_id", *fields]
        placeholders = ["$1"] + [_placeholder(key, i + 2) for i, key in enumerate(fields)]
        async with self._connection() as conn:
            try:
                record = await conn.fetchrow(
                    f"INSERT INTO game_state ({', '.join(columns)}) "
                    f"VALUES ({', '.join(placeholders)}) RETURNING *",
                    game_id,
                    *[_encode(key, value) for key, value in fields.items()],
                )
            except asyncpg.ForeignKeyViolationError:
                raise GameNotFoundError(game_id)
        await self._notify(Table.GAME_STATE, game_id, ChangeOp.INSERT)
        return _record_to_dict(record)

    async def get_game_state(self, game_id: str) -> Optional[dict]:
        async with self._connection() as conn:
            record = await conn.fetchrow("SELECT * FROM game_state WHERE game_id = $1", game_id)
        return _record_to_dict(record) if record is not None else None

    async def update_game_state(
        self,
        game_id: str,
        fields: dict,
        *,
        expected_turn_count: Optional[int] = None,
        expected_status: Optional[str] = None,
        hands: Optional[dict[str, list[dict]]] = None,
    ) -> dict:
        assignments, args = _set_clause(fields, STATE_COLUMNS, 2)
        assignments = ", ".join(filter(None, [assignments, "updated_at = NOW()"]))
        conditions = ["game_id = $1"]
        if expected_turn_count is not None:
            args.append(expected_turn_count)
            conditions.append(f"turn_count = ${len(args) + 1}")
        if expected_status is not None:
            args.append(expected_status)
            conditions.append(f"status = ${len(args) + 1}")

        async with self._connection() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(
                    f"UPDATE game_state SET {assignments} "
                    f"WHERE {' AND '.join(conditions)} RETURNING *",
                    game_id,
                    *args,
                )
                if record is None:
                    current = await conn.fetchrow(
                        "SELECT turn_count, status FROM game_state WHERE game_id = $1",
                        game_id,
                    )
                    if current is None:
                        raise GameNotFoundError(game_id)
                    raise ConcurrencyError(
                        f"Game {game_id} is at turn {current['turn_count']} ({current['status']}), "
                        f"expected turn {expected_turn_count} ({expected_status})"
                    )

                for player_name, hand in (hands or {}).items():
                    result = await conn.execute(
                        "UPDATE players SET cards = $3::jsonb WHERE game_id = $1 AND player_name = $2",
                        game_id,
                        player_name,
                        json.dumps(hand),
                    )
                    if result.endswith(" 0"):
                        # Raising inside the transaction rolls back the state write
                        raise GameNotFoundError(game_id)
                if "status" in fields:
                    await conn.execute(
                        "UPDATE games SET status = $2, updated_at = NOW() WHERE id = $1",
                        game_id,
                        fields["status"],
                    )

        row = _record_to_dict(record)
        if hands:
            await self._notify(Table.PLAYERS, game_id)
        await self._notify(Table.GAME_STATE, game_id, turn_count=row["turn_count"])
        return row

    # -------------------------------------------------------------------------
    # Change feed & lifecycle
    # -------------------------------------------------------------------------

    async def subscribe(self, table: Table, game_id: str, handler: ChangeHandler) -> Unsubscribe:
        key = (Table(table), game_id)
        first_for_game = not any(gid == game_id for (_, gid) in self._handlers)
        self._handlers.setdefault(key, []).append(handler)
        if self.pubsub is not None and first_for_game:
            await self.pubsub.subscribe(game_id, self._on_remote_change)

        async def unsubscribe() -> None:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(key, None)
            still_watched = any(gid == game_id for (_, gid) in self._handlers)
            if self.pubsub is not None and not still_watched:
                await self.pubsub.remove_handler(game_id, self._on_remote_change)

        return unsubscribe

    async def _on_remote_change(self, event: ChangeEvent) -> None:
        await self._dispatch(event)

    async def _dispatch(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers.get((event.table, event.game_id), [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Error in change handler for {event.table.value}: {e}", exc_info=True)

    async def _notify(
        self,
        table: Table,
        game_id: str,
        op: ChangeOp = ChangeOp.UPDATE,
        turn_count: Optional[int] = None,
    ) -> None:
        event = ChangeEvent(table=table, game_id=game_id, op=op, turn_count=turn_count)
        await self._dispatch(event)
        if self.pubsub is not None:
            try:
                await self.pubsub.publish(event)
            except (RedisError, OSError) as e:
                # The write is committed; remote servers catch up on their next sync tick
                logger.warning(f"Failed to publish {table.value} change for game {game_id}: {e}")

    async def check_connection(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("SELECT 1")
