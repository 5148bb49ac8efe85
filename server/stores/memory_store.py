"""
In-process game store.

Used for single-server deployments and tests. One asyncio.Lock serializes
writes, which makes every conditional write an atomic compare-and-swap.
Change handlers run after the lock is released, in subscription order.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from errors import ConcurrencyError, GameNotFoundError
from models.events import ChangeEvent, ChangeOp, Table
from stores.game_store import ChangeHandler, GameStore, Unsubscribe

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryGameStore(GameStore):
    """Dict-backed GameStore with in-process change notifications."""

    def __init__(self):
        self._games: dict[str, dict] = {}
        self._players: dict[str, list[dict]] = {}
        self._states: dict[str, dict] = {}
        self._handlers: dict[tuple[Table, str], list[ChangeHandler]] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Games
    # -------------------------------------------------------------------------

    async def create_game(self, fields: dict) -> dict:
        async with self._lock:
            game_id = fields.get("id") or str(uuid.uuid4())
            row = {
                "name": "",
                "status": "waiting",
                "current_players": 0,
                "spectators": 0,
                "options": {},
                **fields,
                "id": game_id,
                "created_at": _now(),
                "updated_at": _now(),
            }
            self._games[game_id] = row
            self._players[game_id] = []
            result = copy.deepcopy(row)
        await self._notify(Table.GAMES, game_id, ChangeOp.INSERT)
        return result

    async def get_game(self, game_id: str) -> dict:
        row = self._games.get(game_id)
        if row is None:
            raise GameNotFoundError(game_id)
        return copy.deepcopy(row)

    async def get_game_details(self, game_id: str) -> dict:
        async with self._lock:
            if game_id not in self._games:
                raise GameNotFoundError(game_id)
            return copy.deepcopy({
                "game": self._games[game_id],
                "players": self._sorted_players(game_id),
                "game_state": self._states.get(game_id),
            })

    async def update_game(self, game_id: str, fields: dict) -> dict:
        async with self._lock:
            row = self._games.get(game_id)
            if row is None:
                raise GameNotFoundError(game_id)
            row.update(fields)
            row["updated_at"] = _now()
            result = copy.deepcopy(row)
        await self._notify(Table.GAMES, game_id)
        return result

    async def delete_game(self, game_id: str) -> None:
        async with self._lock:
            existed = self._drop(game_id)
        if existed:
            await self._notify(Table.GAMES, game_id, ChangeOp.DELETE)

    async def delete_expired_games(self, finished_before: datetime, waiting_before: datetime) -> list[str]:
        async with self._lock:
            expired = [
                game_id
                for game_id, row in self._games.items()
                if (row["status"] == "finished" and row["updated_at"] < finished_before)
                or (row["status"] == "waiting" and row["created_at"] < waiting_before)
            ]
            for game_id in expired:
                self._drop(game_id)
            for rows in (self._players, self._states):
                for game_id in [gid for gid in rows if gid not in self._games]:
                    del rows[game_id]

        for game_id in expired:
            await self._notify(Table.GAMES, game_id, ChangeOp.DELETE)
        return expired

    def _drop(self, game_id: str) -> bool:
        self._players.pop(game_id, None)
        self._states.pop(game_id, None)
        return self._games.pop(game_id, None) is not None

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    def _sorted_players(self, game_id: str) -> list[dict]:
        players = self._players.get(game_id, [])
        return sorted(players, key=lambda p: (p["position"] < 0, p["position"], p["player_name"]))

    async def get_players(self, game_id: str) -> list[dict]:
        return copy.deepcopy(self._sorted_players(game_id))

    async def add_player(self, fields: dict) -> dict:
        game_id = fields["game_id"]
        async with self._lock:
            if game_id not in self._games:
                raise GameNotFoundError(game_id)
            players = self._players[game_id]
            name = fields["player_name"]
            position = fields.get("position", -1)
            if any(p["player_name"] == name for p in players):
                raise ConcurrencyError(f"Player {name} already in game {game_id}")
            if position >= 0 and any(p["position"] == position for p in players):
                raise ConcurrencyError(f"Seat {position} already taken in game {game_id}")

            row = {
                "cards": [],
                "is_spectator": position < 0,
                **fields,
                "id": fields.get("id") or str(uuid.uuid4()),
                "position": position,
            }
            players.append(row)
            result = copy.deepcopy(row)
        await self._notify(Table.PLAYERS, game_id, ChangeOp.INSERT)
        return result

    async def remove_player(
        self,
        game_id: str,
        player_name: str,
        *,
        expected_status: Optional[str] = None,
    ) -> None:
        async with self._lock:
            player = self._find_player(game_id, player_name)
            state = self._states.get(game_id)
            if expected_status is not None and (state is None or state["status"] != expected_status):
                current = state["status"] if state else "unstarted"
                raise ConcurrencyError(f"Game {game_id} is {current}, expected {expected_status}")
            self._players[game_id].remove(player)
        await self._notify(Table.PLAYERS, game_id, ChangeOp.DELETE)

    async def update_player_hand(self, game_id: str, player_name: str, hand: list[dict]) -> None:
        async with self._lock:
            player = self._find_player(game_id, player_name)
            player["cards"] = copy.deepcopy(hand)
        await self._notify(Table.PLAYERS, game_id)

    def _find_player(self, game_id: str, player_name: str) -> dict:
        for player in self._players.get(game_id, []):
            if player["player_name"] == player_name:
                return player
        raise GameNotFoundError(game_id)

    # -------------------------------------------------------------------------
    # Game state
    # -------------------------------------------------------------------------

    async def create_game_state(self, game_id: str, fields: dict) -> dict:
        async with self._lock:
            if game_id not in self._games:
                raise GameNotFoundError(game_id)
            row = {
                "status": "waiting",
                "current_player": 0,
                "last_play": [],
                "last_player": None,
                "turn_count": 0,
                "play_history": [],
                "deck": [],
                "winner": None,
                **copy.deepcopy(fields),
                "game_id": game_id,
                "updated_at": _now(),
            }
            self._states[game_id] = row
            result = copy.deepcopy(row)
        await self._notify(Table.GAME_STATE, game_id, ChangeOp.INSERT)
        return result

    async def get_game_state(self, game_id: str) -> Optional[dict]:
        row = self._states.get(game_id)
        return copy.deepcopy(row) if row is not None else None

    async def update_game_state(
        self,
        game_id: str,
        fields: dict,
        *,
        expected_turn_count: Optional[int] = None,
        expected_status: Optional[str] = None,
        hands: Optional[dict[str, list[dict]]] = None,
    ) -> dict:
        async with self._lock:
            row = self._states.get(game_id)
            if row is None:
                raise GameNotFoundError(game_id)

            if expected_turn_count is not None and row["turn_count"] != expected_turn_count:
                raise ConcurrencyError(
                    f"Game {game_id} is at turn {row['turn_count']}, expected {expected_turn_count}"
                )
            if expected_status is not None and row["status"] != expected_status:
                raise ConcurrencyError(
                    f"Game {game_id} is {row['status']}, expected {expected_status}"
                )

            # Resolve every player before writing anything
            targets = [(self._find_player(game_id, name), hand) for name, hand in (hands or {}).items()]

            row.update(copy.deepcopy(fields))
            row["updated_at"] = _now()
            for player, hand in targets:
                player["cards"] = copy.deepcopy(hand)
            if "status" in fields:
                self._games[game_id]["status"] = fields["status"]
                self._games[game_id]["updated_at"] = _now()
            result = copy.deepcopy(row)

        if hands:
            await self._notify(Table.PLAYERS, game_id)
        await self._notify(Table.GAME_STATE, game_id, turn_count=result["turn_count"])
        return result

    # -------------------------------------------------------------------------
    # Change feed & lifecycle
    # -------------------------------------------------------------------------

    async def subscribe(self, table: Table, game_id: str, handler: ChangeHandler) -> Unsubscribe:
        key = (Table(table), game_id)
        self._handlers.setdefault(key, []).append(handler)
        logger.debug(f"Subscribed to {key[0].value} for game {game_id}")

        async def unsubscribe() -> None:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(key, None)

        return unsubscribe

    def subscriber_count(self, game_id: str) -> int:
        return sum(len(h) for (_, gid), h in self._handlers.items() if gid == game_id)

    async def _notify(
        self,
        table: Table,
        game_id: str,
        op: ChangeOp = ChangeOp.UPDATE,
        turn_count: Optional[int] = None,
    ) -> None:
        event = ChangeEvent(table=table, game_id=game_id, op=op, turn_count=turn_count)
        for handler in list(self._handlers.get((table, game_id), [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Error in change handler for {table.value}: {e}", exc_info=True)

    async def check_connection(self) -> None:
        return None
