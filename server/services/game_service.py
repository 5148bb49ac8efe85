"""
Game service: the operations clients call.

Lobby operations (create, join, start, end, new game) raise GameError with a
code when refused. Turn operations (play, pass) return an ActionResult; a
rejected play is a normal outcome, not an exception.

Every write goes through TurnGuard, so two clients acting on the same turn
cannot both succeed.

Usage:
    service = GameService(InMemoryGameStore())
    game = await service.create_game("Friday", "alice", preset="classic")
    await service.join_game(game.game_id, "bob")
    game = await service.start_game(game.game_id, "alice")
    result = await service.submit_play(game.game_id, 0, cards, game.turn_count)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional

from cards import Card, cards_to_dicts
from config import CleanupSettings, config
from constants import (
    DEFAULT_MAX_PLAYERS,
    DEFAULT_PRESET,
    GAME_NAME_MAX_LENGTH,
    MAX_HINTS,
    MAX_PLAYERS,
    MIN_PLAYERS,
)
from errors import ConcurrencyError, GameError, LobbyErrorCode, RejectReason
from game import ActionResult, Game, GameStatus, Player, validate_player_name
from hints import Hint, find_hints
from models.events import ChangeEvent, Table
from models.game_state import GameDetails, decode_details
from rules import PRESET_RULES, GameOptions
from services.turn_guard import TurnGuard
from stores.game_store import GameStore, Unsubscribe

logger = logging.getLogger(__name__)

# Called with freshly read details after any change to a game
GameCallback = Callable[[GameDetails], Awaitable[None]]


class GameService:
    """Lobby and turn operations over a GameStore."""

    JOIN_ATTEMPTS = 3

    def __init__(
        self,
        store: GameStore,
        verify_integrity: bool = True,
        cleanup: Optional[CleanupSettings] = None,
    ):
        self.store = store
        self.guard = TurnGuard(store, verify_integrity=verify_integrity)
        self.cleanup = cleanup or config.cleanup

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_game_details(self, game_id: str) -> GameDetails:
        raw = await self.store.get_game_details(game_id)
        return decode_details(raw)

    async def get_game(self, game_id: str) -> Game:
        return await self.guard.load(game_id)

    async def get_state(self, game_id: str, viewer: Optional[str] = None) -> dict:
        """Game state as ``viewer`` may see it."""
        game = await self.guard.load(game_id)
        return game.get_state(viewer)

    # -------------------------------------------------------------------------
    # Lobby
    # -------------------------------------------------------------------------

    async def create_game(
        self,
        name: Optional[str],
        host_name: str,
        *,
        max_players: Optional[int] = None,
        preset: Optional[str] = None,
        options: Optional[dict] = None,
    ) -> Game:
        """
        Create a game with its host in seat 0.

        Args:
            name: Display name; defaults to "<host>'s game".
            host_name: Host's player name.
            max_players: Seat limit, 2-4.
            preset: Base ruleset (classic, fast, casual).
            options: Individual rule overrides on top of the preset.

        Raises:
            GameError: INVALID_NAME, UNKNOWN_PRESET, NOT_ENOUGH_PLAYERS or
                TOO_MANY_PLAYERS.
        """
        host_name = validate_player_name(host_name)
        preset = preset or DEFAULT_PRESET
        if preset not in PRESET_RULES:
            raise GameError(LobbyErrorCode.UNKNOWN_PRESET.value)

        max_players = max_players or DEFAULT_MAX_PLAYERS
        if max_players < MIN_PLAYERS:
            raise GameError(LobbyErrorCode.NOT_ENOUGH_PLAYERS.value)
        if max_players > MAX_PLAYERS:
            raise GameError(LobbyErrorCode.TOO_MANY_PLAYERS.value)

        game_options = GameOptions.from_client_data({**(options or {}), "preset": preset})
        name = (name or "").strip()[:GAME_NAME_MAX_LENGTH] or f"{host_name}'s game"

        row = await self.store.create_game({
            "name": name,
            "status": GameStatus.WAITING.value,
            "max_players": max_players,
            "current_players": 1,
            "spectators": 0,
            "host_name": host_name,
            "options": game_options.to_dict(),
        })
        game_id = row["id"]
        await self.store.add_player({
            "game_id": game_id,
            "player_name": host_name,
            "position": 0,
            "cards": [],
            "is_spectator": False,
        })
        await self.store.create_game_state(game_id, {"status": GameStatus.WAITING.value})

        logger.info(f"Game {game_id} created by {host_name} ({preset}, {max_players} seats)")
        return await self.guard.load(game_id)

    async def join_game(self, game_id: str, player_name: str, as_spectator: bool = False) -> Player:
        """
        Add a player to a game, seated if possible.

        Concurrent joins that collide on a name or seat are re-read and
        retried a few times.

        Raises:
            GameError: INVALID_NAME, NAME_TAKEN, GAME_FULL or GAME_NOT_FOUND.
            ConcurrencyError: If every attempt collided.
        """
        for attempt in range(1, self.JOIN_ATTEMPTS + 1):
            game = await self.guard.load(game_id)
            previous_host = game.host_name
            player = game.add_player(player_name, as_spectator=as_spectator)

            try:
                await self.store.add_player({
                    "game_id": game_id,
                    "player_name": player.name,
                    "position": player.position,
                    "cards": [],
                    "is_spectator": player.is_spectator,
                })
            except ConcurrencyError as e:
                logger.info(f"Join collision in game {game_id} (attempt {attempt}): {e.message}")
                continue

            await self._update_counts(game, previous_host)

            role = "spectator" if player.is_spectator else f"seat {player.position}"
            logger.info(f"{player.name} joined game {game_id} as {role}")
            return player

        raise ConcurrencyError(f"Could not join game {game_id} after {self.JOIN_ATTEMPTS} attempts")

    async def leave_game(self, game_id: str, player_name: str) -> Optional[Game]:
        """
        Remove a player from a game. A game nobody is left in is deleted.

        Seated players can leave only while the game is waiting; that
        precondition is checked again by the store when the row is deleted.

        Returns:
            The game without the player, or None if the game was deleted.

        Raises:
            GameError: NOT_A_PLAYER, or INVALID_TRANSITION for a seated
                player after the deal.
            ConcurrencyError: If the game was dealt while the player left.
        """
        game = await self.guard.load(game_id)
        previous_host = game.host_name
        player = game.remove_player(player_name)

        await self.store.remove_player(
            game_id,
            player.name,
            expected_status=GameStatus.WAITING.value if player.is_seated else None,
        )

        if not game.players:
            await self.store.delete_game(game_id)
            logger.info(f"{player.name} left game {game_id}; game deleted")
            return None

        await self._update_counts(game, previous_host)
        logger.info(f"{player.name} left game {game_id}")
        return game

    async def _update_counts(self, game: Game, previous_host: Optional[str]) -> None:
        counts = {
            "current_players": len(game.active_players),
            "spectators": len(game.spectators),
        }
        if game.host_name != previous_host:
            counts["host_name"] = game.host_name
        await self.store.update_game(game.game_id, counts)

    async def start_game(self, game_id: str, requested_by: Optional[str], seed: Optional[int] = None) -> Game:
        """
        Deal and begin play. Host only.

        Raises:
            GameError: NOT_HOST, NOT_ENOUGH_PLAYERS, TOO_MANY_PLAYERS.
            ConcurrencyError: If the game already started.
        """
        def start(game: Game) -> None:
            game.require_host(requested_by)
            game.start_game(seed)

        return await self.guard.transition(game_id, start, expected_status=GameStatus.WAITING)

    async def end_game(self, game_id: str, requested_by: Optional[str]) -> Game:
        """Finish the game early. Host only."""
        return await self.guard.transition(game_id, lambda game: game.end_game(requested_by))

    async def new_game(self, game_id: str, requested_by: Optional[str], seed: Optional[int] = None) -> Game:
        """Deal a fresh game for the same table after one has finished. Host only."""
        def restart(game: Game) -> None:
            game.reset(requested_by)
            game.start_game(seed)

        return await self.guard.transition(game_id, restart, expected_status=GameStatus.FINISHED)

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    async def submit_play(
        self,
        game_id: str,
        seat: int,
        cards: Iterable[Card],
        expected_turn_count: int,
    ) -> ActionResult:
        cards = list(cards)
        result = await self.guard.commit(
            game_id,
            lambda game: game.apply_play(seat, cards, expected_turn_count),
            expected_turn_count,
        )
        if result.accepted:
            logger.info(f"Seat {seat} played {result.entry.play_type.value} in game {game_id}")
        return result

    async def submit_pass(self, game_id: str, seat: int, expected_turn_count: int) -> ActionResult:
        result = await self.guard.commit(
            game_id,
            lambda game: game.apply_pass(seat, expected_turn_count),
            expected_turn_count,
        )
        if result.accepted:
            logger.info(f"Seat {seat} passed in game {game_id}")
        return result

    async def reorder_hand(self, game_id: str, player_name: str, cards: Iterable[Card]) -> bool:
        """
        Store a new ordering of a player's hand.

        The ordering is written only if ``cards`` is exactly the stored hand
        as a set, fenced on the turn count it was checked against.

        Returns:
            False when the hand no longer matches.

        Raises:
            GameError: NOT_A_PLAYER if the name is not in the game.
        """
        details = await self.get_game_details(game_id)
        row = details.player(player_name)
        if row is None:
            raise GameError(RejectReason.NOT_A_PLAYER.value)

        cards = list(cards)
        stored = [card.to_card() for card in row.cards]
        if len(cards) != len(stored) or set(cards) != set(stored):
            return False

        try:
            await self.store.update_game_state(
                game_id,
                {},
                expected_turn_count=details.turn_count,
                hands={player_name: cards_to_dicts(cards)},
            )
        except ConcurrencyError:
            return False
        return True

    async def request_hint(self, game_id: str, seat: int, limit: int = MAX_HINTS) -> list[Hint]:
        """
        Suggest legal plays for a seat, weakest first.

        Returns an empty list when the game is not in progress or the seat
        is empty.
        """
        game = await self.guard.load(game_id)
        player = game.player_at(seat)
        if game.status != GameStatus.IN_PROGRESS or player is None:
            return []
        return find_hints(
            player.hand,
            game.last_play,
            len(game.active_players),
            opening_play=game.is_first_play,
            options=game.options,
            limit=limit,
        )

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    async def cleanup_expired(self, now: Optional[datetime] = None) -> list[str]:
        """
        Delete finished games past their retention and lobbies never started.

        Returns:
            Ids of the deleted games.
        """
        now = now or datetime.now(timezone.utc)
        deleted = await self.store.delete_expired_games(
            finished_before=now - timedelta(hours=self.cleanup.finished_ttl_hours),
            waiting_before=now - timedelta(hours=self.cleanup.waiting_ttl_hours),
        )
        if deleted:
            logger.info(f"Cleaned up {len(deleted)} expired game(s)")
        return deleted

    # -------------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------------

    async def subscribe_to_game(self, game_id: str, callback: GameCallback) -> Unsubscribe:
        """
        Call ``callback`` with fresh details whenever any row of the game changes.

        Returns:
            Coroutine function that removes every subscription made here.
        """
        async def on_change(event: ChangeEvent) -> None:
            try:
                details = await self.get_game_details(game_id)
            except GameError as e:
                logger.warning(f"Re-read after {event.table.value} change failed for game {game_id}: {e.message}")
                return
            await callback(details)

        unsubscribes = [await self.store.subscribe(table, game_id, on_change) for table in Table]

        async def unsubscribe() -> None:
            for remove in unsubscribes:
                await remove()

        return unsubscribe
