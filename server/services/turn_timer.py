"""
Turn countdown with auto-pass.

A TurnTimer belongs to one seat's session. When that seat's turn starts it
counts down; on expiry it re-reads the game and, if the turn has not moved,
passes through ``GameService.submit_pass`` with the turn count it watched.
A seat that is leading cannot pass, so it plays its smallest legal
combination instead. Both go through the same fenced path as a manual action.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from errors import GameError
from game import ActionResult, Game, GameStatus
from hints import smallest_legal_play
from logging_config import game_context

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class TurnTimer:
    """Per-seat countdown that auto-acts when the seat's turn times out."""

    def __init__(
        self,
        service,
        game_id: str,
        seat: int,
        turn_time_seconds: float,
        sleep: Sleep = asyncio.sleep,
    ):
        self.service = service
        self.game_id = game_id
        self.seat = seat
        self.turn_time_seconds = turn_time_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._watched_turn: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def watched_turn(self) -> Optional[int]:
        return self._watched_turn

    def watch(self, game: Game) -> None:
        """
        Start, keep, or cancel the countdown for the latest game state.

        The countdown runs only while the game is in progress and it is this
        seat's turn; a new turn count restarts it.
        """
        if game.status != GameStatus.IN_PROGRESS or game.current_player != self.seat:
            self.cancel()
            return
        if self.running and self._watched_turn == game.turn_count:
            return

        self.cancel()
        self._watched_turn = game.turn_count
        self._task = asyncio.create_task(self._countdown(game.turn_count))
        logger.debug(f"Timer started for seat {self.seat} at turn {game.turn_count} ({self.turn_time_seconds}s)")

    def cancel(self) -> None:
        task = self._task
        # A countdown that is acting may trigger a watch() on itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._task = None
        self._watched_turn = None

    async def stop(self) -> None:
        """Cancel the countdown and wait for it to finish."""
        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _countdown(self, turn_count: int) -> None:
        await self._sleep(self.turn_time_seconds)
        with game_context(self.game_id):
            try:
                await self.expire(turn_count)
            except GameError as e:
                logger.warning(f"Timeout action failed for seat {self.seat}: {e.message}")

    async def expire(self, turn_count: int) -> Optional[ActionResult]:
        """
        Act for the seat if the game is still at ``turn_count``.

        Returns:
            The result of the pass or play, or None when the turn had
            already moved on or nothing was playable.
        """
        game = await self.service.get_game(self.game_id)
        if (
            game.status != GameStatus.IN_PROGRESS
            or game.turn_count != turn_count
            or game.current_player != self.seat
        ):
            logger.debug(f"Timer for seat {self.seat} expired after turn {turn_count} moved on")
            return None

        if game.last_play:
            result = await self.service.submit_pass(self.game_id, self.seat, turn_count)
            action = "pass"
        else:
            player = game.player_at(self.seat)
            cards = smallest_legal_play(
                player.hand,
                [],
                len(game.active_players),
                opening_play=game.is_first_play,
                options=game.options,
            )
            if cards is None:
                logger.warning(f"Seat {self.seat} timed out on lead with no legal play in game {self.game_id}")
                return None
            result = await self.service.submit_play(self.game_id, self.seat, cards, turn_count)
            action = "play"

        if result.accepted:
            logger.info(f"Seat {self.seat} timed out at turn {turn_count}; auto-{action}")
        else:
            logger.info(f"Auto-{action} for seat {self.seat} rejected: {result.reason.value}")
        return result
