"""
Turn-count fencing for game state writes.

Every mutation follows the same path: load the current rows, rebuild a
``Game``, apply the action to it, then persist with a conditional write that
only succeeds if the stored ``turn_count`` (and status) are still the ones
the action was applied against. A losing writer gets a ``stale_turn``
rejection and must re-read before trying again; the guard never retries.
"""

import logging
from typing import Callable, Optional

from errors import ConcurrencyError, DataIntegrityError, RejectReason
from game import ActionResult, Game, GameStatus
from models.game_state import decode_details
from stores.game_store import GameStore

logger = logging.getLogger(__name__)

Action = Callable[[Game], ActionResult]
Transition = Callable[[Game], None]


class TurnGuard:
    """Applies actions to fresh state and commits them with a turn-count fence."""

    def __init__(self, store: GameStore, verify_integrity: bool = True):
        self.store = store
        self.verify_integrity = verify_integrity

    async def load(self, game_id: str) -> Game:
        """Read and decode the current state of a game."""
        raw = await self.store.get_game_details(game_id)
        return decode_details(raw).to_game()

    def _check(self, game: Game) -> None:
        if not self.verify_integrity:
            return
        try:
            game.verify_integrity()
        except DataIntegrityError as e:
            logger.error(f"Integrity check failed for game {game.game_id}: {e.message}")
            raise

    async def commit(self, game_id: str, action: Action, expected_turn_count: int) -> ActionResult:
        """
        Apply a turn action and persist it if nobody moved first.

        Args:
            game_id: Game to act on.
            action: Callable applying a play or pass to a ``Game``.
            expected_turn_count: Turn count the client acted on.

        Returns:
            The action's result. A lost race is reported as a ``stale_turn``
            rejection.

        Raises:
            DataIntegrityError: If the resulting state does not reconcile.
        """
        game = await self.load(game_id)
        result = action(game)
        if not result.accepted:
            logger.debug(f"Rejected action in game {game_id}: {result.reason.value}")
            return result

        self._check(game)

        hands = None
        entry = result.entry
        if entry is not None and not entry.is_pass:
            hands = {entry.player_name: game.hand_updates()[entry.player_name]}

        try:
            await self.store.update_game_state(
                game_id,
                game.state_fields(),
                expected_turn_count=expected_turn_count,
                expected_status=GameStatus.IN_PROGRESS.value,
                hands=hands,
            )
        except ConcurrencyError as e:
            logger.info(f"Stale commit in game {game_id} at turn {expected_turn_count}: {e.message}")
            return ActionResult.reject(RejectReason.STALE_TURN)

        logger.debug(f"Committed turn {game.turn_count} in game {game_id}")
        return result

    async def transition(
        self,
        game_id: str,
        mutate: Transition,
        *,
        expected_status: Optional[GameStatus] = None,
    ) -> Game:
        """
        Apply a lifecycle change (start, end, reset) under the same fence.

        The write is conditioned on the turn count and status the change was
        applied to, and rewrites every player's hand.

        Raises:
            GameError: From ``mutate`` when the change is not allowed.
            ConcurrencyError: If the game moved on before the write.
        """
        game = await self.load(game_id)
        if expected_status is not None and game.status != expected_status:
            raise ConcurrencyError(f"Game {game_id} is {game.status.value}, expected {expected_status.value}")

        before_turn = game.turn_count
        before_status = game.status
        mutate(game)
        self._check(game)

        await self.store.update_game_state(
            game_id,
            game.state_fields(),
            expected_turn_count=before_turn,
            expected_status=before_status.value,
            hands=game.hand_updates(),
        )
        logger.info(f"Game {game_id}: {before_status.value} -> {game.status.value}")
        return game
