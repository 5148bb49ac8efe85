"""
Storage interface for games, players, and game state.

The engine talks to storage only through GameStore. Reads return raw row
dicts (decoded by ``models.game_state``); the one write that matters for
correctness, ``update_game_state`` with ``expected_turn_count``, is a
single atomic conditional write in every backend.

Change notifications are hints, not deltas: subscribers get a ChangeEvent
and must re-read the rows they care about.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Optional

from errors import ConcurrencyError, GameNotFoundError, StoreUnavailableError
from models.events import ChangeEvent, Table

# Type alias for change handlers
ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]

# Returned by subscribe(); awaiting it removes the handler
Unsubscribe = Callable[[], Awaitable[None]]

__all__ = [
    "ChangeHandler",
    "ConcurrencyError",
    "GameNotFoundError",
    "GameStore",
    "StoreUnavailableError",
    "Unsubscribe",
]


class GameStore(ABC):
    """Abstract CRUD + subscribe interface over the three game tables."""

    # -------------------------------------------------------------------------
    # Games
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_game(self, fields: dict) -> dict:
        """
        Insert a game row.

        Args:
            fields: Column values; ``id`` is generated when absent.

        Returns:
            The stored game row.
        """

    @abstractmethod
    async def get_game(self, game_id: str) -> dict:
        """
        Raises:
            GameNotFoundError: If no such game.
        """

    @abstractmethod
    async def get_game_details(self, game_id: str) -> dict:
        """
        Joined read: ``{"game": ..., "players": [...], "game_state": ... | None}``.

        Raises:
            GameNotFoundError: If no such game.
        """

    @abstractmethod
    async def update_game(self, game_id: str, fields: dict) -> dict:
        """Merge ``fields`` into the game row and return it."""

    @abstractmethod
    async def delete_game(self, game_id: str) -> None:
        """Delete a game with its players and state. Unknown ids are ignored."""

    @abstractmethod
    async def delete_expired_games(self, finished_before: datetime, waiting_before: datetime) -> list[str]:
        """
        Delete stale games, then any player or state rows left without a game.

        A finished game expires when it was last updated before
        ``finished_before``; a game still waiting expires when it was created
        before ``waiting_before``.

        Returns:
            Ids of the deleted games.
        """

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_players(self, game_id: str) -> list[dict]:
        """Player rows for a game, seated players first by position."""

    @abstractmethod
    async def add_player(self, fields: dict) -> dict:
        """
        Insert a player row.

        Raises:
            ConcurrencyError: If the name, or a seated position, is already
                taken in that game.
        """

    @abstractmethod
    async def remove_player(
        self,
        game_id: str,
        player_name: str,
        *,
        expected_status: Optional[str] = None,
    ) -> None:
        """
        Delete a player row, optionally only while the game has a given status.

        Raises:
            ConcurrencyError: If ``expected_status`` no longer holds.
            GameNotFoundError: If the game has no player by that name.
        """

    @abstractmethod
    async def update_player_hand(self, game_id: str, player_name: str, hand: list[dict]) -> None:
        """Replace one player's stored hand."""

    # -------------------------------------------------------------------------
    # Game state
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_game_state(self, game_id: str, fields: dict) -> dict:
        """Insert the game's single state row."""

    @abstractmethod
    async def get_game_state(self, game_id: str) -> Optional[dict]:
        """The state row, or None if it has not been created."""

    @abstractmethod
    async def update_game_state(
        self,
        game_id: str,
        fields: dict,
        *,
        expected_turn_count: Optional[int] = None,
        expected_status: Optional[str] = None,
        hands: Optional[dict[str, list[dict]]] = None,
    ) -> dict:
        """
        Write state fields, and optionally hands, in one atomic step.

        When ``expected_turn_count`` or ``expected_status`` is given, the
        write only happens if the stored row still has those values. A
        ``status`` field is mirrored onto the game row in the same step.

        Args:
            game_id: Game to update.
            fields: State columns to set.
            expected_turn_count: Precondition on the stored turn count.
            expected_status: Precondition on the stored status.
            hands: Player name -> hand, written with the state.

        Returns:
            The updated state row.

        Raises:
            ConcurrencyError: If a precondition does not hold.
            GameNotFoundError: If the state row does not exist.
        """

    # -------------------------------------------------------------------------
    # Change feed & lifecycle
    # -------------------------------------------------------------------------

    @abstractmethod
    async def subscribe(self, table: Table, game_id: str, handler: ChangeHandler) -> Unsubscribe:
        """
        Call ``handler`` whenever a row of ``table`` for ``game_id`` changes.

        Returns:
            An async callable that removes the subscription.
        """

    @abstractmethod
    async def check_connection(self) -> None:
        """
        Round-trip to storage.

        Raises:
            StoreUnavailableError: If storage cannot be reached.
        """

    async def close(self) -> None:
        """Release connections. Subclasses override when they hold any."""
