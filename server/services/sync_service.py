"""
Client-side reconciliation with the authoritative game state.

A GameSyncSession follows one game on behalf of one viewer. It runs as a
single asyncio task that owns its retry and cancellation state and reports
to the UI through ``session.messages``, an asyncio.Queue of SyncMessage.

Reconciliation is server-wins. Every sync replaces the local snapshot with
what storage holds, then replays operations queued while offline. A queued
play or pass is replayed only if it is still the viewer's turn at the turn
count the player saw; anything else is discarded and reported, never merged.

Connectivity:
    - NetworkMonitor probes the store. A slow round trip marks the link
      unstable (sync interval doubles); a failure marks it offline (no sync
      attempts, only probes).
    - Failed syncs back off exponentially. After the retry budget is spent
      the session reports ``sync_failed`` and stops syncing until
      ``reconnect()``.

Usage:
    async with GameSyncSession(service, game_id, "alice") as session:
        message = await session.messages.get()
        await session.play(cards)
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from cards import Card, cards_to_dicts
from config import SyncSettings, config
from errors import GameError, RejectReason, StoreUnavailableError, SyncFailedError
from game import ActionResult, Game, GameStatus
from logging_config import get_logger
from models.game_state import GameDetails
from services.turn_timer import TurnTimer

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class OperationType(str, Enum):
    PLAY = "play"
    PASS = "pass"
    HAND_UPDATE = "hand_update"


class NetworkStatus(str, Enum):
    ONLINE = "online"
    UNSTABLE = "unstable"
    OFFLINE = "offline"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    FAILED = "failed"


class MessageType(str, Enum):
    STATE = "state"
    STATUS = "status"
    NETWORK = "network"
    APPLIED = "applied"
    DISCARDED = "discarded"
    SYNC_FAILED = "sync_failed"
    ERROR = "error"


@dataclass
class OfflineOperation:
    """An action taken while the store could not be reached."""

    type: OperationType
    seat: int
    player_name: str
    expected_turn_count: int
    cards: list[Card] = field(default_factory=list)
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "seat": self.seat,
            "player_name": self.player_name,
            "expected_turn_count": self.expected_turn_count,
            "cards": cards_to_dicts(self.cards),
            "timestamp": self.timestamp,
        }


@dataclass
class SyncMessage:
    """Notification for the UI."""

    type: MessageType
    state: Optional[dict] = None
    status: Optional[SyncStatus] = None
    network: Optional[NetworkStatus] = None
    operation: Optional[OfflineOperation] = None
    reason: Optional[str] = None
    error: Optional[dict] = None

    def to_dict(self) -> dict:
        data = {"type": self.type.value}
        if self.state is not None:
            data["state"] = self.state
        if self.status is not None:
            data["status"] = self.status.value
        if self.network is not None:
            data["network"] = self.network.value
        if self.operation is not None:
            data["operation"] = self.operation.to_dict()
        if self.reason is not None:
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error
        return data


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt, capped."""
    return min(base * (2 ** attempt), maximum)


class NetworkMonitor:
    """Classifies the link to the store from probe round trips."""

    def __init__(self, store, unstable_latency_ms: float, clock: Clock = time.monotonic):
        self.store = store
        self.unstable_latency_ms = unstable_latency_ms
        self._clock = clock
        self.status = NetworkStatus.ONLINE
        self.latency_ms: Optional[float] = None
        self.last_probe: Optional[float] = None

    async def probe(self) -> NetworkStatus:
        started = self._clock()
        try:
            await self.store.check_connection()
        except StoreUnavailableError as e:
            logger.debug(f"Connection probe failed: {e.message}")
            self.status = NetworkStatus.OFFLINE
            self.latency_ms = None
        else:
            self.latency_ms = (self._clock() - started) * 1000
            if self.latency_ms > self.unstable_latency_ms:
                self.status = NetworkStatus.UNSTABLE
            else:
                self.status = NetworkStatus.ONLINE
        self.last_probe = self._clock()
        return self.status

    def mark_offline(self) -> None:
        self.status = NetworkStatus.OFFLINE


class GameSyncSession:
    """Keeps one viewer's snapshot of a game reconciled with storage."""

    def __init__(
        self,
        service,
        game_id: str,
        viewer: Optional[str] = None,
        *,
        settings: Optional[SyncSettings] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.service = service
        self.game_id = game_id
        self.viewer = viewer
        self.settings = settings or config.sync
        self._sleep = sleep
        self._clock = clock

        self.messages: asyncio.Queue[SyncMessage] = asyncio.Queue()
        self.game: Optional[Game] = None
        self.queue: list[OfflineOperation] = []
        self.status = SyncStatus.SYNCED
        self.failures = 0
        self.monitor = NetworkMonitor(service.store, self.settings.unstable_latency_ms, clock)
        self.timer: Optional[TurnTimer] = None

        self._timestamps = itertools.count(1)
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = None
        self.log = get_logger(__name__).with_context(game_id=game_id, player_name=viewer)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> "GameSyncSession":
        """Subscribe to changes and start the sync loop."""
        if self._unsubscribe is None:
            self._unsubscribe = await self.service.subscribe_to_game(self.game_id, self._on_change)
        if not self.running:
            self._task = asyncio.create_task(self._run())
        return self

    async def stop(self) -> None:
        """Cancel the loop and timer and drop the change subscription."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self.timer is not None:
            await self.timer.stop()

        if self._unsubscribe is not None:
            await self._unsubscribe()
            self._unsubscribe = None
        self.log.debug("Sync session stopped")

    async def reconnect(self) -> None:
        """Clear the failure state and sync again right away."""
        self.failures = 0
        self.status = SyncStatus.SYNCED
        self.monitor.status = NetworkStatus.ONLINE
        self.log.info("Reconnecting")
        if self.running:
            self._wake.set()
        else:
            self._task = asyncio.create_task(self._run())

    async def __aenter__(self) -> "GameSyncSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Sync loop
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        if not await self.sync_with_retry():
            return

        while True:
            interval = self.settings.interval_seconds
            if self.monitor.status == NetworkStatus.UNSTABLE:
                interval *= 2
            await self._wait(interval)

            if self._should_probe():
                previous = self.monitor.status
                network = await self.monitor.probe()
                if network != previous:
                    self.log.info(f"Network {previous.value} -> {network.value}")
                    self._emit(SyncMessage(MessageType.NETWORK, network=network))
            if self.monitor.status == NetworkStatus.OFFLINE:
                continue

            if not await self.sync_with_retry():
                return

    def _should_probe(self) -> bool:
        if self.monitor.status == NetworkStatus.OFFLINE or self.monitor.last_probe is None:
            return True
        return self._clock() - self.monitor.last_probe >= self.settings.quality_check_seconds

    async def _wait(self, timeout: float) -> None:
        """Sleep for ``timeout`` or until a change notification arrives."""
        if self._wake.is_set():
            self._wake.clear()
            return

        sleeper = asyncio.ensure_future(self._sleep(timeout))
        waker = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()
        self._wake.clear()

    async def sync_with_retry(self) -> bool:
        """
        Run ``full_sync`` with exponential backoff on connectivity failures.

        Returns:
            True once a sync succeeds; False when retries are exhausted or
            the game cannot be read at all (the session is then ``failed``).
        """
        attempt = 0
        while True:
            try:
                await self.full_sync()
                return True
            except StoreUnavailableError as e:
                self.failures += 1
                self.monitor.mark_offline()
                if attempt >= self.settings.max_retries:
                    self._fail(SyncFailedError(attempt + 1))
                    return False
                delay = backoff_delay(attempt, self.settings.base_delay_seconds, self.settings.max_delay_seconds)
                self.log.warning(f"Sync attempt {attempt + 1} failed ({e.message}); retrying in {delay}s")
                attempt += 1
                await self._sleep(delay)
            except GameError as e:
                self._fail(e)
                return False

    def _fail(self, error: GameError) -> None:
        self.status = SyncStatus.FAILED
        self.log.error(f"Sync failed: {error.message}")
        message_type = MessageType.SYNC_FAILED if isinstance(error, SyncFailedError) else MessageType.ERROR
        self._emit(SyncMessage(message_type, status=self.status, error=error.to_dict()))

    async def full_sync(self) -> Game:
        """
        Replace the local snapshot with storage, then replay queued operations.

        Raises:
            StoreUnavailableError: If storage cannot be reached.
            GameError: If the game is missing or its rows do not decode.
        """
        self._set_status(SyncStatus.SYNCING)
        details = await self.service.get_game_details(self.game_id)
        self._apply(details.to_game())
        if self.monitor.status == NetworkStatus.OFFLINE:
            self.monitor.status = NetworkStatus.ONLINE

        if self.queue:
            await self._replay()

        self.failures = 0
        self._set_status(SyncStatus.SYNCED)
        return self.game

    async def _replay(self) -> None:
        pending = sorted(self.queue, key=lambda op: op.timestamp)
        self.queue = []

        for index, op in enumerate(pending):
            keep_from = index
            try:
                if op.type == OperationType.HAND_UPDATE:
                    if await self.service.reorder_hand(self.game_id, op.player_name, op.cards):
                        self._emit(SyncMessage(MessageType.APPLIED, operation=op))
                    else:
                        self._discard(op, "hand changed on server")
                    continue

                reason = self._replay_blocker(op)
                if reason is not None:
                    self._discard(op, reason)
                    continue

                result = await self._submit(op)
                if not result.accepted:
                    self._discard(op, result.reason.value)
                    continue

                keep_from = index + 1
                self._emit(SyncMessage(MessageType.APPLIED, operation=op))
                # Later operations are checked against the state this one produced
                self._apply(await self.service.get_game(self.game_id))
            except StoreUnavailableError:
                # Every operation not yet applied waits for the next attempt
                self.queue = pending[keep_from:] + self.queue
                self.log.warning(f"Replay interrupted; {len(self.queue)} queued operation(s) kept")
                raise

    def _replay_blocker(self, op: OfflineOperation) -> Optional[str]:
        game = self.game
        if game.status != GameStatus.IN_PROGRESS:
            return RejectReason.GAME_NOT_IN_PROGRESS.value
        if game.turn_count != op.expected_turn_count:
            return RejectReason.STALE_TURN.value
        if game.current_player != op.seat:
            return RejectReason.NOT_YOUR_TURN.value
        return None

    async def _submit(self, op: OfflineOperation) -> ActionResult:
        if op.type == OperationType.PLAY:
            return await self.service.submit_play(self.game_id, op.seat, op.cards, op.expected_turn_count)
        return await self.service.submit_pass(self.game_id, op.seat, op.expected_turn_count)

    def _discard(self, op: OfflineOperation, reason: str) -> None:
        self.log.info(f"Discarded queued {op.type.value} from turn {op.expected_turn_count}: {reason}")
        self._emit(SyncMessage(MessageType.DISCARDED, operation=op, reason=reason))

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    async def _on_change(self, details: GameDetails) -> None:
        self._apply(details.to_game())
        if self.queue:
            self._wake.set()

    def _apply(self, game: Game) -> None:
        self.game = game
        self._emit(SyncMessage(MessageType.STATE, state=game.get_state(self.viewer)))
        self._watch_timer(game)

    def _watch_timer(self, game: Game) -> None:
        if not (game.options.timer_enabled and game.options.auto_pass):
            return
        player = game.get_player(self.viewer) if self.viewer else None
        if player is None or not player.is_seated:
            return
        if self.timer is None:
            self.timer = TurnTimer(
                self.service,
                self.game_id,
                player.position,
                game.options.turn_time_seconds,
                sleep=self._sleep,
            )
        self.timer.watch(game)

    def _set_status(self, status: SyncStatus) -> None:
        if status != self.status:
            self.status = status
            self._emit(SyncMessage(MessageType.STATUS, status=status))

    def _emit(self, message: SyncMessage) -> None:
        self.messages.put_nowait(message)

    # -------------------------------------------------------------------------
    # Player actions
    # -------------------------------------------------------------------------

    @property
    def offline(self) -> bool:
        return self.monitor.status == NetworkStatus.OFFLINE or self.status == SyncStatus.FAILED

    def _seat(self) -> int:
        player = self.game.get_player(self.viewer) if self.game and self.viewer else None
        if player is None or not player.is_seated:
            raise GameError(RejectReason.NOT_A_PLAYER.value)
        return player.position

    def enqueue(
        self,
        op_type: OperationType,
        cards: Iterable[Card] = (),
        expected_turn_count: Optional[int] = None,
    ) -> OfflineOperation:
        """Queue an operation for replay on the next successful sync."""
        op = OfflineOperation(
            type=op_type,
            seat=self._seat(),
            player_name=self.viewer,
            expected_turn_count=self.game.turn_count if expected_turn_count is None else expected_turn_count,
            cards=list(cards),
            timestamp=next(self._timestamps),
        )
        self.queue.append(op)

        if len(self.queue) > self.settings.queue_limit:
            dropped = len(self.queue) - self.settings.queue_trim_to
            self.queue = self.queue[-self.settings.queue_trim_to:]
            self.log.warning(f"Offline queue over {self.settings.queue_limit}; dropped {dropped} oldest")
        return op

    async def play(self, cards: Iterable[Card]) -> Optional[ActionResult]:
        """
        Play cards at the snapshot's turn count.

        Returns:
            The server's result, or None when the play was queued offline.
        """
        cards = list(cards)
        seat = self._seat()
        if self.offline:
            self.enqueue(OperationType.PLAY, cards)
            return None
        try:
            result = await self.service.submit_play(self.game_id, seat, cards, self.game.turn_count)
        except StoreUnavailableError:
            self.monitor.mark_offline()
            self.enqueue(OperationType.PLAY, cards)
            return None
        self._wake.set()
        return result

    async def pass_turn(self) -> Optional[ActionResult]:
        """Pass at the snapshot's turn count, or queue the pass offline."""
        seat = self._seat()
        if self.offline:
            self.enqueue(OperationType.PASS)
            return None
        try:
            result = await self.service.submit_pass(self.game_id, seat, self.game.turn_count)
        except StoreUnavailableError:
            self.monitor.mark_offline()
            self.enqueue(OperationType.PASS)
            return None
        self._wake.set()
        return result

    async def reorder_hand(self, cards: Iterable[Card]) -> bool:
        """
        Rearrange the viewer's hand.

        The new order is shown locally at once; storage gets it now or on
        the next sync.
        """
        cards = list(cards)
        self._seat()
        player = self.game.get_player(self.viewer)
        if len(cards) != len(player.hand) or set(cards) != set(player.hand):
            return False
        player.hand = cards

        if self.offline:
            self.enqueue(OperationType.HAND_UPDATE, cards)
            return True
        try:
            return await self.service.reorder_hand(self.game_id, self.viewer, cards)
        except StoreUnavailableError:
            self.monitor.mark_offline()
            self.enqueue(OperationType.HAND_UPDATE, cards)
            return True
