"""
Tests for client reconciliation.

These tests cover:
- Exponential backoff and the retry budget
- Server-wins snapshots and change notifications
- The offline queue: capping, replay, and discarding stale operations
- Network quality probes
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from config import SyncSettings
from errors import GameError, RejectReason, StoreUnavailableError
from services.game_service import GameService
from services.sync_service import (
    GameSyncSession,
    MessageType,
    NetworkMonitor,
    NetworkStatus,
    OperationType,
    SyncStatus,
    backoff_delay,
)
from stores.memory_store import InMemoryGameStore


class FlakyService(GameService):
    """GameService whose next ``failures`` reads time out."""

    def __init__(self, store):
        super().__init__(store)
        self.failures = 0

    async def get_game_details(self, game_id):
        if self.failures:
            self.failures -= 1
            raise StoreUnavailableError("timeout")
        return await super().get_game_details(game_id)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def never(_seconds):
    await asyncio.Event().wait()


class HangingSleep:
    """Records each delay, then never returns."""

    def __init__(self):
        self.delays = []
        self.called = asyncio.Event()

    async def __call__(self, seconds):
        self.delays.append(seconds)
        self.called.set()
        await asyncio.Event().wait()


SETTINGS = SyncSettings(max_retries=2, base_delay_seconds=1.0, max_delay_seconds=10.0)


async def make_session(sleep=None, settings=SETTINGS):
    service = FlakyService(InMemoryGameStore())
    game = await service.create_game("t", "alice", preset="casual")
    await service.join_game(game.game_id, "bob")
    await service.start_game(game.game_id, "alice", seed=13)
    session = GameSyncSession(service, game.game_id, "alice", settings=settings, sleep=sleep or SleepRecorder())
    return service, session


def drain(session):
    messages = []
    while not session.messages.empty():
        messages.append(session.messages.get_nowait())
    return messages


def of_type(messages, message_type):
    return [m for m in messages if m.type == message_type]


# =============================================================================
# Retry
# =============================================================================

class TestRetry:

    def test_backoff_schedule(self):
        assert [backoff_delay(a, 1.0, 10.0) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    @pytest.mark.asyncio
    async def test_recovers_within_budget(self):
        sleep = SleepRecorder()
        service, session = await make_session(sleep)
        service.failures = 2

        assert await session.sync_with_retry()

        assert sleep.delays == [1.0, 2.0]
        assert session.status == SyncStatus.SYNCED
        assert session.failures == 0
        assert session.monitor.status == NetworkStatus.ONLINE
        assert session.game.turn_count == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        sleep = SleepRecorder()
        service, session = await make_session(sleep)
        service.failures = 10

        assert not await session.sync_with_retry()

        assert sleep.delays == [1.0, 2.0]
        assert session.status == SyncStatus.FAILED
        assert session.offline
        failed = of_type(drain(session), MessageType.SYNC_FAILED)
        assert failed[0].error["code"] == "sync_failed"

    @pytest.mark.asyncio
    async def test_missing_game_is_not_retried(self):
        sleep = SleepRecorder()
        service, _ = await make_session(sleep)
        session = GameSyncSession(service, "nope", "alice", settings=SETTINGS, sleep=sleep)

        assert not await session.sync_with_retry()

        assert sleep.delays == []
        errors = of_type(drain(session), MessageType.ERROR)
        assert errors[0].error["code"] == "game_not_found"

    @pytest.mark.asyncio
    async def test_reconnect_restarts_loop(self):
        service, session = await make_session()
        service.failures = 10
        await session.start()
        await session._task
        assert session.status == SyncStatus.FAILED

        service.failures = 0
        drain(session)
        await session.reconnect()
        message = await asyncio.wait_for(session.messages.get(), 1)
        while message.type != MessageType.STATE:
            message = await asyncio.wait_for(session.messages.get(), 1)

        assert session.running
        assert session.game.turn_count == 0
        await session.stop()


# =============================================================================
# Snapshot
# =============================================================================

class TestSnapshot:

    @pytest.mark.asyncio
    async def test_session_lifecycle(self):
        service, session = await make_session(never)

        async with session:
            message = await asyncio.wait_for(session.messages.get(), 1)
            while message.type != MessageType.STATE:
                message = await asyncio.wait_for(session.messages.get(), 1)
            assert message.state["players"][0]["cards"] is not None
            assert message.state["players"][1]["cards"] is None

        assert not session.running
        assert service.store.subscriber_count(session.game_id) == 0

    @pytest.mark.asyncio
    async def test_remote_change_replaces_snapshot(self):
        service, session = await make_session()
        await session.full_sync()
        session._unsubscribe = await service.subscribe_to_game(session.game_id, session._on_change)
        drain(session)

        alice = session.game.get_player("alice")
        await service.submit_play(session.game_id, alice.position, [alice.hand[0]], 0)

        states = of_type(drain(session), MessageType.STATE)
        assert states[-1].state["turn_count"] == 1
        assert session.game.turn_count == 1
        await session.stop()


# =============================================================================
# Offline queue
# =============================================================================

class TestOfflineQueue:

    @pytest.mark.asyncio
    async def test_actions_queue_while_offline(self):
        _, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()

        card = session.game.get_player("alice").hand[0]
        assert await session.play([card]) is None

        assert len(session.queue) == 1
        op = session.queue[0]
        assert op.type == OperationType.PLAY
        assert op.expected_turn_count == 0
        assert op.cards == [card]

    @pytest.mark.asyncio
    async def test_unreachable_store_queues_action(self):
        service, session = await make_session()
        await session.full_sync()
        service.submit_pass = AsyncMock(side_effect=StoreUnavailableError("timeout"))

        assert await session.pass_turn() is None

        assert session.queue[0].type == OperationType.PASS
        assert session.monitor.status == NetworkStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_queue_is_capped(self):
        _, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()

        for _ in range(51):
            session.enqueue(OperationType.PASS)

        assert len(session.queue) == 30
        assert [op.timestamp for op in session.queue] == list(range(22, 52))

    @pytest.mark.asyncio
    async def test_replay_applies_then_discards_stale(self):
        service, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()
        hand = session.game.get_player("alice").hand

        await session.play([hand[0]])
        await session.play([hand[1]])
        drain(session)

        await session.full_sync()

        messages = drain(session)
        applied = of_type(messages, MessageType.APPLIED)
        discarded = of_type(messages, MessageType.DISCARDED)
        assert [m.operation.cards for m in applied] == [[hand[0]]]
        assert discarded[0].reason == "stale_turn"
        assert session.queue == []
        assert (await service.get_game(session.game_id)).turn_count == 1

    @pytest.mark.asyncio
    async def test_replay_stops_when_store_drops(self):
        service, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()
        hand = session.game.get_player("alice").hand
        await session.play([hand[0]])
        await session.reorder_hand(list(reversed(hand)))

        service.submit_play = AsyncMock(side_effect=StoreUnavailableError("timeout"))
        with pytest.raises(StoreUnavailableError):
            await session.full_sync()

        assert [op.type for op in session.queue] == [OperationType.PLAY, OperationType.HAND_UPDATE]

    @pytest.mark.asyncio
    async def test_reread_failure_after_replay_keeps_later_operations(self):
        service, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()
        hand = session.game.get_player("alice").hand
        await session.play([hand[0]])
        await session.reorder_hand(list(reversed(hand)))
        drain(session)

        service.get_game = AsyncMock(side_effect=StoreUnavailableError("timeout"))
        with pytest.raises(StoreUnavailableError):
            await session.full_sync()

        applied = of_type(drain(session), MessageType.APPLIED)
        assert [m.operation.type for m in applied] == [OperationType.PLAY]
        assert [op.type for op in session.queue] == [OperationType.HAND_UPDATE]

    @pytest.mark.asyncio
    async def test_hand_order_shown_locally_then_stored(self):
        service, session = await make_session()
        await session.full_sync()
        session.monitor.mark_offline()
        hand = session.game.get_player("alice").hand
        reordered = list(reversed(hand))

        assert await session.reorder_hand(reordered)
        assert session.game.get_player("alice").hand == reordered

        await session.full_sync()

        assert of_type(drain(session), MessageType.APPLIED)
        details = await service.get_game_details(session.game_id)
        assert [row.to_card() for row in details.player("alice").cards] == reordered

    @pytest.mark.asyncio
    async def test_spectator_cannot_queue(self):
        service, session = await make_session()
        viewer = GameSyncSession(service, session.game_id, None, settings=SETTINGS, sleep=SleepRecorder())
        await viewer.full_sync()
        with pytest.raises(GameError) as exc:
            viewer.enqueue(OperationType.PASS)
        assert exc.value.code == RejectReason.NOT_A_PLAYER.value


# =============================================================================
# Sync cadence
# =============================================================================

class TestCadence:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("network,expected", [
        (NetworkStatus.ONLINE, 5.0),
        (NetworkStatus.UNSTABLE, 10.0),
    ])
    async def test_tick_interval_follows_network_quality(self, network, expected):
        sleep = HangingSleep()
        _, session = await make_session(sleep, settings=SyncSettings(interval_seconds=5.0))
        session.monitor.status = network

        await session.start()
        await asyncio.wait_for(sleep.called.wait(), 1)

        assert sleep.delays == [expected]
        await session.stop()


# =============================================================================
# Network quality
# =============================================================================

class TestNetworkMonitor:

    @pytest.mark.asyncio
    async def test_slow_probe_is_unstable(self):
        store = MagicMock()
        store.check_connection = AsyncMock()
        clock = MagicMock(side_effect=[0.0, 5.0, 5.0])

        monitor = NetworkMonitor(store, unstable_latency_ms=3000, clock=clock)

        assert await monitor.probe() == NetworkStatus.UNSTABLE
        assert monitor.latency_ms == 5000.0

    @pytest.mark.asyncio
    async def test_fast_probe_is_online(self):
        store = MagicMock()
        store.check_connection = AsyncMock()
        clock = MagicMock(side_effect=[0.0, 0.2, 0.2])

        monitor = NetworkMonitor(store, unstable_latency_ms=3000, clock=clock)

        assert await monitor.probe() == NetworkStatus.ONLINE
        assert monitor.last_probe == 0.2

    @pytest.mark.asyncio
    async def test_failed_probe_is_offline(self):
        store = MagicMock()
        store.check_connection = AsyncMock(side_effect=StoreUnavailableError("down"))
        monitor = NetworkMonitor(store, unstable_latency_ms=3000, clock=MagicMock(return_value=1.0))

        assert await monitor.probe() == NetworkStatus.OFFLINE
        assert monitor.latency_ms is None
