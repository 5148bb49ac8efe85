"""
Tests for GameService and TurnGuard over the in-memory store.

These tests cover:
- Lobby: create, join, seats, spectators, host-only operations
- Turns: plays and passes persisted through the turn-count fence
- Concurrency: two writers on the same turn, exactly one wins
- Leaving a game, and cleanup of expired games
- Hand reordering, hints, and the change-feed subscription
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from errors import (
    ConcurrencyError,
    DataIntegrityError,
    GameError,
    GameNotFoundError,
    LobbyErrorCode,
    RejectReason,
)
from game import GameStatus
from models.game_state import GameDetails
from services.game_service import GameService
from stores.memory_store import InMemoryGameStore


class SlowReadStore(InMemoryGameStore):
    """Yields after every read so concurrent actions interleave."""

    async def get_game_details(self, game_id: str) -> dict:
        details = await super().get_game_details(game_id)
        await asyncio.sleep(0)
        return details


async def lobby(*names: str, store=None, **kwargs):
    service = GameService(store or InMemoryGameStore())
    kwargs.setdefault("preset", "casual")
    game = await service.create_game("table", names[0], **kwargs)
    for name in names[1:]:
        await service.join_game(game.game_id, name)
    return service, game.game_id


async def started(*names: str, seed: int = 7, **kwargs):
    service, game_id = await lobby(*names, **kwargs)
    game = await service.start_game(game_id, names[0], seed=seed)
    return service, game


# =============================================================================
# Lobby
# =============================================================================

class TestLobby:

    @pytest.mark.asyncio
    async def test_create_seats_host(self):
        service = GameService(InMemoryGameStore())
        game = await service.create_game(None, "alice")

        assert game.status == GameStatus.WAITING
        assert game.host_name == "alice"
        assert game.name == "alice's game"
        assert game.get_player("alice").position == 0
        assert game.options.require_opening_card

    @pytest.mark.asyncio
    async def test_create_applies_preset_and_overrides(self):
        service = GameService(InMemoryGameStore())
        game = await service.create_game("t", "alice", preset="fast", options={"turn_time_seconds": 20})
        assert game.options.timer_enabled
        assert game.options.turn_time_seconds == 20

    @pytest.mark.asyncio
    async def test_long_name_truncated(self):
        service = GameService(InMemoryGameStore())
        game = await service.create_game("x" * 50, "alice")
        assert len(game.name) == 30

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,code", [
        ({"preset": "blitz"}, LobbyErrorCode.UNKNOWN_PRESET),
        ({"max_players": 1}, LobbyErrorCode.NOT_ENOUGH_PLAYERS),
        ({"max_players": 5}, LobbyErrorCode.TOO_MANY_PLAYERS),
    ])
    async def test_create_rejects(self, kwargs, code):
        service = GameService(InMemoryGameStore())
        with pytest.raises(GameError) as exc:
            await service.create_game("t", "alice", **kwargs)
        assert exc.value.code == code.value

    @pytest.mark.asyncio
    async def test_join_fills_seats_then_spectates(self):
        service, game_id = await lobby("a", "b", max_players=2)
        carol = await service.join_game(game_id, "carol")

        assert carol.is_spectator
        row = await service.store.get_game(game_id)
        assert row["current_players"] == 2
        assert row["spectators"] == 1

    @pytest.mark.asyncio
    async def test_join_duplicate_name(self):
        service, game_id = await lobby("alice")
        with pytest.raises(GameError) as exc:
            await service.join_game(game_id, "alice")
        assert exc.value.code == LobbyErrorCode.NAME_TAKEN.value

    @pytest.mark.asyncio
    async def test_join_missing_game(self):
        service = GameService(InMemoryGameStore())
        with pytest.raises(GameNotFoundError):
            await service.join_game("nope", "alice")

    @pytest.mark.asyncio
    async def test_join_collision_is_retried(self):
        service, game_id = await lobby("alice")
        service.store.add_player = AsyncMock(side_effect=[ConcurrencyError("seat taken"), None])

        player = await service.join_game(game_id, "bob")

        assert player.position == 1
        assert service.store.add_player.await_count == 2

    @pytest.mark.asyncio
    async def test_join_gives_up(self):
        service, game_id = await lobby("alice")
        service.store.add_player = AsyncMock(side_effect=ConcurrencyError("seat taken"))
        with pytest.raises(ConcurrencyError):
            await service.join_game(game_id, "bob")
        assert service.store.add_player.await_count == GameService.JOIN_ATTEMPTS


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_deals_and_persists(self):
        service, game = await started("alice", "bob")
        assert game.status == GameStatus.IN_PROGRESS

        details = await service.get_game_details(game.game_id)
        assert details.status == GameStatus.IN_PROGRESS
        assert details.game.status == GameStatus.IN_PROGRESS
        assert [len(p.cards) for p in details.players] == [26, 26]

    @pytest.mark.asyncio
    async def test_only_host_starts(self):
        service, game_id = await lobby("alice", "bob")
        with pytest.raises(GameError) as exc:
            await service.start_game(game_id, "bob")
        assert exc.value.code == LobbyErrorCode.NOT_HOST.value

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self):
        service, game = await started("alice", "bob")
        with pytest.raises(ConcurrencyError):
            await service.start_game(game.game_id, "alice")

    @pytest.mark.asyncio
    async def test_end_and_new_game(self):
        service, game = await started("alice", "bob")

        ended = await service.end_game(game.game_id, "alice")
        assert ended.status == GameStatus.FINISHED

        fresh = await service.new_game(game.game_id, "alice", seed=3)
        assert fresh.status == GameStatus.IN_PROGRESS
        assert fresh.turn_count == 0
        assert fresh.play_history == []

    @pytest.mark.asyncio
    async def test_end_waiting_game(self):
        service, game_id = await lobby("alice", "bob")

        ended = await service.end_game(game_id, "alice")
        assert ended.status == GameStatus.FINISHED
        assert (await service.get_game(game_id)).status == GameStatus.FINISHED

        fresh = await service.new_game(game_id, "alice", seed=3)
        assert fresh.status == GameStatus.IN_PROGRESS
        assert [len(p.hand) for p in fresh.active_players] == [26, 26]

    @pytest.mark.asyncio
    async def test_new_game_requires_finished(self):
        service, game = await started("alice", "bob")
        with pytest.raises(ConcurrencyError):
            await service.new_game(game.game_id, "alice")

    @pytest.mark.asyncio
    async def test_same_seed_same_deal(self):
        _, first = await started("alice", "bob", seed=11)
        _, second = await started("alice", "bob", seed=11)
        assert first.player_at(0).hand == second.player_at(0).hand


# =============================================================================
# Turns
# =============================================================================

class TestTurns:

    @pytest.mark.asyncio
    async def test_play_is_persisted(self):
        service, game = await started("alice", "bob")
        seat = game.current_player
        card = game.player_at(seat).hand[0]

        result = await service.submit_play(game.game_id, seat, [card], 0)

        assert result.accepted
        stored = await service.get_game(game.game_id)
        assert stored.turn_count == 1
        assert stored.last_play == [card]
        assert card not in stored.player_at(seat).hand

    @pytest.mark.asyncio
    async def test_rejected_play_changes_nothing(self):
        service, game = await started("alice", "bob")
        other = game.next_seat(game.current_player)
        card = game.player_at(other).hand[0]

        result = await service.submit_play(game.game_id, other, [card], 0)

        assert result.reason == RejectReason.NOT_YOUR_TURN
        assert (await service.get_game(game.game_id)).turn_count == 0

    @pytest.mark.asyncio
    async def test_pass_on_lead_rejected(self):
        service, game = await started("alice", "bob")
        result = await service.submit_pass(game.game_id, game.current_player, 0)
        assert result.reason == RejectReason.CANNOT_PASS_ON_LEAD

    @pytest.mark.asyncio
    async def test_stale_expected_turn(self):
        service, game = await started("alice", "bob")
        seat = game.current_player
        hand = game.player_at(seat).hand

        await service.submit_play(game.game_id, seat, [hand[0]], 0)
        result = await service.submit_play(game.game_id, seat, [hand[1]], 0)

        assert result.reason == RejectReason.STALE_TURN

    @pytest.mark.asyncio
    async def test_concurrent_actions_one_wins(self):
        service, game_id = await lobby("alice", "bob", store=SlowReadStore())
        game = await service.start_game(game_id, "alice", seed=5)
        seat = game.current_player
        hand = game.player_at(seat).hand

        results = await asyncio.gather(
            service.submit_play(game_id, seat, [hand[0]], 0),
            service.submit_play(game_id, seat, [hand[1]], 0),
        )

        assert sorted(r.accepted for r in results) == [False, True]
        loser = next(r for r in results if not r.accepted)
        assert loser.reason == RejectReason.STALE_TURN

        stored = await service.get_game(game_id)
        assert stored.turn_count == 1
        assert len(stored.play_history) == 1
        stored.verify_integrity()

    @pytest.mark.asyncio
    async def test_play_through_to_winner(self):
        service, game = await started("alice", "bob", seed=21)
        game_id = game.game_id

        while game.status == GameStatus.IN_PROGRESS:
            seat = game.current_player
            if game.last_play:
                result = await service.submit_pass(game_id, seat, game.turn_count)
            else:
                result = await service.submit_play(game_id, seat, [game.player_at(seat).hand[0]], game.turn_count)
            assert result.accepted
            game = await service.get_game(game_id)

        assert game.status == GameStatus.FINISHED
        assert game.player_at(game.winner).hand == []
        assert game.turn_count == 51
        assert (await service.store.get_game(game_id))["status"] == "finished"

    @pytest.mark.asyncio
    async def test_four_player_round(self):
        service, game = await started("a", "b", "c", "d")
        game_id = game.game_id
        assert [len(p.hand) for p in game.active_players] == [13, 13, 13, 13]
        assert game.current_player == 0

        opener = game.player_at(0).hand[0]
        result = await service.submit_play(game_id, 0, [opener], 0)
        assert result.accepted
        game = await service.get_game(game_id)
        assert game.turn_count == 1
        assert game.last_play == [opener]
        assert game.current_player == 1

        for seat, expected in ((1, 1), (2, 2), (3, 3)):
            result = await service.submit_pass(game_id, seat, expected)
            assert result.accepted

        game = await service.get_game(game_id)
        assert game.last_play == []
        assert game.current_player == 0
        assert game.turn_count == 4
        assert len(game.player_at(0).hand) == 12

    @pytest.mark.asyncio
    async def test_corrupt_state_is_not_written(self):
        service, game = await started("alice", "bob")
        seat = game.current_player
        hand = game.player_at(seat).hand
        # The other hand disappears from storage
        await service.store.update_player_hand(game.game_id, "bob" if seat == 0 else "alice", [])

        with pytest.raises(DataIntegrityError):
            await service.submit_play(game.game_id, seat, [hand[0]], 0)
        assert (await service.get_game(game.game_id)).turn_count == 0


# =============================================================================
# Leaving and cleanup
# =============================================================================

class TestLeaving:

    @pytest.mark.asyncio
    async def test_spectator_leaves_running_game(self):
        service, game_id = await lobby("alice", "bob", max_players=2)
        await service.join_game(game_id, "carol")
        await service.start_game(game_id, "alice", seed=7)

        game = await service.leave_game(game_id, "carol")

        assert game.get_player("carol") is None
        assert game.status == GameStatus.IN_PROGRESS
        row = await service.store.get_game(game_id)
        assert row["spectators"] == 0
        assert row["current_players"] == 2

    @pytest.mark.asyncio
    async def test_host_leaving_lobby_hands_over(self):
        service, game_id = await lobby("alice", "bob", "carol")

        game = await service.leave_game(game_id, "alice")

        assert game.host_name == "bob"
        stored = await service.get_game(game_id)
        assert stored.host_name == "bob"
        assert [p.name for p in stored.active_players] == ["bob", "carol"]
        assert (await service.store.get_game(game_id))["current_players"] == 2

    @pytest.mark.asyncio
    async def test_seated_player_cannot_leave_after_deal(self):
        service, game = await started("alice", "bob")
        with pytest.raises(GameError) as exc:
            await service.leave_game(game.game_id, "bob")
        assert exc.value.code == LobbyErrorCode.INVALID_TRANSITION.value
        assert (await service.get_game(game.game_id)).get_player("bob") is not None

    @pytest.mark.asyncio
    async def test_unknown_player_cannot_leave(self):
        service, game_id = await lobby("alice")
        with pytest.raises(GameError) as exc:
            await service.leave_game(game_id, "zed")
        assert exc.value.code == RejectReason.NOT_A_PLAYER.value

    @pytest.mark.asyncio
    async def test_last_player_leaving_deletes_game(self):
        service, game_id = await lobby("alice")

        assert await service.leave_game(game_id, "alice") is None

        with pytest.raises(GameNotFoundError):
            await service.get_game(game_id)


class TestCleanup:

    @pytest.mark.asyncio
    async def test_expired_games_removed(self):
        service, finished = await started("alice", "bob")
        await service.end_game(finished.game_id, "alice")
        _, waiting = await lobby("carol", store=service.store)
        now = datetime.now(timezone.utc)

        assert await service.cleanup_expired(now) == []
        assert await service.cleanup_expired(now + timedelta(days=2)) == [finished.game_id]
        await service.get_game(waiting)
        assert await service.cleanup_expired(now + timedelta(days=4)) == [waiting]

        with pytest.raises(GameNotFoundError):
            await service.get_game(finished.game_id)
        with pytest.raises(GameNotFoundError):
            await service.get_game(waiting)

    @pytest.mark.asyncio
    async def test_in_progress_games_kept(self):
        service, game = await started("alice", "bob")
        later = datetime.now(timezone.utc) + timedelta(days=30)
        assert await service.cleanup_expired(later) == []
        await service.get_game(game.game_id)


# =============================================================================
# Hands, hints, subscriptions
# =============================================================================

class TestExtras:

    @pytest.mark.asyncio
    async def test_reorder_hand(self):
        service, game = await started("alice", "bob")
        hand = game.get_player("alice").hand
        reordered = list(reversed(hand))

        assert await service.reorder_hand(game.game_id, "alice", reordered)

        details = await service.get_game_details(game.game_id)
        assert [row.to_card() for row in details.player("alice").cards] == reordered
        assert details.turn_count == 0

    @pytest.mark.asyncio
    async def test_reorder_with_other_cards_refused(self):
        service, game = await started("alice", "bob")
        hand = game.get_player("alice").hand
        assert not await service.reorder_hand(game.game_id, "alice", hand[1:])

    @pytest.mark.asyncio
    async def test_reorder_unknown_player(self):
        service, game = await started("alice", "bob")
        with pytest.raises(GameError) as exc:
            await service.reorder_hand(game.game_id, "zed", [])
        assert exc.value.code == RejectReason.NOT_A_PLAYER.value

    @pytest.mark.asyncio
    async def test_hints_for_current_seat(self):
        service, game = await started("alice", "bob")
        hints = await service.request_hint(game.game_id, game.current_player, limit=3)
        assert 0 < len(hints) <= 3
        hand = game.player_at(game.current_player).hand
        assert all(set(h.cards) <= set(hand) for h in hints)

    @pytest.mark.asyncio
    async def test_no_hints_before_start(self):
        service, game_id = await lobby("alice", "bob")
        assert await service.request_hint(game_id, 0) == []

    @pytest.mark.asyncio
    async def test_subscription_delivers_fresh_details(self):
        service, game_id = await lobby("alice")
        callback = AsyncMock()
        unsubscribe = await service.subscribe_to_game(game_id, callback)

        await service.join_game(game_id, "bob")
        details = callback.call_args[0][0]
        assert isinstance(details, GameDetails)
        assert details.player("bob") is not None

        await unsubscribe()
        assert service.store.subscriber_count(game_id) == 0
        calls = callback.await_count
        await service.join_game(game_id, "carol")
        assert callback.await_count == calls
