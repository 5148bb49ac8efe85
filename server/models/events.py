"""
Play history entries and storage change notifications.

PlayHistoryEntry is the append-only audit trail of a game: one entry per
accepted play or pass, numbered by the turn count it produced. Entries are
never edited after they are written.

ChangeEvent is what the storage change feed delivers. It only says that a
row for a game changed; receivers always re-fetch authoritative state
instead of trusting a payload.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from cards import Card, cards_from_dicts, cards_to_dicts
from combinations import Combination
from errors import DataIntegrityError


class PlayType(str, Enum):
    """History label for an accepted action."""

    PASS = "pass"
    SINGLE = "single"
    PAIR = "pair"
    TRIPLE = "triple"
    STRAIGHT = "straight"
    FLUSH = "flush"
    FULL_HOUSE = "full_house"
    FOUR_OF_A_KIND = "four_of_a_kind"
    STRAIGHT_FLUSH = "straight_flush"


class Table(str, Enum):
    """Stored tables that emit change notifications."""

    GAMES = "games"
    PLAYERS = "players"
    GAME_STATE = "game_state"


class ChangeOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class PlayHistoryEntry:
    """
    One accepted action.

    Attributes:
        turn: Turn count after this action (1 for the first action).
        player_name: Name of the acting player.
        position: Seat of the acting player.
        play_type: ``pass`` or the combination kind.
        cards: Cards played (empty for a pass).
        timestamp: When the action was accepted (UTC).
    """

    turn: int
    player_name: str
    position: int
    play_type: PlayType
    cards: list[Card] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_pass(self) -> bool:
        return self.play_type == PlayType.PASS

    def to_dict(self) -> dict:
        return {
            "turn": self.turn,
            "player_name": self.player_name,
            "position": self.position,
            "play_type": self.play_type.value,
            "cards": cards_to_dicts(self.cards),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PlayHistoryEntry":
        timestamp = d.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            turn=d["turn"],
            player_name=d["player_name"],
            position=d["position"],
            play_type=PlayType(d["play_type"]),
            cards=cards_from_dicts(d.get("cards", [])),
            timestamp=timestamp or datetime.now(timezone.utc),
        )


def play_entry(turn: int, player_name: str, position: int, combination: Combination) -> PlayHistoryEntry:
    """History entry for an accepted play."""
    return PlayHistoryEntry(
        turn=turn,
        player_name=player_name,
        position=position,
        play_type=PlayType(combination.kind.value),
        cards=list(combination.cards),
    )


def pass_entry(turn: int, player_name: str, position: int) -> PlayHistoryEntry:
    """History entry for an accepted pass."""
    return PlayHistoryEntry(
        turn=turn,
        player_name=player_name,
        position=position,
        play_type=PlayType.PASS,
    )


def check_history_order(entries: Iterable[PlayHistoryEntry], turn_count: int) -> None:
    """
    Verify history is numbered 1..turn_count with no gaps or repeats.

    Raises:
        DataIntegrityError: If the sequence is broken.
    """
    expected = 1
    for entry in entries:
        if entry.turn != expected:
            raise DataIntegrityError(
                f"History out of order: expected turn {expected}, got {entry.turn}"
            )
        expected += 1
    if expected - 1 != turn_count:
        raise DataIntegrityError(
            f"History has {expected - 1} entries but turn count is {turn_count}"
        )


@dataclass
class ChangeEvent:
    """
    Notification that a stored row for a game changed.

    Attributes:
        table: Which table changed.
        game_id: Game the row belongs to.
        op: Insert, update, or delete.
        turn_count: Turn count after the change, when known. Informational only.
        sender_id: Server that produced the change (to skip echoes).
    """

    table: Table
    game_id: str
    op: ChangeOp = ChangeOp.UPDATE
    turn_count: Optional[int] = None
    sender_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps({
            "table": self.table.value,
            "game_id": self.game_id,
            "op": self.op.value,
            "turn_count": self.turn_count,
            "sender_id": self.sender_id,
            "timestamp": self.timestamp.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        d = json.loads(raw)
        timestamp = d.get("timestamp")
        return cls(
            table=Table(d["table"]),
            game_id=d["game_id"],
            op=ChangeOp(d.get("op", ChangeOp.UPDATE.value)),
            turn_count=d.get("turn_count"),
            sender_id=d.get("sender_id"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc),
        )
