"""
Game logic for Big Two.

This module implements the turn and trick state machine: seating, the
deal, plays and passes with turn-count fencing, trick clearing, and win
detection.

Big Two Rules Summary:
    - 2-4 players share one 52-card deck; every card is dealt
    - The opener (3 of diamonds holder with fewer than 4 players, else seat 0)
      leads any legal combination
    - Each following player must beat the last play with a combination of
      the same size, or pass
    - When everyone else has passed, the last player to play leads again
    - The first player to empty their hand wins

Status flow:
    WAITING -> IN_PROGRESS -> FINISHED
    FINISHED -> WAITING only through an explicit reset (new game)

Every play and pass carries the turn count the player observed. An action
whose expected turn count differs from the current one is rejected as
stale without touching state.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from cards import Card, THREE_OF_DIAMONDS, cards_to_dicts, sort_cards
from constants import (
    DEFAULT_MAX_PLAYERS,
    MAX_PLAYERS,
    MIN_PLAYERS,
    PLAYER_NAME_MAX_LENGTH,
    PLAYER_NAME_PATTERN,
    SPECTATOR_POSITION,
)
from deck import Deck, verify_conservation
from errors import DataIntegrityError, GameError, LobbyErrorCode, RejectReason, message_for
from models.events import PlayHistoryEntry, check_history_order, pass_entry, play_entry
from rules import GameOptions, validate_play


class GameStatus(str, Enum):
    """
    Lifecycle of a game.

    Stored rows from older clients may say "playing" or "in-progress";
    ``parse`` folds those into IN_PROGRESS.
    """

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"

    @classmethod
    def parse(cls, raw: "str | GameStatus") -> "GameStatus":
        if isinstance(raw, GameStatus):
            return raw
        text = str(raw).strip().lower().replace("-", "_")
        if text == "playing":
            return cls.IN_PROGRESS
        return cls(text)


def validate_player_name(name: Optional[str]) -> str:
    """
    Normalize and check a player name.

    Returns:
        The stripped name.

    Raises:
        GameError: INVALID_NAME if empty, too long, or not letters/digits.
    """
    cleaned = (name or "").strip()
    if (
        not cleaned
        or len(cleaned) > PLAYER_NAME_MAX_LENGTH
        or not PLAYER_NAME_PATTERN.match(cleaned)
    ):
        raise GameError(LobbyErrorCode.INVALID_NAME.value)
    return cleaned


@dataclass
class Player:
    """
    A participant in a game.

    Attributes:
        name: Display name, unique within the game.
        position: Seat index, or -1 for a spectator.
        hand: Cards held (order irrelevant).
        is_spectator: Spectators never act.
        id: Unique identifier for the player row.
    """

    name: str
    position: int
    hand: list[Card] = field(default_factory=list)
    is_spectator: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_seated(self) -> bool:
        return not self.is_spectator and self.position >= 0

    def holds(self, cards: Iterable[Card]) -> bool:
        return set(cards) <= set(self.hand)


@dataclass
class ActionResult:
    """
    Outcome of a play or pass.

    Attributes:
        accepted: Whether the action was applied.
        reason: Rejection reason when not accepted.
        message: Human-readable message for rejections.
        entry: History entry written on acceptance.
    """

    accepted: bool
    reason: Optional[RejectReason] = None
    message: str = ""
    entry: Optional[PlayHistoryEntry] = None

    @classmethod
    def accept(cls, entry: PlayHistoryEntry) -> "ActionResult":
        return cls(accepted=True, entry=entry)

    @classmethod
    def reject(cls, reason: RejectReason, detail: Optional[str] = None) -> "ActionResult":
        return cls(accepted=False, reason=reason, message=message_for(reason.value, detail))

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "entry": self.entry.to_dict() if self.entry else None,
        }


@dataclass
class Game:
    """
    Authoritative state of one Big Two game.

    Attributes:
        game_id: Unique identifier.
        name: Display name.
        host_name: Name of the player allowed to end or reset the game.
        players: Seated players and spectators.
        status: Lifecycle status.
        current_player: Seat whose turn it is.
        last_play: Cards on the table; empty when a trick is being led.
        last_player: Seat that made ``last_play``.
        turn_count: Accepted actions so far; the fencing token.
        play_history: Append-only record of accepted actions.
        deck: Undealt cards (empty once dealt).
        winner: Seat that emptied their hand, if any.
        options: House rules.
        max_players: Seat limit (2-4).
    """

    game_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    host_name: Optional[str] = None
    players: list[Player] = field(default_factory=list)
    status: GameStatus = GameStatus.WAITING
    current_player: int = 0
    last_play: list[Card] = field(default_factory=list)
    last_player: Optional[int] = None
    turn_count: int = 0
    play_history: list[PlayHistoryEntry] = field(default_factory=list)
    deck: list[Card] = field(default_factory=list)
    winner: Optional[int] = None
    options: GameOptions = field(default_factory=GameOptions)
    max_players: int = DEFAULT_MAX_PLAYERS

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @property
    def active_players(self) -> list[Player]:
        """Seated players in seat order."""
        return sorted((p for p in self.players if p.is_seated), key=lambda p: p.position)

    @property
    def spectators(self) -> list[Player]:
        return [p for p in self.players if not p.is_seated]

    def get_player(self, name: str) -> Optional[Player]:
        for player in self.players:
            if player.name == name:
                return player
        return None

    def player_at(self, seat: int) -> Optional[Player]:
        for player in self.players:
            if player.is_seated and player.position == seat:
                return player
        return None

    def next_seat(self, seat: int) -> int:
        """Next seated position after ``seat`` in rotation order."""
        seats = [p.position for p in self.active_players]
        later = [s for s in seats if s > seat]
        return later[0] if later else seats[0]

    @property
    def consecutive_passes(self) -> int:
        """Passes since the most recent play."""
        count = 0
        for entry in reversed(self.play_history):
            if not entry.is_pass:
                break
            count += 1
        return count

    @property
    def is_first_play(self) -> bool:
        return not any(not entry.is_pass for entry in self.play_history)

    # -------------------------------------------------------------------------
    # Seating
    # -------------------------------------------------------------------------

    def add_player(self, name: str, as_spectator: bool = False) -> Player:
        """
        Seat a new player, or add them as a spectator.

        Joiners become spectators when they ask to, when every seat is taken,
        or when the game is already under way.

        Raises:
            GameError: INVALID_NAME, NAME_TAKEN, GAME_FULL when every seat of
                a waiting table is taken, or SPECTATORS_NOT_ALLOWED when a
                spectator place is needed and the game has none.
        """
        name = validate_player_name(name)
        if self.get_player(name) is not None:
            raise GameError(LobbyErrorCode.NAME_TAKEN.value)

        taken = {p.position for p in self.active_players}
        free = [seat for seat in range(self.max_players) if seat not in taken]
        can_sit = self.status == GameStatus.WAITING and bool(free)

        if can_sit and not as_spectator:
            player = Player(name=name, position=free[0])
        elif self.options.allow_spectators:
            player = Player(name=name, position=SPECTATOR_POSITION, is_spectator=True)
        elif self.status == GameStatus.WAITING and not free and not as_spectator:
            raise GameError(LobbyErrorCode.GAME_FULL.value)
        else:
            raise GameError(LobbyErrorCode.SPECTATORS_NOT_ALLOWED.value)

        self.players.append(player)
        if self.host_name is None and player.is_seated:
            self.host_name = player.name
        return player

    def remove_player(self, name: str) -> Player:
        """
        Take a player out of the game, passing the host role to the lowest
        remaining seat when the host leaves.

        Spectators may leave at any time; seated players only before the deal.

        Raises:
            GameError: NOT_A_PLAYER, or INVALID_TRANSITION for a seated
                player once cards have been dealt.
        """
        player = self.get_player(name)
        if player is None:
            raise GameError(RejectReason.NOT_A_PLAYER.value)
        if player.is_seated and self.status != GameStatus.WAITING:
            raise GameError(LobbyErrorCode.INVALID_TRANSITION.value)

        self.players.remove(player)
        if self.host_name == player.name:
            seated = self.active_players
            self.host_name = seated[0].name if seated else None
        return player

    def require_host(self, requested_by: Optional[str]) -> None:
        """Raise NOT_HOST unless ``requested_by`` is the host."""
        if self.host_name is not None and requested_by != self.host_name:
            raise GameError(LobbyErrorCode.NOT_HOST.value)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, seed: Optional[int] = None) -> None:
        """
        Deal and begin play.

        Args:
            seed: Optional shuffle seed for a reproducible deal.

        Raises:
            GameError: INVALID_TRANSITION unless waiting; NOT_ENOUGH_PLAYERS
                or TOO_MANY_PLAYERS when the seat count is outside 2-4.
        """
        if self.status != GameStatus.WAITING:
            raise GameError(LobbyErrorCode.INVALID_TRANSITION.value)

        seated = self.active_players
        if len(seated) < MIN_PLAYERS:
            raise GameError(LobbyErrorCode.NOT_ENOUGH_PLAYERS.value)
        if len(seated) > MAX_PLAYERS:
            raise GameError(LobbyErrorCode.TOO_MANY_PLAYERS.value)

        deck = Deck(seed)
        for player, hand in zip(seated, deck.deal(len(seated))):
            player.hand = sort_cards(hand)
        self.deck = list(deck.cards)

        self.current_player = seated[0].position
        if self.options.require_opening_card and len(seated) < MAX_PLAYERS:
            for player in seated:
                if THREE_OF_DIAMONDS in player.hand:
                    self.current_player = player.position
                    break

        self.last_play = []
        self.last_player = None
        self.turn_count = 0
        self.play_history = []
        self.winner = None
        self.status = GameStatus.IN_PROGRESS

    def end_game(self, requested_by: Optional[str]) -> None:
        """
        Force the game to finish (host abort).

        Raises:
            GameError: NOT_HOST, or INVALID_TRANSITION if already finished.
        """
        self.require_host(requested_by)
        if self.status == GameStatus.FINISHED:
            raise GameError(LobbyErrorCode.INVALID_TRANSITION.value)
        self.status = GameStatus.FINISHED

    def reset(self, requested_by: Optional[str]) -> None:
        """
        Return a finished game to the lobby so it can be dealt again.

        Raises:
            GameError: NOT_HOST, or INVALID_TRANSITION unless finished.
        """
        self.require_host(requested_by)
        if self.status != GameStatus.FINISHED:
            raise GameError(LobbyErrorCode.INVALID_TRANSITION.value)

        for player in self.players:
            player.hand = []
        self.status = GameStatus.WAITING
        self.current_player = 0
        self.last_play = []
        self.last_player = None
        self.turn_count = 0
        self.play_history = []
        self.deck = []
        self.winner = None

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    def _check_turn(self, seat: int, expected_turn_count: int) -> Optional[ActionResult]:
        if self.status != GameStatus.IN_PROGRESS:
            return ActionResult.reject(RejectReason.GAME_NOT_IN_PROGRESS)
        if expected_turn_count != self.turn_count:
            return ActionResult.reject(
                RejectReason.STALE_TURN,
                f"expected turn {expected_turn_count}, current turn {self.turn_count}",
            )
        if self.player_at(seat) is None:
            return ActionResult.reject(RejectReason.NOT_A_PLAYER)
        if seat != self.current_player:
            return ActionResult.reject(RejectReason.NOT_YOUR_TURN)
        return None

    def apply_play(self, seat: int, cards: Iterable[Card], expected_turn_count: int) -> ActionResult:
        """
        Apply a play for ``seat`` if it is legal and not stale.

        On acceptance the cards leave the hand and go on the table, the
        turn count advances by one, and the turn passes to the next seat.
        Emptying the hand finishes the game with this seat as winner.
        A rejected play changes nothing.
        """
        rejection = self._check_turn(seat, expected_turn_count)
        if rejection is not None:
            return rejection

        player = self.player_at(seat)
        cards = list(cards)
        if len(set(cards)) != len(cards) or not player.holds(cards):
            return ActionResult.reject(RejectReason.CARDS_NOT_IN_HAND)

        played = set(cards)
        remaining = [card for card in player.hand if card not in played]
        result = validate_play(
            cards,
            self.last_play,
            len(self.active_players),
            remaining,
            opening_play=self.is_first_play,
            options=self.options,
        )
        if not result.valid:
            return ActionResult(accepted=False, reason=result.reason, message=result.message)

        player.hand = remaining
        self.turn_count += 1
        entry = play_entry(self.turn_count, player.name, seat, result.combination)
        self.play_history.append(entry)
        self.last_play = list(result.combination.cards)
        self.last_player = seat

        if not remaining:
            self.status = GameStatus.FINISHED
            self.winner = seat
        else:
            self.current_player = self.next_seat(seat)
        return ActionResult.accept(entry)

    def apply_pass(self, seat: int, expected_turn_count: int) -> ActionResult:
        """
        Apply a pass for ``seat``.

        Passing is only legal when following; the trick leader must play.
        When every other seat has passed since the last play, the table
        clears and the last player leads again.
        """
        rejection = self._check_turn(seat, expected_turn_count)
        if rejection is not None:
            return rejection
        if not self.last_play:
            return ActionResult.reject(RejectReason.CANNOT_PASS_ON_LEAD)

        player = self.player_at(seat)
        self.turn_count += 1
        entry = pass_entry(self.turn_count, player.name, seat)
        self.play_history.append(entry)

        if self.consecutive_passes >= len(self.active_players) - 1:
            leader = self.last_player
            self.last_play = []
            self.last_player = None
            self.current_player = leader
        else:
            self.current_player = self.next_seat(seat)
        return ActionResult.accept(entry)

    # -------------------------------------------------------------------------
    # Integrity and scoring
    # -------------------------------------------------------------------------

    def verify_integrity(self) -> None:
        """
        Check that cards and history still reconcile.

        Raises:
            DataIntegrityError: On duplicated or missing cards, broken history
                numbering, or a current player who cannot act.
        """
        if self.status == GameStatus.WAITING or not self.was_dealt:
            return

        played = [card for entry in self.play_history for card in entry.cards]
        verify_conservation([p.hand for p in self.active_players], played + self.deck)
        check_history_order(self.play_history, self.turn_count)

        if self.status == GameStatus.IN_PROGRESS:
            current = self.player_at(self.current_player)
            if current is None or not current.hand:
                raise DataIntegrityError(
                    f"Current player {self.current_player} is not a seated player with cards"
                )

    @property
    def was_dealt(self) -> bool:
        """False for a game that finished without ever being dealt (host abort in the lobby)."""
        return bool(self.deck or self.play_history or any(p.hand for p in self.players))

    def final_scores(self) -> dict[str, int]:
        """Cards left per seated player; lower is better and the winner has 0."""
        return {p.name: len(p.hand) for p in self.active_players}

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def state_fields(self) -> dict:
        """Fields of the stored game_state row."""
        return {
            "status": self.status.value,
            "current_player": self.current_player,
            "last_play": cards_to_dicts(self.last_play),
            "last_player": self.last_player,
            "turn_count": self.turn_count,
            "play_history": [entry.to_dict() for entry in self.play_history],
            "deck": cards_to_dicts(self.deck),
            "winner": self.winner,
        }

    def hand_updates(self) -> dict[str, list[dict]]:
        """Stored hand for every player, keyed by name."""
        return {p.name: cards_to_dicts(p.hand) for p in self.players}

    def get_state(self, viewer: Optional[str] = None) -> dict:
        """
        Game state for one viewer.

        The viewer's own hand is included; other hands are reduced to a
        card count until the game is finished.
        """
        reveal = self.status == GameStatus.FINISHED
        players_data = []
        for player in sorted(self.players, key=lambda p: (not p.is_seated, p.position, p.name)):
            show = reveal or player.name == viewer
            players_data.append({
                "id": player.id,
                "name": player.name,
                "position": player.position,
                "is_spectator": not player.is_seated,
                "card_count": len(player.hand),
                "cards": cards_to_dicts(sort_cards(player.hand)) if show else None,
            })

        winner = self.player_at(self.winner) if self.winner is not None else None
        return {
            "game_id": self.game_id,
            "name": self.name,
            "host_name": self.host_name,
            "status": self.status.value,
            "max_players": self.max_players,
            "players": players_data,
            "current_player": self.current_player if self.status == GameStatus.IN_PROGRESS else None,
            "last_play": cards_to_dicts(self.last_play),
            "last_player": self.last_player,
            "turn_count": self.turn_count,
            "play_history": [entry.to_dict() for entry in self.play_history],
            "winner": winner.name if winner else None,
            "scores": self.final_scores() if reveal else None,
            "options": self.options.to_dict(),
        }
