"""
Schemas for stored game rows.

Everything read from storage passes through these pydantic models before
the engine sees it. A row with an unexpected shape raises DecodeError
instead of leaking half-valid data into the state machine.

The decoders accept the encodings older rows use: numeric ranks
(11=J ... 15=2), camelCase history keys, and "playing"/"in-progress"
status strings.
"""

from datetime import datetime
from typing import Any, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from cards import Card, Rank, Suit, parse_rank, parse_suit
from constants import DEFAULT_MAX_PLAYERS, MAX_PLAYERS, MIN_PLAYERS, SPECTATOR_POSITION
from errors import DecodeError
from game import Game, GameStatus, Player
from models.events import PlayHistoryEntry, PlayType
from rules import GameOptions


class RowModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CardRow(RowModel):
    suit: Suit
    rank: Rank
    display: Optional[str] = None

    @field_validator("suit", mode="before")
    @classmethod
    def parse_suit_value(cls, value: Any) -> Suit:
        return parse_suit(value)

    @field_validator("rank", mode="before")
    @classmethod
    def parse_rank_value(cls, value: Any) -> Rank:
        return parse_rank(value)

    def to_card(self) -> Card:
        return Card(self.suit, self.rank)


def _cards(rows: list[CardRow]) -> list[Card]:
    return [row.to_card() for row in rows]


class PlayHistoryRow(RowModel):
    turn: int = Field(ge=1)
    player_name: str = Field(validation_alias=AliasChoices("player_name", "playerName"))
    position: int = Field(
        default=SPECTATOR_POSITION,
        validation_alias=AliasChoices("position", "playerPosition"),
    )
    play_type: PlayType = Field(validation_alias=AliasChoices("play_type", "playType"))
    cards: list[CardRow] = Field(default_factory=list)
    timestamp: Optional[datetime] = None

    def to_entry(self) -> PlayHistoryEntry:
        entry = PlayHistoryEntry(
            turn=self.turn,
            player_name=self.player_name,
            position=self.position,
            play_type=self.play_type,
            cards=_cards(self.cards),
        )
        if self.timestamp is not None:
            entry.timestamp = self.timestamp
        return entry


class _StatusRow(RowModel):
    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def parse_status_value(cls, value: Any) -> GameStatus:
        return GameStatus.parse(value)


class GameRow(_StatusRow):
    id: str
    name: str = ""
    status: GameStatus = GameStatus.WAITING
    max_players: int = Field(default=DEFAULT_MAX_PLAYERS, ge=MIN_PLAYERS, le=MAX_PLAYERS)
    current_players: int = Field(default=0, ge=0)
    spectators: int = Field(default=0, ge=0)
    host_name: Optional[str] = None
    options: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlayerRow(RowModel):
    id: str
    game_id: str
    player_name: str
    position: int = Field(ge=SPECTATOR_POSITION)
    cards: list[CardRow] = Field(default_factory=list)
    is_spectator: bool = False

    def to_player(self) -> Player:
        return Player(
            id=self.id,
            name=self.player_name,
            position=self.position,
            hand=_cards(self.cards),
            is_spectator=self.is_spectator,
        )


class GameStateRow(_StatusRow):
    game_id: str
    status: GameStatus = GameStatus.WAITING
    current_player: int = Field(default=0, ge=0)
    last_play: list[CardRow] = Field(default_factory=list)
    last_player: Optional[int] = None
    turn_count: int = Field(default=0, ge=0)
    play_history: list[PlayHistoryRow] = Field(default_factory=list)
    deck: list[CardRow] = Field(default_factory=list)
    winner: Optional[int] = None
    updated_at: Optional[datetime] = None


class GameDetails(RowModel):
    """Joined read of a game, its players, and its state row."""

    game: GameRow
    players: list[PlayerRow] = Field(default_factory=list)
    game_state: Optional[GameStateRow] = None

    @property
    def turn_count(self) -> int:
        return self.game_state.turn_count if self.game_state else 0

    @property
    def status(self) -> GameStatus:
        return self.game_state.status if self.game_state else self.game.status

    def player(self, name: str) -> Optional[PlayerRow]:
        return next((p for p in self.players if p.player_name == name), None)

    def to_game(self) -> Game:
        """Build a state machine instance from the stored rows."""
        game = Game(
            game_id=self.game.id,
            name=self.game.name,
            host_name=self.game.host_name,
            players=[row.to_player() for row in self.players],
            status=self.status,
            options=GameOptions.from_client_data(self.game.options),
            max_players=self.game.max_players,
        )
        state = self.game_state
        if state is not None:
            game.current_player = state.current_player
            game.last_play = _cards(state.last_play)
            game.last_player = state.last_player
            game.turn_count = state.turn_count
            game.play_history = [row.to_entry() for row in state.play_history]
            game.deck = _cards(state.deck)
            game.winner = state.winner
        return game


RowT = TypeVar("RowT", bound=BaseModel)


def decode(model: Type[RowT], raw: Any) -> RowT:
    """
    Validate a raw row against a schema.

    Raises:
        DecodeError: If the row does not match.
    """
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(f"Invalid {model.__name__}: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e


def decode_details(raw: dict) -> GameDetails:
    """Decode a joined ``{game, players, game_state}`` read."""
    return decode(GameDetails, raw)
