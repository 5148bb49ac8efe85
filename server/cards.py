"""
Card value types for Big Two.

Ordering never uses face values directly: ``rank_value`` and ``suit_value``
map into the Big Two order (3 low, 2 high; diamonds low, spades high) and
``card_value`` combines them into a single total order over the deck.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

from constants import NUMERIC_RANKS, RANK_ORDER, SUIT_ORDER, SUIT_SYMBOLS


class Suit(str, Enum):
    """Card suits, declared in ascending tie-break order."""

    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    HEARTS = "hearts"
    SPADES = "spades"

    @property
    def symbol(self) -> str:
        return SUIT_SYMBOLS[self.value]


class Rank(str, Enum):
    """Card ranks, declared in ascending Big Two order."""

    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"
    TWO = "2"


_RANK_INDEX: dict[Rank, int] = {Rank(r): i for i, r in enumerate(RANK_ORDER)}
_SUIT_INDEX: dict[Suit, int] = {Suit(s): i for i, s in enumerate(SUIT_ORDER)}


def parse_rank(raw: Union[str, int, Rank]) -> Rank:
    """
    Decode a rank from any encoding seen in stored rows.

    Accepts Rank members, labels ("10", "j", "A"), and the legacy numeric
    encoding (11=J, 12=Q, 13=K, 14=A, 15=2).

    Raises:
        ValueError: If the value is not a rank.
    """
    if isinstance(raw, Rank):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"Invalid rank: {raw!r}")
    if isinstance(raw, int):
        if raw not in NUMERIC_RANKS:
            raise ValueError(f"Invalid rank: {raw!r}")
        return Rank(NUMERIC_RANKS[raw])
    text = str(raw).strip().upper()
    if text.isdigit() and text not in RANK_ORDER:
        return parse_rank(int(text))
    return Rank(text)


def parse_suit(raw: Union[str, Suit]) -> Suit:
    """Decode a suit from its name (any case) or symbol."""
    if isinstance(raw, Suit):
        return raw
    text = str(raw).strip().lower()
    for suit in Suit:
        if text in (suit.value, suit.symbol, suit.value[0]):
            return suit
    raise ValueError(f"Invalid suit: {raw!r}")


@dataclass(frozen=True)
class Card:
    """
    A playing card.

    Attributes:
        suit: The card's suit.
        rank: The card's rank.
    """

    suit: Suit
    rank: Rank

    @property
    def display(self) -> str:
        """Human label, e.g. ``"10♥"``."""
        return f"{self.rank.value}{self.suit.symbol}"

    def to_dict(self) -> dict:
        return {
            "suit": self.suit.value,
            "rank": self.rank.value,
            "display": self.display,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        """
        Build a card from a dict with ``suit`` and ``rank`` keys.

        Raises:
            ValueError: If either field is missing or unrecognized.
        """
        try:
            return cls(suit=parse_suit(data["suit"]), rank=parse_rank(data["rank"]))
        except KeyError as e:
            raise ValueError(f"Card is missing field {e}") from e

    def __str__(self) -> str:
        return self.display


def rank_index(rank: Rank) -> int:
    """Position of a rank in Big Two order (3 -> 0, 2 -> 12)."""
    return _RANK_INDEX[rank]


def rank_value(card: Card) -> int:
    """Position of the card's rank in Big Two order."""
    return _RANK_INDEX[card.rank]


def suit_value(card: Card) -> int:
    """Position of the card's suit in tie-break order (diamonds -> 0)."""
    return _SUIT_INDEX[card.suit]


def card_value(card: Card) -> int:
    """Total order over the deck: rank first, suit breaks ties."""
    return rank_value(card) * 4 + suit_value(card)


def sort_cards(cards: Iterable[Card], descending: bool = False) -> list[Card]:
    """Sort cards by Big Two value."""
    return sorted(cards, key=card_value, reverse=descending)


def standard_deck() -> list[Card]:
    """All 52 cards in ascending Big Two order."""
    return [Card(suit, rank) for rank in Rank for suit in Suit]


def cards_to_dicts(cards: Iterable[Card]) -> list[dict]:
    return [card.to_dict() for card in cards]


def cards_from_dicts(data: Iterable[dict]) -> list[Card]:
    return [Card.from_dict(d) for d in data]


THREE_OF_DIAMONDS = Card(Suit.DIAMONDS, Rank.THREE)
