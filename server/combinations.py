"""
Combination classification and comparison for Big Two.

Legal shapes:
    - single, pair, triple
    - five-card hands, ascending: straight < flush < full house
      < four of a kind (plus kicker) < straight flush

Straights run from 3-4-5-6-7 up to 10-J-Q-K-A. A-2-3-4-5 is also a straight
and is the lowest one: its height is the 5. Every other run containing a 2
(2-3-4-5-6, J-Q-K-A-2, ...) is not a straight.

Each Combination carries a ``key`` tuple. Keys of equal-size combinations
are directly comparable; for five-card hands the first element is the
kind's position in FIVE_CARD_KIND_ORDER, so kinds rank before contents.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from cards import Card, Rank, card_value, rank_index, rank_value, sort_cards
from constants import FIVE_CARD_KIND_ORDER, PLAY_SIZES


class CombinationKind(str, Enum):
    SINGLE = "single"
    PAIR = "pair"
    TRIPLE = "triple"
    STRAIGHT = "straight"
    FLUSH = "flush"
    FULL_HOUSE = "full_house"
    FOUR_OF_A_KIND = "four_of_a_kind"
    STRAIGHT_FLUSH = "straight_flush"

    @property
    def is_five_card(self) -> bool:
        return self.value in FIVE_CARD_KIND_ORDER


class Comparison(str, Enum):
    GREATER = "greater"
    LESS = "less"
    EQUAL = "equal"
    INCOMPARABLE = "incomparable"


@dataclass(frozen=True)
class Combination:
    """
    A classified play.

    Attributes:
        kind: The combination kind.
        cards: The cards, ascending by Big Two value.
        key: Comparison key; larger beats smaller among equal sizes.
    """

    kind: CombinationKind
    cards: tuple[Card, ...]
    key: tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.cards)

    @property
    def high_card(self) -> Card:
        return self.cards[-1]

    def describe(self) -> str:
        labels = " ".join(card.display for card in self.cards)
        return f"{self.kind.value.replace('_', ' ')} [{labels}]"


_WHEEL_RANKS = frozenset({Rank.ACE, Rank.TWO, Rank.THREE, Rank.FOUR, Rank.FIVE})


def _straight_height(cards: list[Card]) -> Optional[Card]:
    """
    Return the card that sets a straight's height, or None if not a straight.

    ``cards`` must be sorted ascending and hold five distinct cards.
    """
    ranks = {card.rank for card in cards}
    if len(ranks) != 5:
        return None

    if ranks == _WHEEL_RANKS:
        # A-2-3-4-5 plays as the lowest straight, topped by its 5
        return next(card for card in cards if card.rank == Rank.FIVE)

    if Rank.TWO in ranks:
        return None

    values = [rank_value(card) for card in cards]
    if values[-1] - values[0] != 4:
        return None
    return cards[-1]


def _five_card(cards: list[Card], allow_four_of_a_kind: bool) -> Optional[Combination]:
    counts = Counter(card.rank for card in cards)
    is_flush = len({card.suit for card in cards}) == 1
    straight_top = _straight_height(cards)

    def make(kind: CombinationKind, *inner: int) -> Combination:
        order = FIVE_CARD_KIND_ORDER.index(kind.value)
        return Combination(kind, tuple(cards), (order, *inner))

    if straight_top is not None and is_flush:
        return make(CombinationKind.STRAIGHT_FLUSH, card_value(straight_top))

    shape = sorted(counts.values())
    if shape == [1, 4]:
        if not allow_four_of_a_kind:
            return None
        quad_rank = next(rank for rank, n in counts.items() if n == 4)
        return make(CombinationKind.FOUR_OF_A_KIND, rank_index(quad_rank))

    if shape == [2, 3]:
        triple_rank = next(rank for rank, n in counts.items() if n == 3)
        return make(CombinationKind.FULL_HOUSE, rank_index(triple_rank))

    if is_flush:
        return make(CombinationKind.FLUSH, card_value(cards[-1]))

    if straight_top is not None:
        return make(CombinationKind.STRAIGHT, card_value(straight_top))

    return None


def classify(cards: Iterable[Card], allow_four_of_a_kind: bool = True) -> Optional[Combination]:
    """
    Classify a set of cards as a combination.

    Args:
        cards: Cards to classify (order irrelevant).
        allow_four_of_a_kind: House rule; when False, four of a kind
            plus kicker is not a legal five-card hand.

    Returns:
        The Combination, or None if the cards form no legal shape
        (including any duplicated card).
    """
    ordered = sort_cards(cards)
    if len(ordered) not in PLAY_SIZES or len(set(ordered)) != len(ordered):
        return None

    size = len(ordered)
    same_rank = len({card.rank for card in ordered}) == 1
    top = (card_value(ordered[-1]),)

    if size == 1:
        return Combination(CombinationKind.SINGLE, tuple(ordered), top)
    if size == 2 and same_rank:
        return Combination(CombinationKind.PAIR, tuple(ordered), top)
    if size == 3 and same_rank:
        return Combination(CombinationKind.TRIPLE, tuple(ordered), top)
    if size == 5:
        return _five_card(ordered, allow_four_of_a_kind)
    return None


def compare(a: Combination, b: Combination) -> Comparison:
    """
    Compare two combinations.

    Combinations of different sizes never compare. Five-card hands of
    different kinds compare by kind order first.
    """
    if a.size != b.size:
        return Comparison.INCOMPARABLE
    if a.key > b.key:
        return Comparison.GREATER
    if a.key < b.key:
        return Comparison.LESS
    return Comparison.EQUAL


def beats(proposed: Combination, last: Combination) -> bool:
    """True when ``proposed`` may be played on top of ``last``."""
    return compare(proposed, last) == Comparison.GREATER
