"""
Play suggestions for Big Two.

Builds candidate combinations from a hand, keeps the ones the validator
accepts against the current table, and returns the weakest first so a
hint never spends stronger cards than it must.

Candidate generation is targeted rather than exhaustive: every single,
pair and triple, straights built from the lowest card of each rank (plus
each suit of the top card, so a straight can out-suit one of equal
height), the lowest five cards of each suit for flushes, triples with
the lowest spare pair, quads with the lowest kicker, and straight flushes
per suit.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations as choose
from typing import Iterable, Optional

from cards import Card, Rank, Suit, card_value, sort_cards
from combinations import Combination
from constants import MAX_HINTS, RANK_ORDER
from rules import GameOptions, validate_play

logger = logging.getLogger(__name__)


@dataclass
class Hint:
    """A suggested play."""

    cards: list[Card]
    combination: Combination

    @property
    def description(self) -> str:
        return self.combination.describe()

    def to_dict(self) -> dict:
        return {
            "cards": [card.to_dict() for card in self.cards],
            "kind": self.combination.kind.value,
            "description": self.description,
        }


# Rank windows for straights, lowest first; A-2-3-4-5 is the lowest of all
_STRAIGHT_WINDOWS: list[tuple[Rank, ...]] = [
    (Rank.ACE, Rank.TWO, Rank.THREE, Rank.FOUR, Rank.FIVE),
] + [
    tuple(Rank(r) for r in RANK_ORDER[start:start + 5])
    for start in range(0, 8)
]


def _by_rank(hand: list[Card]) -> dict[Rank, list[Card]]:
    groups: dict[Rank, list[Card]] = defaultdict(list)
    for card in sort_cards(hand):
        groups[card.rank].append(card)
    return groups


def _straights(groups: dict[Rank, list[Card]]) -> Iterable[list[Card]]:
    for window in _STRAIGHT_WINDOWS:
        if not all(groups.get(rank) for rank in window):
            continue
        base = [groups[rank][0] for rank in window]
        yield base
        top_rank = Rank.FIVE if Rank.TWO in window else window[-1]
        for alternative in groups[top_rank][1:]:
            yield [alternative if card.rank == top_rank else card for card in base]


def _straight_flushes(hand: list[Card]) -> Iterable[list[Card]]:
    by_suit: dict[Suit, set[Rank]] = defaultdict(set)
    for card in hand:
        by_suit[card.suit].add(card.rank)
    for suit, ranks in by_suit.items():
        for window in _STRAIGHT_WINDOWS:
            if all(rank in ranks for rank in window):
                yield [Card(suit, rank) for rank in window]


def _flushes(hand: list[Card]) -> Iterable[list[Card]]:
    by_suit: dict[Suit, list[Card]] = defaultdict(list)
    for card in sort_cards(hand):
        by_suit[card.suit].append(card)
    for cards in by_suit.values():
        if len(cards) < 5:
            continue
        yield cards[:5]
        # Highest flush of the suit, for beating a strong flush
        yield cards[-5:]


def _candidates(hand: list[Card], size: Optional[int]) -> Iterable[list[Card]]:
    groups = _by_rank(hand)

    if size in (None, 1):
        for card in hand:
            yield [card]
    if size in (None, 2):
        for cards in groups.values():
            yield from (list(pair) for pair in choose(cards, 2))
    if size in (None, 3):
        for cards in groups.values():
            yield from (list(triple) for triple in choose(cards, 3))
    if size in (None, 5):
        yield from _straights(groups)
        yield from _flushes(hand)
        pairs = sorted(
            (cards[:2] for cards in groups.values() if len(cards) >= 2),
            key=lambda cards: card_value(cards[-1]),
        )
        for cards in groups.values():
            if len(cards) >= 3:
                for triple in choose(cards, 3):
                    spare = next((p for p in pairs if p[0].rank != triple[0].rank), None)
                    if spare:
                        yield list(triple) + spare
            if len(cards) == 4:
                kicker = next((c for c in sort_cards(hand) if c.rank != cards[0].rank), None)
                if kicker:
                    yield cards + [kicker]
        yield from _straight_flushes(hand)


def find_hints(
    hand: Iterable[Card],
    last_play: Iterable[Card],
    active_player_count: int,
    *,
    opening_play: bool = False,
    options: Optional[GameOptions] = None,
    limit: int = MAX_HINTS,
) -> list[Hint]:
    """
    Suggest legal plays, weakest first.

    Args:
        hand: The player's cards.
        last_play: Cards on the table (empty when leading).
        active_player_count: Seated players in the game.
        opening_play: True for the first play of the game.
        options: House rules.
        limit: Maximum number of suggestions.

    Returns:
        Up to ``limit`` hints, each legal under ``validate_play``.
    """
    options = options or GameOptions()
    hand = sort_cards(hand)
    last_play = list(last_play)
    size = len(last_play) if last_play else None

    seen: set[frozenset[Card]] = set()
    legal: list[Combination] = []
    for cards in _candidates(hand, size):
        key = frozenset(cards)
        if key in seen:
            continue
        seen.add(key)

        remaining = [card for card in hand if card not in key]
        result = validate_play(
            cards,
            last_play,
            active_player_count,
            remaining,
            opening_play=opening_play,
            options=options,
        )
        if result.valid:
            legal.append(result.combination)

    legal.sort(key=lambda combo: (combo.size, combo.key))
    hints = [Hint(cards=list(combo.cards), combination=combo) for combo in legal[:limit]]
    logger.debug(f"Found {len(legal)} legal plays, returning {len(hints)} hints")
    return hints


def smallest_legal_play(
    hand: Iterable[Card],
    last_play: Iterable[Card],
    active_player_count: int,
    *,
    opening_play: bool = False,
    options: Optional[GameOptions] = None,
) -> Optional[list[Card]]:
    """The weakest legal play, or None when nothing is playable."""
    hints = find_hints(
        hand,
        last_play,
        active_player_count,
        opening_play=opening_play,
        options=options,
        limit=1,
    )
    return hints[0].cards if hints else None
