"""
Deck and deal engine.

The deck is built once per deal and shuffled with its own ``random.Random``
so a seed reproduces a deal exactly without touching global random state.
All 52 cards are dealt: when the seat count does not divide the deck, the
lowest seats receive one extra card each (3 seats -> 18/17/17).
"""

import random
from typing import Optional

from cards import Card, standard_deck
from constants import DECK_SIZE, MAX_PLAYERS, MIN_PLAYERS
from errors import DataIntegrityError


class Deck:
    """
    A single 52-card deck.

    Attributes:
        cards: Remaining cards; the top of the deck is the end of the list.
        seed: Seed used for the shuffle.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.cards: list[Card] = standard_deck()
        self._rng = random.Random(self.seed)
        self._rng.shuffle(self.cards)

    def cards_remaining(self) -> int:
        return len(self.cards)

    def deal(self, seat_count: int) -> list[list[Card]]:
        """
        Partition the whole deck into contiguous per-seat chunks.

        Args:
            seat_count: Number of active seats (2-4).

        Returns:
            One hand per seat, in seat order. The deck is empty afterwards.

        Raises:
            ValueError: If seat_count is outside 2-4.
            DataIntegrityError: If the dealt hands do not reconcile to the deck.
        """
        if not MIN_PLAYERS <= seat_count <= MAX_PLAYERS:
            raise ValueError(f"Cannot deal to {seat_count} seats")

        base, extra = divmod(len(self.cards), seat_count)
        hands: list[list[Card]] = []
        start = 0
        for seat in range(seat_count):
            size = base + (1 if seat < extra else 0)
            hands.append(self.cards[start:start + size])
            start += size
        self.cards = self.cards[start:]

        verify_conservation(hands)
        return hands


def verify_conservation(hands: list[list[Card]], played: Optional[list[Card]] = None) -> None:
    """
    Check that hands plus played cards are exactly one full deck.

    Raises:
        DataIntegrityError: On any duplicate or missing card.
    """
    everything = [card for hand in hands for card in hand] + list(played or [])
    unique = set(everything)
    if len(everything) != len(unique):
        raise DataIntegrityError(
            f"Duplicate cards in play: {len(everything) - len(unique)} extra"
        )
    if len(unique) != DECK_SIZE or unique != set(standard_deck()):
        missing = DECK_SIZE - len(unique & set(standard_deck()))
        raise DataIntegrityError(f"Deck does not reconcile: {missing} card(s) missing")


def deal_hands(seat_count: int, seed: Optional[int] = None) -> list[list[Card]]:
    """Shuffle a fresh deck and deal it to ``seat_count`` seats."""
    return Deck(seed).deal(seat_count)
