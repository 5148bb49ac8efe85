"""
Tests for card ordering and combination classification.

Big Two ordering:
- Ranks 3 < 4 < ... < K < A < 2
- Suits diamonds < clubs < hearts < spades
- Five-card hands: straight < flush < full house < four of a kind < straight flush

Run with: pytest test_combinations.py -v
"""

import pytest

from cards import (
    Card,
    Rank,
    Suit,
    card_value,
    parse_rank,
    parse_suit,
    sort_cards,
    standard_deck,
)
from combinations import CombinationKind, Comparison, beats, classify, compare


def c(code: str) -> Card:
    """Card from a short code such as "3D", "10S", "AH"."""
    return Card(parse_suit(code[-1]), parse_rank(code[:-1]))


def cs(*codes: str) -> list[Card]:
    return [c(code) for code in codes]


# =============================================================================
# Card Tests
# =============================================================================

class TestCardOrder:
    """Rank dominates suit; suit breaks ties."""

    def test_deck_has_52_unique_cards(self):
        deck = standard_deck()
        assert len(deck) == 52
        assert len(set(deck)) == 52

    def test_two_is_highest_rank(self):
        assert card_value(c("2D")) > card_value(c("AS"))

    def test_three_of_diamonds_is_lowest(self):
        assert min(standard_deck(), key=card_value) == Card(Suit.DIAMONDS, Rank.THREE)

    def test_two_of_spades_is_highest(self):
        assert max(standard_deck(), key=card_value) == Card(Suit.SPADES, Rank.TWO)

    def test_suit_breaks_rank_ties(self):
        assert card_value(c("7D")) < card_value(c("7C")) < card_value(c("7H")) < card_value(c("7S"))

    def test_sort_cards(self):
        assert sort_cards(cs("2D", "3S", "3D", "AH")) == cs("3D", "3S", "AH", "2D")

    def test_display(self):
        assert Card(Suit.HEARTS, Rank.TEN).display == "10♥"

    def test_from_dict_accepts_legacy_encodings(self):
        assert Card.from_dict({"suit": "♠", "rank": 14}) == c("AS")
        assert Card.from_dict({"suit": "Hearts", "rank": "15"}) == c("2H")
        assert Card.from_dict({"suit": "c", "rank": "j"}) == c("JC")

    def test_from_dict_rejects_garbage(self):
        with pytest.raises(ValueError):
            Card.from_dict({"suit": "stars", "rank": "3"})
        with pytest.raises(ValueError):
            Card.from_dict({"suit": "hearts", "rank": 16})
        with pytest.raises(ValueError):
            Card.from_dict({"rank": "3"})


# =============================================================================
# Classification Tests
# =============================================================================

class TestClassify:

    def test_single(self):
        assert classify(cs("9H")).kind == CombinationKind.SINGLE

    def test_pair(self):
        assert classify(cs("9H", "9S")).kind == CombinationKind.PAIR

    def test_triple(self):
        assert classify(cs("9H", "9S", "9D")).kind == CombinationKind.TRIPLE

    def test_mismatched_pair_is_invalid(self):
        assert classify(cs("9H", "10S")) is None

    def test_four_cards_are_never_legal(self):
        assert classify(cs("9H", "9S", "9D", "9C")) is None

    def test_empty_is_invalid(self):
        assert classify([]) is None

    def test_duplicate_card_is_invalid(self):
        assert classify(cs("9H", "9H")) is None

    def test_straight(self):
        assert classify(cs("3D", "4C", "5H", "6S", "7D")).kind == CombinationKind.STRAIGHT

    def test_straight_order_irrelevant(self):
        assert classify(cs("7D", "5H", "3D", "6S", "4C")).kind == CombinationKind.STRAIGHT

    def test_ace_high_straight(self):
        assert classify(cs("10D", "JC", "QH", "KS", "AD")).kind == CombinationKind.STRAIGHT

    def test_wheel_is_a_straight(self):
        assert classify(cs("AD", "2C", "3H", "4S", "5D")).kind == CombinationKind.STRAIGHT

    def test_runs_through_two_are_not_straights(self):
        assert classify(cs("2D", "3C", "4H", "5S", "6D")) is None
        assert classify(cs("JD", "QC", "KH", "AS", "2D")) is None

    def test_flush(self):
        assert classify(cs("3H", "7H", "9H", "JH", "2H")).kind == CombinationKind.FLUSH

    def test_full_house(self):
        assert classify(cs("8D", "8C", "8H", "4S", "4D")).kind == CombinationKind.FULL_HOUSE

    def test_four_of_a_kind(self):
        assert classify(cs("8D", "8C", "8H", "8S", "4D")).kind == CombinationKind.FOUR_OF_A_KIND

    def test_four_of_a_kind_can_be_disabled(self):
        assert classify(cs("8D", "8C", "8H", "8S", "4D"), allow_four_of_a_kind=False) is None

    def test_straight_flush(self):
        assert classify(cs("5S", "6S", "7S", "8S", "9S")).kind == CombinationKind.STRAIGHT_FLUSH

    def test_five_unrelated_cards(self):
        assert classify(cs("3D", "5C", "8H", "JS", "2D")) is None

    def test_high_card_and_size_class(self):
        pair = classify(cs("9S", "9D"))
        assert pair.high_card == c("9S")
        assert not pair.kind.is_five_card
        assert classify(cs("3H", "7H", "9H", "JH", "2H")).kind.is_five_card


# =============================================================================
# Comparison Tests
# =============================================================================

class TestCompare:

    def test_higher_single_wins(self):
        assert beats(classify(cs("2D")), classify(cs("AS")))

    def test_suit_decides_equal_ranks(self):
        assert beats(classify(cs("KS")), classify(cs("KH")))
        assert not beats(classify(cs("KH")), classify(cs("KS")))

    def test_pair_compares_by_highest_card(self):
        assert beats(classify(cs("9D", "9S")), classify(cs("9C", "9H")))

    def test_different_sizes_are_incomparable(self):
        assert compare(classify(cs("2S")), classify(cs("3D", "3C"))) == Comparison.INCOMPARABLE

    def test_equal(self):
        assert compare(classify(cs("5H")), classify(cs("5H"))) == Comparison.EQUAL

    @pytest.mark.parametrize("lower,higher", [
        (("3D", "4C", "5H", "6S", "7D"), ("3H", "7H", "9H", "JH", "2H")),
        (("3H", "7H", "9H", "JH", "2H"), ("4D", "4C", "4H", "3S", "3D")),
        (("AD", "AC", "AH", "KS", "KD"), ("4D", "4C", "4H", "4S", "3D")),
        (("2D", "2C", "2H", "2S", "3D"), ("3C", "4C", "5C", "6C", "7C")),
    ])
    def test_five_card_kind_order(self, lower, higher):
        assert compare(classify(cs(*higher)), classify(cs(*lower))) == Comparison.GREATER

    def test_straights_compare_by_top_card(self):
        low = classify(cs("4D", "5C", "6H", "7S", "8D"))
        high = classify(cs("4D", "5C", "6H", "7S", "8S"))
        assert beats(high, low)

    def test_wheel_is_lowest_straight(self):
        wheel = classify(cs("AS", "2S", "3H", "4D", "5S"))
        lowest_regular = classify(cs("3D", "4C", "5H", "6S", "7D"))
        assert beats(lowest_regular, wheel)

    def test_full_house_compares_by_triple(self):
        threes_over_aces = classify(cs("3D", "3C", "3H", "AS", "AD"))
        fours_over_threes = classify(cs("4D", "4C", "4H", "3S", "3D"))
        assert beats(fours_over_threes, threes_over_aces)

    def test_flush_compares_by_highest_card(self):
        low = classify(cs("3D", "5D", "7D", "9D", "KD"))
        high = classify(cs("3C", "4C", "5C", "6C", "KC"))
        assert beats(high, low)
