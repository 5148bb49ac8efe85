"""
Play validation and house rules for Big Two.

``validate_play`` is a pure function: it decides whether a proposed play is
legal given the table and the hand that would remain. All state changes
happen in ``game.Game`` after validation succeeds.
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Iterable, Optional

from cards import Card, Suit, THREE_OF_DIAMONDS, parse_suit
from combinations import Combination, Comparison, classify, compare
from config import parse_bool
from constants import DEFAULT_TURN_TIME, MAX_PLAYERS
from errors import DataIntegrityError, RejectReason, message_for


@dataclass
class GameOptions:
    """
    House rules and table settings.

    All options default to the classic ruleset.
    """

    require_opening_card: bool = True
    """With fewer than four players the first play must include the 3 of diamonds."""

    forbid_lone_weak_card: bool = True
    """A play may not leave its player holding a single card of ``weak_suit``."""

    weak_suit: Suit = Suit.SPADES
    """Suit for the lone-card rule."""

    allow_four_of_a_kind: bool = True
    """Four of a kind plus a kicker is a legal five-card hand."""

    allow_spectators: bool = True
    """Joiners beyond the seat limit (or after the deal) may watch."""

    timer_enabled: bool = False
    """Run a countdown on each turn."""

    turn_time_seconds: int = DEFAULT_TURN_TIME
    """Countdown length when the timer is enabled."""

    auto_pass: bool = True
    """On timeout, pass (or lead the smallest legal play when leading)."""

    def is_standard_rules(self) -> bool:
        """Check if the options match the classic preset."""
        return self == PRESET_RULES["classic"]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["weak_suit"] = self.weak_suit.value
        return data

    @classmethod
    def from_client_data(cls, data: Optional[dict]) -> "GameOptions":
        """
        Build GameOptions from client or stored data.

        Unknown keys are ignored; a ``preset`` key selects the base ruleset
        that explicit keys then override.
        """
        data = dict(data or {})
        base = PRESET_RULES.get(data.pop("preset", "classic"), PRESET_RULES["classic"])
        options = replace(base)

        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key not in known:
                continue
            if key == "weak_suit":
                value = parse_suit(value)
            elif key == "turn_time_seconds":
                value = max(5, min(300, int(value)))
            else:
                value = parse_bool(value, getattr(options, key))
            setattr(options, key, value)
        return options


PRESET_RULES: dict[str, GameOptions] = {
    "classic": GameOptions(),
    "fast": GameOptions(
        require_opening_card=False,
        forbid_lone_weak_card=False,
        timer_enabled=True,
        turn_time_seconds=15,
    ),
    "casual": GameOptions(
        require_opening_card=False,
        forbid_lone_weak_card=False,
        turn_time_seconds=60,
    ),
}


class ValidationResult:
    """Result of validating a proposed play."""

    def __init__(
        self,
        valid: bool,
        reason: Optional[RejectReason] = None,
        message: str = "",
        combination: Optional[Combination] = None,
    ):
        self.valid = valid
        self.reason = reason
        self.message = message
        self.combination = combination

    @classmethod
    def success(cls, combination: Combination) -> "ValidationResult":
        return cls(valid=True, combination=combination)

    @classmethod
    def error(cls, reason: RejectReason, detail: Optional[str] = None) -> "ValidationResult":
        return cls(valid=False, reason=reason, message=message_for(reason.value, detail))

    def __repr__(self) -> str:
        if self.valid:
            return f"ValidationResult(valid=True, {self.combination.kind.value})"
        return f"ValidationResult(valid=False, {self.reason.value})"


def validate_play(
    proposed: Iterable[Card],
    last_play: Iterable[Card],
    active_player_count: int,
    remaining_hand: Iterable[Card],
    *,
    opening_play: bool = False,
    options: Optional[GameOptions] = None,
) -> ValidationResult:
    """
    Decide whether a proposed play is legal.

    Args:
        proposed: Cards being played.
        last_play: Cards currently on the table (empty when leading a trick).
        active_player_count: Seated players in the game.
        remaining_hand: The player's hand after this play.
        opening_play: True for the very first play of a fresh game.
        options: House rules; classic rules when omitted.

    Returns:
        ValidationResult with the classified combination on success.

    Raises:
        DataIntegrityError: If the cards on the table are not a legal combination.
    """
    options = options or GameOptions()
    proposed = list(proposed)
    last_play = list(last_play)
    remaining = list(remaining_hand)

    if not proposed:
        return ValidationResult.error(RejectReason.INVALID_COMBINATION, "no cards")

    combination = classify(proposed, allow_four_of_a_kind=options.allow_four_of_a_kind)
    if combination is None:
        return ValidationResult.error(RejectReason.INVALID_COMBINATION)

    if (
        opening_play
        and options.require_opening_card
        and active_player_count < MAX_PLAYERS
        and THREE_OF_DIAMONDS not in combination.cards
    ):
        return ValidationResult.error(RejectReason.MUST_OPEN_WITH_REQUIRED_CARD)

    # Exempt when the whole hand is of the weak suit
    if (
        options.forbid_lone_weak_card
        and len(remaining) == 1
        and remaining[0].suit == options.weak_suit
        and any(card.suit != options.weak_suit for card in proposed)
    ):
        return ValidationResult.error(
            RejectReason.CANNOT_LEAVE_LONE_WEAK_CARD, remaining[0].display
        )

    if not last_play:
        return ValidationResult.success(combination)

    on_table = classify(last_play)
    if on_table is None:
        labels = " ".join(card.display for card in last_play)
        raise DataIntegrityError(f"Cards on the table are not a legal combination: {labels}")

    result = compare(combination, on_table)
    if result == Comparison.INCOMPARABLE:
        return ValidationResult.error(
            RejectReason.SHAPE_MISMATCH, f"{on_table.size} card(s) required"
        )
    if result != Comparison.GREATER:
        return ValidationResult.error(RejectReason.MUST_BEAT_LAST_PLAY, on_table.describe())

    return ValidationResult.success(combination)
