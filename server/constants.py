"""
Fixed game constants for Big Two.

Card ordering tables here are the single source of truth for every
comparison in the engine. Tunable defaults (turn time, sync cadence) live
in config.py; this module only re-exports the ones the engine reads.

Big Two ordering:
    - Ranks: 3 < 4 < ... < 10 < J < Q < K < A < 2
    - Suits: diamonds < clubs < hearts < spades
"""

import re

from config import config


# =============================================================================
# Card Ordering
# =============================================================================

RANK_ORDER: tuple[str, ...] = (
    "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A", "2",
)

SUIT_ORDER: tuple[str, ...] = ("diamonds", "clubs", "hearts", "spades")

SUIT_SYMBOLS: dict[str, str] = {
    "diamonds": "♦",
    "clubs": "♣",
    "hearts": "♥",
    "spades": "♠",
}

# Legacy numeric rank encoding used by older stored rows (J=11 ... A=14, 2=15)
NUMERIC_RANKS: dict[int, str] = {
    3: "3", 4: "4", 5: "5", 6: "6", 7: "7", 8: "8", 9: "9", 10: "10",
    11: "J", 12: "Q", 13: "K", 14: "A", 15: "2", 1: "A", 2: "2",
}

# Base value for each five-card kind, ascending
FIVE_CARD_KIND_ORDER: tuple[str, ...] = (
    "straight", "flush", "full_house", "four_of_a_kind", "straight_flush",
)


# =============================================================================
# Table Constants
# =============================================================================

DECK_SIZE = 52
MIN_PLAYERS = 2
MAX_PLAYERS = 4  # deck and hand-size math assumes at most four hands
SPECTATOR_POSITION = -1

# Only combinations of these sizes exist
PLAY_SIZES = (1, 2, 3, 5)

MAX_HINTS = 5


# =============================================================================
# Names
# =============================================================================

PLAYER_NAME_MAX_LENGTH = 20
GAME_NAME_MAX_LENGTH = 30

# Letters and digits in any script, no punctuation or underscores
PLAYER_NAME_PATTERN = re.compile(r"^[^\W_]+$")


# =============================================================================
# Defaults (from config)
# =============================================================================

DEFAULT_PRESET = config.game_defaults.preset
DEFAULT_MAX_PLAYERS = min(MAX_PLAYERS, max(MIN_PLAYERS, config.game_defaults.max_players))
DEFAULT_TURN_TIME = config.game_defaults.turn_time_seconds
