"""
Error taxonomy for the Big Two engine.

Two kinds of failure exist:

- Rejections: a single action was refused (not your turn, weak play, stale
  turn counter). These are returned as values (``ActionResult`` /
  ``ValidationResult``) carrying a ``RejectReason`` and never raised.
- Errors: exceptions derived from ``GameError``. Each carries a ``code`` and
  a ``category`` so callers can tell "invalid play" from "connection problem"
  from "this game is corrupt".

Messages are default English text keyed by code; clients localize by code.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Broad classes of failure, used for user-facing affordances."""

    VALIDATION = "validation"      # reject one action, state untouched
    CONCURRENCY = "concurrency"    # stale turn counter, re-read and retry
    CONNECTIVITY = "connectivity"  # storage unreachable, sync backs off
    INTEGRITY = "integrity"        # game data is corrupt, host must end/reset
    DECODE = "decode"              # stored row has an unexpected shape
    LOBBY = "lobby"                # join/start/end preconditions


class RejectReason(str, Enum):
    """Why a play or pass was refused."""

    NOT_YOUR_TURN = "not_your_turn"
    STALE_TURN = "stale_turn"
    INVALID_COMBINATION = "invalid_combination"
    SHAPE_MISMATCH = "shape_mismatch"
    MUST_BEAT_LAST_PLAY = "must_beat_last_play"
    MUST_OPEN_WITH_REQUIRED_CARD = "must_open_with_required_card"
    CANNOT_LEAVE_LONE_WEAK_CARD = "cannot_leave_lone_weak_card"
    CANNOT_PASS_ON_LEAD = "cannot_pass_on_lead"
    CARDS_NOT_IN_HAND = "cards_not_in_hand"
    GAME_NOT_IN_PROGRESS = "game_not_in_progress"
    NOT_A_PLAYER = "not_a_player"


class LobbyErrorCode(str, Enum):
    """Codes for lobby and lifecycle operations."""

    GAME_NOT_FOUND = "game_not_found"
    INVALID_NAME = "invalid_name"
    NAME_TAKEN = "name_taken"
    GAME_FULL = "game_full"
    SPECTATORS_NOT_ALLOWED = "spectators_not_allowed"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    TOO_MANY_PLAYERS = "too_many_players"
    INVALID_TRANSITION = "invalid_transition"
    NOT_HOST = "not_host"
    UNKNOWN_PRESET = "unknown_preset"


# Default messages keyed by code value
MESSAGES: dict[str, str] = {
    # Rejections
    RejectReason.NOT_YOUR_TURN.value: "It is not your turn.",
    RejectReason.STALE_TURN.value: "The game moved on before your action arrived. Refresh and try again.",
    RejectReason.INVALID_COMBINATION.value: "Those cards do not form a valid combination.",
    RejectReason.SHAPE_MISMATCH.value: "You must play the same number of cards as the last play.",
    RejectReason.MUST_BEAT_LAST_PLAY.value: "Your play must beat the last play.",
    RejectReason.MUST_OPEN_WITH_REQUIRED_CARD.value: "The first play of the game must include the 3 of diamonds.",
    RejectReason.CANNOT_LEAVE_LONE_WEAK_CARD.value: "You cannot be left holding a single card of the weakest suit.",
    RejectReason.CANNOT_PASS_ON_LEAD.value: "You are leading this trick and must play.",
    RejectReason.CARDS_NOT_IN_HAND.value: "You do not hold all of those cards.",
    RejectReason.GAME_NOT_IN_PROGRESS.value: "The game is not in progress.",
    RejectReason.NOT_A_PLAYER.value: "Only seated players can act.",
    # Lobby
    LobbyErrorCode.GAME_NOT_FOUND.value: "Game not found.",
    LobbyErrorCode.INVALID_NAME.value: "Names must be 1-20 letters or digits.",
    LobbyErrorCode.NAME_TAKEN.value: "That name is already taken in this game.",
    LobbyErrorCode.GAME_FULL.value: "The game is full.",
    LobbyErrorCode.SPECTATORS_NOT_ALLOWED.value: "This game does not allow spectators.",
    LobbyErrorCode.NOT_ENOUGH_PLAYERS.value: "At least two players are needed to start.",
    LobbyErrorCode.TOO_MANY_PLAYERS.value: "At most four players can play.",
    LobbyErrorCode.INVALID_TRANSITION.value: "That action is not possible in the game's current state.",
    LobbyErrorCode.NOT_HOST.value: "Only the host can do that.",
    LobbyErrorCode.UNKNOWN_PRESET.value: "Unknown rule preset.",
    # Exceptions
    "concurrency_conflict": "Someone else acted first. Refresh and try again.",
    "store_unavailable": "Connection problem. Retrying.",
    "sync_failed": "Could not reach the game server. Check your connection.",
    "data_integrity": "This game's data is inconsistent. The host must end or reset the game.",
    "decode_error": "Received malformed game data.",
}

_STALE_CODES = {RejectReason.STALE_TURN.value, "concurrency_conflict"}


def message_for(code: str, detail: Optional[str] = None) -> str:
    """Default message for a code, optionally followed by detail."""
    base = MESSAGES.get(code, code.replace("_", " ").capitalize())
    return f"{base} ({detail})" if detail else base


def category_for(code: str) -> ErrorCategory:
    """Map a rejection or lobby code to its category."""
    if code in _STALE_CODES:
        return ErrorCategory.CONCURRENCY
    if code in RejectReason._value2member_map_:
        return ErrorCategory.VALIDATION
    return ErrorCategory.LOBBY


class GameError(Exception):
    """Base exception for game-related errors."""

    category: ErrorCategory = ErrorCategory.LOBBY

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or message_for(code)
        super().__init__(f"[{code}] {self.message}")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
        }


class GameNotFoundError(GameError):
    """Raised when a game (or its state row) does not exist."""

    def __init__(self, game_id: str):
        self.game_id = game_id
        super().__init__(LobbyErrorCode.GAME_NOT_FOUND.value, f"Game {game_id} not found.")


class ConcurrencyError(GameError):
    """Raised when a conditional write's turn-count precondition fails."""

    category = ErrorCategory.CONCURRENCY

    def __init__(self, message: Optional[str] = None):
        super().__init__("concurrency_conflict", message)


class StoreUnavailableError(GameError):
    """Raised when storage cannot be reached or times out."""

    category = ErrorCategory.CONNECTIVITY

    def __init__(self, message: Optional[str] = None):
        super().__init__("store_unavailable", message)


class SyncFailedError(GameError):
    """Raised when a sync session exhausted its retries."""

    category = ErrorCategory.CONNECTIVITY

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("sync_failed", message_for("sync_failed", f"{attempts} attempts"))


class DataIntegrityError(GameError):
    """
    Raised when a game's cards or history no longer reconcile.

    Fatal for the affected game; never repaired silently.
    """

    category = ErrorCategory.INTEGRITY

    def __init__(self, message: str):
        super().__init__("data_integrity", message)


class DecodeError(GameError):
    """Raised when a stored row fails schema validation."""

    category = ErrorCategory.DECODE

    def __init__(self, message: str):
        super().__init__("decode_error", message)
