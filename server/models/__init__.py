"""Models package for the Big Two server.

``models.game_state`` imports the game engine, so it is not re-exported
here; import it directly.
"""

from .events import (
    ChangeEvent,
    ChangeOp,
    PlayHistoryEntry,
    PlayType,
    Table,
    pass_entry,
    play_entry,
)

__all__ = [
    "ChangeEvent",
    "ChangeOp",
    "PlayHistoryEntry",
    "PlayType",
    "Table",
    "pass_entry",
    "play_entry",
]
