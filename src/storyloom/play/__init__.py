"""Play package - the traversal state machine used by the player runtime."""

from storyloom.play.session import (
    HistoryEntry,
    NavigationError,
    PlaySession,
    PlayState,
    SessionSnapshot,
    TurnOutcome,
)

__all__ = [
    "HistoryEntry",
    "NavigationError",
    "PlaySession",
    "PlayState",
    "SessionSnapshot",
    "TurnOutcome",
]
