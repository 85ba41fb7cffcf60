"""File input engine components."""

from .naming import ExactFileStrategy, GlobFileStrategy, path_matches
from .paths import GlobPathSpec, SinglePathSpec, resolve
from .splitters import ContentSplitter, NewlineSplitter, PatternSplitter
from .types import EventKind, MemoryCursorStore, ReadCursor, Record, TailerState, WatchEvent

__all__ = [
    "ContentSplitter",
    "EventKind",
    "ExactFileStrategy",
    "GlobFileStrategy",
    "GlobPathSpec",
    "MemoryCursorStore",
    "NewlineSplitter",
    "PatternSplitter",
    "ReadCursor",
    "Record",
    "SinglePathSpec",
    "TailerState",
    "WatchEvent",
    "path_matches",
    "resolve",
]
