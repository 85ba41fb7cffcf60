"""Common data structures of the file input engine."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol


class EventKind(str, enum.Enum):
    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class TailerState(str, enum.Enum):
    UNBOUND = "UNBOUND"
    BOUND = "BOUND"
    ROTATING = "ROTATING"
    CLOSED = "CLOSED"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """Filesystem change reported by a watch service."""

    path: Path
    kind: EventKind
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class Record:
    """A complete record produced by a content splitter."""

    input_id: str
    path: Path
    data: bytes
    text: str
    sequence: int
    offset: int

    def to_dict(self) -> dict[str, object]:
        return {
            "input_id": self.input_id,
            "path": str(self.path),
            "message": self.text,
            "sequence": self.sequence,
            "offset": self.offset,
        }


RecordSink = Callable[[Record], None]


@dataclass(slots=True)
class ReadCursor:
    """Resumable read position of a logical input.

    ``device`` and ``inode`` identify the physical file the offset belongs to.
    """

    input_id: str
    path: Path
    offset: int = 0
    device: int | None = None
    inode: int | None = None

    def same_file(self, device: int, inode: int) -> bool:
        return self.device == device and self.inode == inode


class CursorStore(Protocol):
    """Storage collaborator for read cursors."""

    def load(self, input_id: str) -> ReadCursor | None:
        ...

    def save(self, cursor: ReadCursor) -> None:
        ...


class MemoryCursorStore:
    """Process-local cursor store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cursors: dict[str, ReadCursor] = {}

    def load(self, input_id: str) -> ReadCursor | None:
        with self._lock:
            cursor = self._cursors.get(input_id)
        if cursor is None:
            return None
        return ReadCursor(cursor.input_id, cursor.path, cursor.offset, cursor.device, cursor.inode)

    def save(self, cursor: ReadCursor) -> None:
        with self._lock:
            self._cursors[cursor.input_id] = ReadCursor(
                cursor.input_id, cursor.path, cursor.offset, cursor.device, cursor.inode
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._cursors)


@dataclass(slots=True)
class TailerStatus:
    """Point-in-time view of a tailer, used by the status API."""

    id: str
    input_id: str
    path: Path
    state: TailerState
    offset: int
    records: int
    errors: int

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "input_id": self.input_id,
            "path": str(self.path),
            "state": self.state.value,
            "offset": self.offset,
            "records": self.records,
            "errors": self.errors,
        }


__all__ = [
    "CursorStore",
    "EventKind",
    "MemoryCursorStore",
    "ReadCursor",
    "Record",
    "RecordSink",
    "TailerState",
    "TailerStatus",
    "WatchEvent",
]
