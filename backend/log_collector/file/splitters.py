"""Content splitters turning a byte stream into records.

The splitting logic lives in pure functions that take the retained
``SplitterState`` plus newly read bytes and return the new state with the
complete records found. The ``ContentSplitter`` classes wrap those functions
for the tailer, which owns exactly one splitter per logical input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

import regex

from log_collector.core.logging import get_logger

logger = get_logger(__name__)

_NEWLINE = b"\n"
_CR = b"\r"


@dataclass(frozen=True, slots=True)
class SplitterState:
    """Bytes read but not yet resolved into a complete record."""

    buffer: bytes = b""


def _strip_cr(line: bytes) -> bytes:
    return line[:-1] if line.endswith(_CR) else line


def split_lines(state: SplitterState, data: bytes) -> tuple[SplitterState, list[bytes]]:
    """Split on ``\\n``; a trailing ``\\r`` is trimmed and terminators are never part of a record."""
    buffer = state.buffer + data
    records: list[bytes] = []
    start = 0
    while True:
        index = buffer.find(_NEWLINE, start)
        if index == -1:
            break
        records.append(_strip_cr(buffer[start:index]))
        start = index + 1
    return SplitterState(buffer[start:]), records


def flush_lines(state: SplitterState) -> tuple[SplitterState, list[bytes]]:
    if not state.buffer:
        return state, []
    return SplitterState(), [_strip_cr(state.buffer)]


def _skip_set(pattern: bytes, i: int) -> int:
    """Offset just past the character set opening at ``pattern[i]``."""
    j = i + 1
    if pattern[j : j + 1] == b"^":
        j += 1
    if pattern[j : j + 1] == b"]":
        j += 1
    while j < len(pattern):
        c = pattern[j : j + 1]
        if c == b"\\":
            j += 2
            continue
        if c == b"]":
            return j + 1
        j += 1
    return j


def lookahead_bodies(pattern: bytes) -> list[bytes]:
    """Bodies of the ``(?=...)`` and ``(?!...)`` groups of ``pattern``."""
    bodies: list[bytes] = []
    # Body offset of each open group, None for groups that are not lookaheads.
    open_groups: list[int | None] = []
    i = 0
    while i < len(pattern):
        c = pattern[i : i + 1]
        if c == b"\\":
            i += 2
            continue
        if c == b"[":
            i = _skip_set(pattern, i)
            continue
        if c == b"(":
            if pattern.startswith((b"(?=", b"(?!"), i):
                open_groups.append(i + 3)
                i += 3
                continue
            open_groups.append(None)
        elif c == b")" and open_groups:
            start = open_groups.pop()
            if start is not None:
                bodies.append(pattern[start:i])
        i += 1
    return bodies


def compile_lookaheads(delimiter: regex.Pattern[bytes]) -> tuple[regex.Pattern[bytes], ...]:
    """Compile the lookahead bodies of ``delimiter`` on their own.

    A body that cannot stand alone (a backreference into the enclosing
    pattern) is left out, so matches depending on it are not held back.
    """
    compiled: list[regex.Pattern[bytes]] = []
    for body in lookahead_bodies(delimiter.pattern):
        try:
            compiled.append(regex.compile(body, delimiter.flags))
        except regex.error as exc:
            logger.warning("Lookahead %r of %r cannot be checked on its own: %s", body, delimiter.pattern, exc)
    return tuple(compiled)


def _undecided(lookaheads: Sequence[regex.Pattern[bytes]], buffer: bytes, start: int, end: int) -> bool:
    """Whether a lookahead evaluated inside ``buffer[start:end]`` ran out of bytes."""
    for body in lookaheads:
        for pos in range(start, end + 1):
            match = body.match(buffer, pos, partial=True)
            if match is not None and match.partial:
                return True
    return False


def split_pattern(
    delimiter: regex.Pattern[bytes],
    state: SplitterState,
    data: bytes,
    final: bool = False,
    lookaheads: Sequence[regex.Pattern[bytes]] = (),
) -> tuple[SplitterState, list[bytes]]:
    """Split on matches of ``delimiter``.

    Until ``final`` is set a match is held back, together with everything
    after it, while more bytes could still change it: the search runs in
    partial mode, a match touching the end of the buffer may still grow, and
    any of ``lookaheads`` (see ``compile_lookaheads``) that partially matches
    at the delimiter may still flip. The last check is needed because the
    regex engine reports a negative lookahead at the end of the buffer as a
    complete match. Zero-width matches are ignored.
    """
    buffer = state.buffer + data
    records: list[bytes] = []
    start = 0
    search_from = 0
    length = len(buffer)
    while search_from <= length:
        match = delimiter.search(buffer, search_from, partial=not final)
        if match is None:
            break
        if match.partial:
            break
        if match.end() == match.start():
            search_from = match.end() + 1
            continue
        if not final and (
            match.end() >= length or _undecided(lookaheads, buffer, match.start(), match.end())
        ):
            break
        records.append(buffer[start : match.start()])
        start = search_from = match.end()
    rest = buffer[start:]
    if final:
        if rest:
            records.append(rest)
        return SplitterState(), records
    return SplitterState(rest), records


class ContentSplitter:
    """Common splitter interface."""

    name = "base"

    def __init__(self) -> None:
        self.state = SplitterState()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of an emitted record."""
        return len(self.state.buffer)

    def feed(self, data: bytes) -> Iterator[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    def flush(self) -> list[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    def reset(self) -> bytes:
        """Drop the partial tail and return it."""
        tail = self.state.buffer
        self.state = SplitterState()
        return tail


class NewlineSplitter(ContentSplitter):
    name = "NEWLINE"

    def feed(self, data: bytes) -> Iterator[bytes]:
        self.state, records = split_lines(self.state, data)
        return iter(records)

    def flush(self) -> list[bytes]:
        self.state, records = flush_lines(self.state)
        return records


class PatternSplitter(ContentSplitter):
    name = "PATTERN"

    def __init__(self, pattern: bytes | regex.Pattern[bytes]) -> None:
        super().__init__()
        self.delimiter = regex.compile(pattern) if isinstance(pattern, bytes) else pattern
        self.lookaheads = compile_lookaheads(self.delimiter)

    def feed(self, data: bytes) -> Iterator[bytes]:
        self.state, records = split_pattern(self.delimiter, self.state, data, lookaheads=self.lookaheads)
        return iter(records)

    def flush(self) -> list[bytes]:
        self.state, records = split_pattern(self.delimiter, self.state, b"", final=True)
        return records


__all__ = [
    "ContentSplitter",
    "NewlineSplitter",
    "PatternSplitter",
    "SplitterState",
    "compile_lookaheads",
    "flush_lines",
    "lookahead_bodies",
    "split_lines",
    "split_pattern",
]
