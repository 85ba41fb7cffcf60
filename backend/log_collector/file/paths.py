"""Path specs and their resolution to concrete files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Union


def normalize_path(path: Path | str) -> Path:
    """Absolute, lexically normalized path; symlinks are not followed."""
    return Path(os.path.normpath(os.path.abspath(os.path.expanduser(os.fspath(path)))))


@lru_cache(maxsize=128)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a relative glob into a regex over ``/``-separated paths.

    ``*`` and ``?`` never cross a directory separator, ``**`` does.
    """
    i, n = 0, len(pattern)
    parts: list[str] = []
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**/", i):
                parts.append("(?:.*/)?")
                i += 3
                continue
            if pattern.startswith("**", i):
                parts.append(".*")
                i += 2
                continue
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 2 if pattern.startswith("[!", i) else i + 1)
            if j == -1:
                parts.append(re.escape(c))
            else:
                body = pattern[i + 1 : j]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append("[" + body.replace("\\", "\\\\") + "]")
                i = j + 1
                continue
        else:
            parts.append(re.escape(c))
        i += 1
    return re.compile("(?s:" + "".join(parts) + r")\Z")


def glob_matches(root: Path, pattern: str, path: Path | str) -> bool:
    """Whether ``path``, taken relative to ``root``, satisfies ``pattern``.

    Both glob resolution and event routing go through this check.
    """
    candidate = normalize_path(root / Path(path))
    try:
        relative = candidate.relative_to(root)
    except ValueError:
        return False
    if relative == Path("."):
        return False
    return glob_to_regex(pattern).match(relative.as_posix()) is not None


@dataclass(frozen=True, slots=True)
class SinglePathSpec:
    """An exact file path."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", normalize_path(self.path))

    def resolve(self) -> set[Path]:
        return {self.path} if self.path.is_file() else set()

    def watch_roots(self) -> list[tuple[Path, bool]]:
        return [(self.path.parent, False)]

    def __str__(self) -> str:
        return f"SinglePathSpec{{path={self.path}}}"


@dataclass(frozen=True, slots=True)
class GlobPathSpec:
    """A glob pattern evaluated relative to a root directory."""

    root: Path
    pattern: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", normalize_path(self.root))

    @property
    def recursive(self) -> bool:
        return "**" in self.pattern or "/" in self.pattern

    def matches(self, path: Path | str) -> bool:
        return glob_matches(self.root, self.pattern, path)

    def resolve(self) -> set[Path]:
        if not self.root.is_dir():
            return set()
        found: set[Path] = set()
        # Unreadable directories are skipped by os.walk.
        for directory, dirnames, filenames in os.walk(self.root):
            if not self.recursive:
                dirnames.clear()
            for name in filenames:
                candidate = Path(directory) / name
                if self.matches(candidate) and candidate.is_file():
                    found.add(normalize_path(candidate))
        return found

    def watch_roots(self) -> list[tuple[Path, bool]]:
        return [(self.root, self.recursive)]

    def __str__(self) -> str:
        return f"GlobPathSpec{{root={self.root}, pattern={self.pattern}}}"


PathSpec = Union[SinglePathSpec, GlobPathSpec]


def resolve(spec: PathSpec) -> set[Path]:
    """Return the files currently matching ``spec``; a missing root yields an empty set."""
    return spec.resolve()


__all__ = [
    "GlobPathSpec",
    "PathSpec",
    "SinglePathSpec",
    "glob_matches",
    "glob_to_regex",
    "normalize_path",
    "resolve",
]
