"""Strategies deciding whether a path still belongs to a logical input."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

from log_collector.file.paths import glob_matches, normalize_path


@dataclass(frozen=True, slots=True)
class ExactFileStrategy:
    """Matches exactly one path, so a recreated file under the same name is the same input."""

    base_path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_path", normalize_path(self.base_path))

    def path_matches(self, path: Path | str) -> bool:
        # Relative candidates are taken to live next to the base path.
        candidate = normalize_path(self.base_path.parent / Path(path))
        return candidate == self.base_path


@dataclass(frozen=True, slots=True)
class GlobFileStrategy:
    """Matches any file below ``root`` whose relative path satisfies ``pattern``."""

    root: Path
    pattern: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", normalize_path(self.root))

    def path_matches(self, path: Path | str) -> bool:
        return glob_matches(self.root, self.pattern, path)


FileNamingStrategy = Union[ExactFileStrategy, GlobFileStrategy]


def path_matches(strategy: FileNamingStrategy, path: Path | str) -> bool:
    return strategy.path_matches(path)


__all__ = ["ExactFileStrategy", "FileNamingStrategy", "GlobFileStrategy", "path_matches"]
