"""Exception types raised by the file input engine."""

from __future__ import annotations


class LogCollectorError(Exception):
    """Base class for collector errors."""


class ConfigurationError(LogCollectorError):
    """Raised when the configuration cannot be loaded or is invalid."""


class WatchInitError(LogCollectorError):
    """Raised when the filesystem notification facility cannot be created."""


__all__ = ["LogCollectorError", "ConfigurationError", "WatchInitError"]
