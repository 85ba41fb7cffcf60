"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException

from log_collector.file.engine import FileInputEngine

_ENGINE: FileInputEngine | None = None


def set_engine(engine: FileInputEngine | None) -> None:
    """Register the engine the status routes report on."""
    global _ENGINE
    _ENGINE = engine


def current_engine() -> FileInputEngine | None:
    return _ENGINE


def get_engine() -> FileInputEngine:
    if _ENGINE is None:
        raise HTTPException(status_code=503, detail="File input engine is not running")
    return _ENGINE


__all__ = ["current_engine", "get_engine", "set_engine"]
