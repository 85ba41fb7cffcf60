"""Test fixtures for the log collector."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.delenv("LOGC_CONFIG", raising=False)
    monkeypatch.delenv("LOGC_HOST", raising=False)

    from log_collector.api import dependencies as deps
    from log_collector.core.config import get_settings

    get_settings.cache_clear()
    deps.set_engine(None)
    yield
    get_settings.cache_clear()
    deps.set_engine(None)


class CollectingSink:
    """Thread-safe record sink that keeps everything it receives."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: list[Any] = []

    def __call__(self, record: Any) -> None:
        with self._lock:
            self.records.append(record)

    @property
    def texts(self) -> list[str]:
        with self._lock:
            return [record.text for record in self.records]


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def make_input(tmp_path: Path) -> Callable[..., Any]:
    from log_collector.core.config import FileInputConfig

    def _make(input_id: str = "app", **options: Any) -> FileInputConfig:
        options.setdefault("path", tmp_path / "app.log")
        return FileInputConfig(id=input_id, **options)

    return _make


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
