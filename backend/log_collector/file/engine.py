"""File input engine: registry of tailers driven by one watch service."""

from __future__ import annotations

import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from log_collector.core.config import FileInputConfig, Settings
from log_collector.core.errors import WatchInitError
from log_collector.core.logging import get_logger
from log_collector.core.metrics import RESCANS, TAILERS
from log_collector.file.naming import ExactFileStrategy, FileNamingStrategy, GlobFileStrategy
from log_collector.file.paths import GlobPathSpec, PathSpec, SinglePathSpec
from log_collector.file.reader import FileTailer
from log_collector.file.types import (
    CursorStore,
    EventKind,
    ReadCursor,
    RecordSink,
    TailerState,
    TailerStatus,
    WatchEvent,
)
from log_collector.file.watcher import WatchService, create_watch_service

logger = get_logger(__name__)

_MAX_RELEASED = 1024
_DISPATCH_POLL = 0.25


@dataclass
class InputEntry:
    """A configured input together with the tailers it currently owns."""

    config: FileInputConfig
    spec: PathSpec
    strategy: FileNamingStrategy
    tailers: dict[Path, FileTailer] = field(default_factory=dict)
    # Cursors of files a tailer let go of, keyed by (device, inode).
    released: "OrderedDict[tuple[int, int], ReadCursor]" = field(default_factory=OrderedDict)

    @property
    def is_glob(self) -> bool:
        return isinstance(self.spec, GlobPathSpec)


class FileInputEngine:
    """Discover, watch and tail the configured file inputs.

    One dispatch thread consumes the watch service's event queue and forwards
    events to the tailers whose naming strategy matches. Every tailer runs on
    its own thread. The registry lock is held only while inputs or tailers
    are added or removed and while snapshots are taken.
    """

    def __init__(
        self,
        inputs: Iterable[FileInputConfig],
        sink: RecordSink,
        watch_service: WatchService | None = None,
        cursor_store: CursorStore | None = None,
        rescan_interval: int = 1000,
        shutdown_timeout: int = 5000,
    ) -> None:
        self.sink = sink
        self.watch_service = watch_service or create_watch_service(None)
        self.cursor_store = cursor_store
        self.rescan_interval = rescan_interval
        self.shutdown_timeout = shutdown_timeout
        self._lock = threading.Lock()
        self._inputs: dict[str, InputEntry] = {}
        self._running = False
        self._stopping = threading.Event()
        self._dispatcher: threading.Thread | None = None
        for config in inputs:
            self.add_input(config)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sink: RecordSink,
        cursor_store: CursorStore | None = None,
    ) -> "FileInputEngine":
        return cls(
            settings.inputs.values(),
            sink,
            watch_service=create_watch_service(settings.file_watch_service),
            cursor_store=cursor_store,
            rescan_interval=settings.path_rescan_interval,
            shutdown_timeout=settings.shutdown_timeout,
        )

    @property
    def running(self) -> bool:
        return self._running

    # Registry ----------------------------------------------------------

    def add_input(self, config: FileInputConfig) -> None:
        spec = config.path_spec()
        if isinstance(spec, GlobPathSpec):
            strategy: FileNamingStrategy = GlobFileStrategy(spec.root, spec.pattern)
        else:
            strategy = ExactFileStrategy(spec.path)
        entry = InputEntry(config=config, spec=spec, strategy=strategy)
        with self._lock:
            if config.id in self._inputs:
                raise ValueError(f"Input {config.id!r} is already registered")
            self._inputs[config.id] = entry
        logger.info("Added input %s", config.id, extra={"ctx_options": config.to_string_values()})
        if isinstance(spec, SinglePathSpec):
            self._add_tailer(entry, spec.path)
        else:
            for path in sorted(spec.resolve()):
                self._discover(entry, path)
        if self._running:
            self._watch_roots(entry)

    def remove_input(self, input_id: str) -> None:
        with self._lock:
            entry = self._inputs.pop(input_id, None)
            if entry is None:
                raise KeyError(input_id)
            tailers = list(entry.tailers.values())
            entry.tailers.clear()
            remaining_roots = {root for other in self._inputs.values() for root, _ in other.spec.watch_roots()}
        TAILERS.dec(len(tailers))
        self._stop_tailers(tailers, self.shutdown_timeout / 1000.0)
        if self._running:
            for root, _ in entry.spec.watch_roots():
                if root not in remaining_roots:
                    self.watch_service.unwatch(root)
        logger.info("Removed input %s", input_id)

    def input_ids(self) -> list[str]:
        with self._lock:
            return list(self._inputs)

    def snapshot(self) -> list[TailerStatus]:
        return [tailer.status() for tailer in self._all_tailers()]

    def _entries(self) -> list[InputEntry]:
        with self._lock:
            return list(self._inputs.values())

    def _all_tailers(self) -> list[FileTailer]:
        with self._lock:
            return [tailer for entry in self._inputs.values() for tailer in entry.tailers.values()]

    def _add_tailer(self, entry: InputEntry, path: Path, resume: ReadCursor | None = None) -> FileTailer:
        config = entry.config
        tailer_id = f"{config.id}:{path}" if entry.is_glob else config.id
        on_release = (lambda cursor: self._remember_release(entry, cursor)) if entry.is_glob else None
        tailer = FileTailer(
            tailer_id,
            config,
            path,
            self.sink,
            cursor_store=self.cursor_store,
            resume=resume,
            on_release=on_release,
        )
        with self._lock:
            existing = entry.tailers.get(tailer.base_path)
            if existing is not None:
                return existing
            entry.tailers[tailer.base_path] = tailer
        TAILERS.inc()
        if self._running and not self._stopping.is_set():
            tailer.start()
        return tailer

    def _remember_release(self, entry: InputEntry, cursor: ReadCursor) -> None:
        assert cursor.device is not None and cursor.inode is not None
        with self._lock:
            entry.released[(cursor.device, cursor.inode)] = cursor
            while len(entry.released) > _MAX_RELEASED:
                entry.released.popitem(last=False)

    def _discover(self, entry: InputEntry, path: Path) -> FileTailer | None:
        """Start tailing a newly matched file of a glob input.

        A file already read by another tailer of the same input (a rotated file
        under a new name) is skipped while that tailer is bound to it, and
        continues from the released offset afterwards.
        """
        try:
            st = os.stat(path)
        except OSError:
            return None
        identity = (st.st_dev, st.st_ino)
        with self._lock:
            existing = entry.tailers.get(path)
            if existing is not None:
                return existing
            if any(tailer.bound_to(*identity) for tailer in entry.tailers.values()):
                logger.debug("Skipping %s, already tailed under another name", path)
                return None
            resume = entry.released.pop(identity, None)
        if resume is not None:
            logger.info("Resuming renamed file %s at offset %s", path, resume.offset)
        return self._add_tailer(entry, path, resume=resume)

    def _remove_vanished(self, entry: InputEntry, current: set[Path]) -> None:
        with self._lock:
            vanished = [
                path for path, tailer in entry.tailers.items() if path not in current and tailer.state is TailerState.UNBOUND
            ]
            tailers = [entry.tailers.pop(path) for path in vanished]
        if tailers:
            TAILERS.dec(len(tailers))
            for tailer in tailers:
                logger.info("Dropping tailer for vanished file %s", tailer.base_path)
                tailer.stop()
                if tailer.join(0):
                    tailer.force_close()

    # Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the watch service, the tailers and the dispatcher.

        Raises ``WatchInitError`` when the notification facility is unavailable.
        """
        if self._running:
            return
        roots = [root for entry in self._entries() for root in entry.spec.watch_roots()]
        self.watch_service.start(roots)
        self._stopping.clear()
        self._running = True
        for tailer in self._all_tailers():
            tailer.start()
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="watch-dispatch", daemon=True)
        self._dispatcher.start()
        logger.info("File input engine started with %s inputs", len(self._entries()))

    def stop(self, timeout: float | None = None) -> None:
        """Flush and close every tailer, then stop the watch service.

        Tailers still running after ``timeout`` seconds are force-closed.
        """
        if not self._running:
            return
        if timeout is None:
            timeout = self.shutdown_timeout / 1000.0
        self._stopping.set()
        deadline = time.monotonic() + timeout
        if self._dispatcher is not None:
            self._dispatcher.join(max(0.0, min(_DISPATCH_POLL * 4, timeout)))
            self._dispatcher = None
        self._stop_tailers(self._all_tailers(), max(0.0, deadline - time.monotonic()))
        self.watch_service.stop()
        self._running = False
        logger.info("File input engine stopped")

    def _stop_tailers(self, tailers: list[FileTailer], timeout: float) -> None:
        deadline = time.monotonic() + timeout
        for tailer in tailers:
            tailer.stop()
        for tailer in tailers:
            if not tailer.join(max(0.0, deadline - time.monotonic())):
                logger.warning("Tailer %s did not stop within %.1fs, force-closing", tailer.id, timeout)
                tailer.force_close()
            elif tailer.state is not TailerState.CLOSED:
                # Never started, so there is no thread that would close it.
                tailer.force_close()

    def __enter__(self) -> "FileInputEngine":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # Dispatch ----------------------------------------------------------

    def _dispatch_loop(self) -> None:
        events = self.watch_service.events
        interval = self.rescan_interval / 1000.0
        next_rescan = time.monotonic() + interval
        while not self._stopping.is_set():
            event = events.take(timeout=max(0.0, min(_DISPATCH_POLL, next_rescan - time.monotonic())))
            try:
                if event is not None:
                    self.dispatch(event)
                if events.consume_overflow():
                    self.rescan("overflow")
                    next_rescan = time.monotonic() + interval
                elif time.monotonic() >= next_rescan:
                    self.rescan("interval")
                    next_rescan = time.monotonic() + interval
            except Exception:
                logger.exception("Watch event dispatch failed")

    def dispatch(self, event: WatchEvent) -> None:
        """Route ``event`` to every tailer whose input matches its path."""
        for entry in self._entries():
            if not entry.strategy.path_matches(event.path):
                continue
            with self._lock:
                tailer = entry.tailers.get(event.path)
            if tailer is None and entry.is_glob and event.kind is not EventKind.DELETED:
                tailer = self._discover(entry, event.path)
            if tailer is not None:
                tailer.notify(event)

    def rescan(self, reason: str = "manual") -> None:
        """Re-resolve every input, retry missing watch roots and wake all tailers."""
        RESCANS.labels(reason=reason).inc()
        if reason != "interval":
            logger.info("Rescanning all inputs (%s)", reason)
        for entry in self._entries():
            if self._running:
                self._watch_roots(entry)
            if entry.is_glob:
                current = entry.spec.resolve()
                for path in sorted(current):
                    self._discover(entry, path)
                self._remove_vanished(entry, current)
        for tailer in self._all_tailers():
            tailer.wake()

    def _watch_roots(self, entry: InputEntry) -> None:
        for root, recursive in entry.spec.watch_roots():
            try:
                self.watch_service.watch(root, recursive=recursive)
            except WatchInitError:
                logger.exception("Unable to watch %s for input %s", root, entry.config.id)
            except RuntimeError:
                # The watch service was stopped concurrently.
                return


__all__ = ["FileInputEngine", "InputEntry"]
