"""Filesystem watch services feeding a bounded event queue."""

from __future__ import annotations

import contextlib
import os
import queue
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch
from watchdog.observers.polling import PollingObserver

from log_collector.core.errors import WatchInitError
from log_collector.core.logging import get_logger
from log_collector.core.metrics import WATCH_EVENTS_DROPPED
from log_collector.file.paths import normalize_path
from log_collector.file.types import EventKind, WatchEvent

if TYPE_CHECKING:
    from log_collector.core.config import WatchServiceConfig

logger = get_logger(__name__)

DEFAULT_INTERVAL = 2000
DEFAULT_EVENT_QUEUE_SIZE = 4096
POLLING_TYPES = ("commons-io", "polling")


class EventQueue:
    """Bounded FIFO of watch events with a drop-oldest overflow policy.

    Producers never block. Every dropped event is counted and raises the
    overflow flag, which the consumer answers with a full rescan.
    """

    def __init__(self, maxsize: int = DEFAULT_EVENT_QUEUE_SIZE) -> None:
        self.maxsize = maxsize
        self._queue: queue.Queue[WatchEvent] = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._overflowed = False
        self.dropped = 0

    def offer(self, event: WatchEvent) -> bool:
        """Enqueue ``event``; returns False when an older event had to be dropped."""
        dropped_any = False
        with self._lock:
            while True:
                try:
                    self._queue.put_nowait(event)
                    break
                except queue.Full:
                    with contextlib.suppress(queue.Empty):
                        self._queue.get_nowait()
                        self.dropped += 1
                        dropped_any = True
                        WATCH_EVENTS_DROPPED.inc()
            if dropped_any:
                self._overflowed = True
        if dropped_any:
            logger.warning("Watch event queue full (capacity %s), dropped oldest event", self.maxsize)
        return not dropped_any

    def take(self, timeout: float | None = None) -> WatchEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def consume_overflow(self) -> bool:
        """Return and clear the overflow flag."""
        with self._lock:
            overflowed = self._overflowed
            self._overflowed = False
        return overflowed

    def qsize(self) -> int:
        return self._queue.qsize()


class QueueingEventHandler(FileSystemEventHandler):
    """Translate watchdog events into ``WatchEvent`` entries."""

    def __init__(self, events: EventQueue) -> None:
        super().__init__()
        self.events = events

    def _offer(self, raw_path: str | bytes, kind: EventKind) -> None:
        self.events.offer(WatchEvent(path=normalize_path(os.fsdecode(raw_path)), kind=kind))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.src_path, EventKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.src_path, EventKind.MODIFIED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.src_path, EventKind.DELETED)
            self._offer(event.dest_path, EventKind.CREATED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._offer(event.src_path, EventKind.DELETED)


class WatchService:
    """Lifecycle shared by the watch services: ``STOPPED -> STARTED -> STOPPED``."""

    kind = "base"

    def __init__(self, queue_size: int = DEFAULT_EVENT_QUEUE_SIZE) -> None:
        self.events = EventQueue(queue_size)
        self._handler = QueueingEventHandler(self.events)
        self._lock = threading.Lock()
        self._observer: BaseObserver | None = None
        self._watches: dict[Path, ObservedWatch] = {}

    def _create_observer(self) -> BaseObserver:  # pragma: no cover - interface
        raise NotImplementedError

    @property
    def started(self) -> bool:
        return self._observer is not None

    @property
    def watched_roots(self) -> list[Path]:
        with self._lock:
            return sorted(self._watches)

    def start(self, roots: Iterable[tuple[Path, bool]] = ()) -> None:
        with self._lock:
            if self._observer is not None:
                return
            try:
                observer = self._create_observer()
                observer.start()
            except OSError as exc:
                raise WatchInitError(f"Unable to create {self.kind} watch service: {exc}") from exc
            self._observer = observer
        logger.info("Started %s watch service", self.kind)
        try:
            for root, recursive in roots:
                self.watch(root, recursive=recursive)
        except WatchInitError:
            self.stop()
            raise

    def watch(self, root: Path, recursive: bool = False) -> bool:
        """Watch ``root``; returns False while the directory does not exist."""
        root = normalize_path(root)
        with self._lock:
            if self._observer is None:
                raise RuntimeError("Watch service is not started")
            existing = self._watches.get(root)
            if not root.is_dir():
                if existing is not None:
                    self._unschedule(existing)
                    del self._watches[root]
                    logger.info("Watched directory %s disappeared", root)
                return False
            if existing is not None:
                if existing.is_recursive or not recursive:
                    return True
                self._unschedule(existing)
            try:
                watch = self._observer.schedule(self._handler, str(root), recursive=recursive)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise WatchInitError(f"Unable to watch {root}: {exc}") from exc
            self._watches[root] = watch
        logger.info("Watching %s (recursive=%s)", root, recursive)
        return True

    def unwatch(self, root: Path) -> None:
        root = normalize_path(root)
        with self._lock:
            watch = self._watches.pop(root, None)
            if watch is not None:
                self._unschedule(watch)

    def _unschedule(self, watch: ObservedWatch) -> None:
        assert self._observer is not None
        with contextlib.suppress(KeyError):
            self._observer.unschedule(watch)

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            self._observer = None
            self._watches.clear()
        observer.unschedule_all()
        observer.stop()
        observer.join(timeout=5)
        logger.info("Stopped %s watch service", self.kind)


class NativeWatchService(WatchService):
    """Backed by the platform observer (inotify, FSEvents, kqueue, ReadDirectoryChangesW)."""

    kind = "native"

    def _create_observer(self) -> BaseObserver:
        return Observer()


class PollingWatchService(WatchService):
    """Backed by periodic directory snapshots; works on network mounts."""

    kind = "polling"

    def __init__(self, interval: int = DEFAULT_INTERVAL, queue_size: int = DEFAULT_EVENT_QUEUE_SIZE) -> None:
        super().__init__(queue_size)
        self.interval = interval

    def _create_observer(self) -> BaseObserver:
        return PollingObserver(timeout=self.interval / 1000.0)


def create_watch_service(config: "WatchServiceConfig | None") -> WatchService:
    """Select the watch service by its ``type``; anything unknown falls back to native."""
    if config is None:
        return NativeWatchService()
    if config.type.lower() in POLLING_TYPES:
        return PollingWatchService(interval=config.interval, queue_size=config.event_queue_size)
    if config.type.lower() != "native":
        logger.warning("Unknown file-watch-service type %r, using native", config.type)
    return NativeWatchService(queue_size=config.event_queue_size)


__all__ = [
    "EventQueue",
    "NativeWatchService",
    "PollingWatchService",
    "QueueingEventHandler",
    "WatchService",
    "create_watch_service",
]
