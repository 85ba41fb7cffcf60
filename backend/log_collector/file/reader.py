"""Tailing of a single logical input."""

from __future__ import annotations

import os
import queue
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Callable

from log_collector.core.logging import get_logger
from log_collector.core.metrics import BYTES_READ, READ_ERRORS, RECORDS_EMITTED, ROTATIONS
from log_collector.file.naming import ExactFileStrategy
from log_collector.file.paths import normalize_path
from log_collector.file.types import (
    CursorStore,
    EventKind,
    ReadCursor,
    Record,
    RecordSink,
    TailerState,
    TailerStatus,
    WatchEvent,
)

if TYPE_CHECKING:
    from log_collector.core.config import FileInputConfig

logger = get_logger(__name__)

ReleaseCallback = Callable[[ReadCursor], None]


class FileTailer:
    """Reads one logical input incrementally and hands complete records to a sink.

    State machine: ``UNBOUND -> BOUND -> (ROTATING -> BOUND)* -> CLOSED``.

    ``poll()`` is the read-and-split step. It is a no-op when nothing changed,
    so watch events and the ``reader-interval`` timer can both trigger it.
    All cursor and splitter state is touched only by the thread running the
    tailer (or by the caller of ``poll()`` when no thread was started).
    """

    def __init__(
        self,
        tailer_id: str,
        config: "FileInputConfig",
        path: Path,
        sink: RecordSink,
        cursor_store: CursorStore | None = None,
        resume: ReadCursor | None = None,
        on_release: ReleaseCallback | None = None,
    ) -> None:
        self.id = tailer_id
        self.input_id = config.id
        self.config = config
        self.base_path = normalize_path(path)
        self.strategy = ExactFileStrategy(self.base_path)
        self.sink = sink
        self.cursor_store = cursor_store
        self.on_release = on_release
        self.splitter = config.create_content_splitter()
        self.cursor = ReadCursor(tailer_id, self.base_path)
        self.state = TailerState.UNBOUND
        self.sequence = 0
        self.records = 0
        self.errors = 0
        self._resume = resume
        self._handle: BinaryIO | None = None
        self._inbox: queue.SimpleQueue[WatchEvent] = queue.SimpleQueue()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._verified_at = 0.0

    # Thread lifecycle -------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"tailer-{self.id}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ask the tailer thread to finish its current step, flush and close."""
        self._stop.set()
        self._wakeup.set()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def notify(self, event: WatchEvent) -> None:
        self._inbox.put(event)
        self._wakeup.set()

    def wake(self) -> None:
        self._wakeup.set()

    def _run(self) -> None:
        interval = self.config.reader_interval / 1000.0
        while not self._stop.is_set():
            self._wakeup.wait(interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            try:
                self._step()
            except Exception:
                logger.exception("Unexpected failure while tailing %s, retrying", self.base_path)
        self.close()

    def _step(self) -> int:
        """One wake-up of the tailer thread.

        Events that only report modifications skip the path identity check,
        which still runs at least once per ``reader-interval``.
        """
        kinds = self._drain_inbox()
        overdue = time.monotonic() - self._verified_at >= self.config.reader_interval / 1000.0
        return self.poll(verify_identity=overdue or kinds != {EventKind.MODIFIED})

    def _drain_inbox(self) -> set[EventKind]:
        kinds: set[EventKind] = set()
        while True:
            try:
                event = self._inbox.get_nowait()
            except queue.Empty:
                return kinds
            kinds.add(event.kind)
            if event.kind is not EventKind.MODIFIED:
                logger.debug("%s event for %s", event.kind.value, event.path)

    # Read-and-split step ----------------------------------------------

    def poll(self, verify_identity: bool = True) -> int:
        """Read everything appended since the last step; returns the number of records emitted.

        With ``verify_identity`` unset only truncation is checked, not whether
        the path now names another file.
        """
        if self.state is TailerState.CLOSED:
            return 0
        emitted = 0
        try:
            if self.state is TailerState.ROTATING:
                emitted += self._rotate("retry")
            if self.state is TailerState.UNBOUND and not self._bind():
                return emitted
            if verify_identity:
                self._verified_at = time.monotonic()
                emitted += self._check_identity()
            else:
                emitted += self._check_truncation()
            if self.state is TailerState.BOUND:
                emitted += self._read_available()
        except OSError as exc:
            self.errors += 1
            READ_ERRORS.labels(input=self.input_id).inc()
            logger.warning(
                "I/O error on %s (%s), retrying in %sms",
                self.base_path,
                exc,
                self.config.reader_interval,
                extra={"ctx_input": self.input_id},
            )
        return emitted

    def _bind(self) -> bool:
        try:
            handle = self.base_path.open("rb")
        except FileNotFoundError:
            return False
        try:
            st = os.fstat(handle.fileno())
            offset = self._resume_offset(st.st_dev, st.st_ino, st.st_size)
            handle.seek(offset)
        except OSError:
            handle.close()
            raise
        self._handle = handle
        self.cursor = ReadCursor(self.id, self.base_path, offset, st.st_dev, st.st_ino)
        self.state = TailerState.BOUND
        logger.info("Bound %s to %s at offset %s", self.id, self.base_path, offset)
        return True

    def _resume_offset(self, device: int, inode: int, size: int) -> int:
        candidates = [self._resume]
        if self.cursor_store is not None:
            candidates.append(self.cursor_store.load(self.id))
        self._resume = None
        for cursor in candidates:
            if cursor is not None and cursor.same_file(device, inode) and cursor.offset <= size:
                return cursor.offset
        return 0

    def _check_identity(self) -> int:
        assert self._handle is not None
        try:
            st = os.stat(self.base_path)
        except FileNotFoundError:
            return self._rotate("deleted")
        if not self.cursor.same_file(st.st_dev, st.st_ino):
            return self._rotate("replaced")
        return self._check_truncation()

    def _check_truncation(self) -> int:
        assert self._handle is not None
        size = os.fstat(self._handle.fileno()).st_size
        if size < self.cursor.offset:
            return self._truncate(size)
        return 0

    def _read_available(self) -> int:
        assert self._handle is not None
        handle = self._handle
        buffer_size = self.config.reader_buffer_size
        emitted = 0
        handle.seek(self.cursor.offset)
        while True:
            chunk = handle.read(buffer_size)
            if not chunk:
                break
            BYTES_READ.labels(input=self.input_id).inc(len(chunk))
            end_offset = self.cursor.offset + len(chunk)
            previous = self.splitter.state
            try:
                for data in self.splitter.feed(chunk):
                    self._emit(data, end_offset)
                    emitted += 1
            except Exception:
                # The chunk is read again on the next step.
                self.splitter.state = previous
                raise
            self.cursor.offset = end_offset
            if len(chunk) < buffer_size:
                break
        if emitted:
            self._save_cursor()
        return emitted

    def _rotate(self, reason: str) -> int:
        """Drain the old file, release it and re-resolve the configured path."""
        if self.state is not TailerState.ROTATING:
            self.state = TailerState.ROTATING
            ROTATIONS.labels(input=self.input_id, kind="rotate").inc()
            logger.info("Rotation of %s detected (%s)", self.base_path, reason)
        emitted = 0
        if self._handle is not None:
            emitted += self._read_available()
            emitted += self._final_flush()
            self._release()
        self.cursor = ReadCursor(self.id, self.base_path)
        self.state = TailerState.UNBOUND
        self._bind()
        return emitted

    def _truncate(self, size: int) -> int:
        assert self._handle is not None
        ROTATIONS.labels(input=self.input_id, kind="truncate").inc()
        logger.info(
            "%s truncated to %s bytes below offset %s, reading from start",
            self.base_path,
            size,
            self.cursor.offset,
        )
        emitted = self._final_flush()
        self.splitter.reset()
        self._handle.seek(0)
        self.cursor.offset = 0
        self._save_cursor()
        return emitted

    def _final_flush(self) -> int:
        """Apply the final-flush policy to the retained partial record."""
        if not self.config.emit_partial_tail:
            tail = self.splitter.reset()
            if tail:
                logger.info("Discarding %s bytes of unterminated record from %s", len(tail), self.base_path)
            return 0
        previous = self.splitter.state
        emitted = 0
        try:
            for data in self.splitter.flush():
                self._emit(data, self.cursor.offset)
                emitted += 1
        except Exception:
            self.splitter.state = previous
            raise
        return emitted

    def _emit(self, data: bytes, offset: int) -> None:
        record = Record(
            input_id=self.input_id,
            path=self.base_path,
            data=data,
            text=data.decode(self.config.charset, errors="replace"),
            sequence=self.sequence + 1,
            offset=offset,
        )
        self.sink(record)
        self.sequence += 1
        self.records += 1
        RECORDS_EMITTED.labels(input=self.input_id).inc()

    # Cursor and handle bookkeeping -------------------------------------

    def committed_cursor(self) -> ReadCursor:
        """Cursor positioned before any byte not yet emitted as part of a record."""
        return ReadCursor(
            self.id,
            self.base_path,
            max(0, self.cursor.offset - self.splitter.pending),
            self.cursor.device,
            self.cursor.inode,
        )

    def bound_to(self, device: int, inode: int) -> bool:
        return self.state is TailerState.BOUND and self.cursor.same_file(device, inode)

    def _save_cursor(self) -> None:
        if self.cursor_store is not None and self.cursor.inode is not None:
            self.cursor_store.save(self.committed_cursor())

    def _release(self) -> None:
        self._save_cursor()
        released = self.committed_cursor()
        self._close_handle()
        if self.on_release is not None and released.inode is not None:
            self.on_release(released)

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.close()
            except OSError as exc:
                logger.warning("Failed to close %s: %s", self.base_path, exc)

    def close(self) -> int:
        """Finish the current step, apply the final-flush policy and release the file."""
        if self.state is TailerState.CLOSED:
            return 0
        emitted = 0
        try:
            emitted = self.poll()
            if self._handle is not None and self.config.emit_partial_tail:
                emitted += self._final_flush()
        except Exception:
            logger.exception("Failed to flush %s while closing", self.base_path)
        finally:
            if self._handle is not None:
                # A retained tail stays behind the saved cursor and is read again on resume.
                self._release()
            self.splitter.reset()
            self.state = TailerState.CLOSED
        logger.info("Closed %s after %s records", self.id, self.records)
        return emitted

    def force_close(self) -> None:
        """Release the handle without flushing; used when shutdown times out."""
        self._close_handle()
        self.state = TailerState.CLOSED

    def status(self) -> TailerStatus:
        return TailerStatus(
            id=self.id,
            input_id=self.input_id,
            path=self.base_path,
            state=self.state,
            offset=self.cursor.offset,
            records=self.records,
            errors=self.errors,
        )


__all__ = ["FileTailer", "ReleaseCallback"]
