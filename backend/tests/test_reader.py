"""Tests for the single-input tailer."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from log_collector.file.reader import FileTailer
from log_collector.file.types import EventKind, MemoryCursorStore, ReadCursor, TailerState, WatchEvent


def _tailer(config, sink, **kwargs) -> FileTailer:
    return FileTailer(config.id, config, config.path, sink, **kwargs)


def _append(path: Path, data: bytes) -> None:
    with path.open("ab") as fh:
        fh.write(data)


def test_reads_appended_lines_incrementally(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\nb\n")
    tailer = _tailer(make_input(), sink)

    assert tailer.poll() == 2
    assert tailer.state is TailerState.BOUND
    assert tailer.cursor.offset == 4
    assert tailer.poll() == 0

    _append(log, b"c\n")
    assert tailer.poll() == 1
    assert sink.texts == ["a", "b", "c"]
    assert [record.sequence for record in sink.records] == [1, 2, 3]
    assert sink.records[-1].offset == 6
    assert sink.records[-1].input_id == "app"
    assert sink.records[-1].path == log


def test_partial_line_waits_for_terminator(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\nb")
    tailer = _tailer(make_input(), sink)

    tailer.poll()
    assert sink.texts == ["a"]
    assert tailer.committed_cursor().offset == 2

    _append(log, b"c\r\n")
    tailer.poll()
    assert sink.texts == ["a", "bc"]


def test_small_reader_buffer(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    lines = [f"line-{index}" for index in range(20)]
    log.write_text("".join(line + "\n" for line in lines))
    tailer = _tailer(make_input(**{"reader-buffer-size": 3}), sink)

    tailer.poll()
    assert sink.texts == lines
    assert tailer.cursor.offset == log.stat().st_size


def test_unbound_until_file_appears(tmp_path: Path, make_input, sink) -> None:
    tailer = _tailer(make_input(), sink)
    assert tailer.poll() == 0
    assert tailer.state is TailerState.UNBOUND

    (tmp_path / "app.log").write_bytes(b"hello\n")
    assert tailer.poll() == 1
    assert tailer.state is TailerState.BOUND


def test_rotation_drains_old_file_before_rebinding(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    old_lines = [f"old-{index:05d}" for index in range(50)]
    log.write_text("".join(line + "\n" for line in old_lines))
    assert log.stat().st_size == 500
    tailer = _tailer(make_input(), sink)
    tailer.poll()
    assert tailer.cursor.offset == 500
    old_inode = tailer.cursor.inode

    _append(log, b"unread-tail\n")
    log.rename(tmp_path / "app.log.1")
    log.write_bytes(b"new-1\n")

    tailer.poll()

    assert sink.texts == old_lines + ["unread-tail", "new-1"]
    assert tailer.state is TailerState.BOUND
    assert tailer.cursor.inode != old_inode
    assert tailer.cursor.offset == 6

    _append(log, b"new-2\n")
    tailer.poll()
    assert sink.texts[-2:] == ["new-1", "new-2"]
    assert len(sink.texts) == len(set(sink.texts))


def test_rotation_emits_partial_tail_with_emit_policy(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"one\npartial")
    tailer = _tailer(make_input(), sink)
    tailer.poll()

    log.rename(tmp_path / "app.log.1")
    log.write_bytes(b"two\n")
    tailer.poll()

    assert sink.texts == ["one", "partial", "two"]


def test_rotation_discards_partial_tail_with_discard_policy(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"one\npartial")
    tailer = _tailer(make_input(**{"final-flush": "DISCARD"}), sink)
    tailer.poll()

    log.rename(tmp_path / "app.log.1")
    log.write_bytes(b"two\n")
    tailer.poll()

    assert sink.texts == ["one", "two"]


def test_truncation_resets_offset(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_text("".join(f"before-{index:03d}\n" for index in range(90)) + "x" * 10)
    assert log.stat().st_size == 1000
    tailer = _tailer(make_input(**{"final-flush": "DISCARD"}), sink)
    tailer.poll()
    assert tailer.cursor.offset == 1000
    inode = tailer.cursor.inode

    after = "".join(f"after-{index:03d}\n" for index in range(20))
    with log.open("w") as fh:
        fh.write(after)
    assert log.stat().st_size == 200

    tailer.poll()

    assert tailer.state is TailerState.BOUND
    assert tailer.cursor.inode == inode
    assert tailer.cursor.offset == 200
    assert sink.texts[90:] == [f"after-{index:03d}" for index in range(20)]


def test_deleted_file_goes_unbound_and_rebinds(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"first\n")
    tailer = _tailer(make_input(), sink)
    tailer.poll()

    log.unlink()
    assert tailer.poll() == 0
    assert tailer.state is TailerState.UNBOUND
    assert tailer.cursor.offset == 0
    assert tailer.poll() == 0

    log.write_bytes(b"second\n")
    tailer.poll()
    assert tailer.state is TailerState.BOUND
    assert sink.texts == ["first", "second"]


@pytest.mark.parametrize("policy, expected", [("EMIT", ["a", "b"]), ("DISCARD", ["a"])])
def test_close_applies_final_flush_policy(tmp_path: Path, make_input, sink, policy, expected) -> None:
    (tmp_path / "app.log").write_bytes(b"a\nb")
    tailer = _tailer(make_input(**{"final-flush": policy}), sink)
    tailer.poll()

    tailer.close()

    assert sink.texts == expected
    assert tailer.state is TailerState.CLOSED
    assert tailer.poll() == 0
    assert tailer.close() == 0


def test_io_error_is_counted_and_retried(tmp_path: Path, make_input, sink, monkeypatch: pytest.MonkeyPatch) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\n")
    tailer = _tailer(make_input(), sink)
    tailer.poll()
    _append(log, b"b\n")

    def broken() -> int:
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(tailer, "_read_available", broken)
    assert tailer.poll() == 0
    assert tailer.errors == 1
    assert tailer.state is TailerState.BOUND

    monkeypatch.undo()
    assert tailer.poll() == 1
    assert sink.texts == ["a", "b"]


def test_sink_failure_redelivers_on_next_step(tmp_path: Path, make_input) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\nb\nc\n")
    delivered: list[str] = []
    failures = {"left": 1}

    def flaky_sink(record) -> None:
        if record.text == "b" and failures["left"]:
            failures["left"] -= 1
            raise RuntimeError("downstream unavailable")
        delivered.append(record.text)

    tailer = FileTailer("app", make_input(), log, flaky_sink)
    with pytest.raises(RuntimeError):
        tailer.poll()
    assert tailer.cursor.offset == 0

    tailer.poll()
    assert delivered == ["a", "a", "b", "c"]
    assert tailer.cursor.offset == 6


def test_resumes_from_cursor_store(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\nb\npart")
    store = MemoryCursorStore()
    config = make_input(**{"final-flush": "DISCARD"})

    first = _tailer(config, sink, cursor_store=store)
    first.poll()
    first.close()
    saved = store.load("app")
    assert saved is not None
    assert saved.offset == 4

    _append(log, b"ial\nc\n")
    second = _tailer(config, sink, cursor_store=store)
    second.poll()
    assert sink.texts == ["a", "b", "partial", "c"]


def test_ignores_stored_cursor_for_other_file(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\nb\n")
    st = os.stat(log)
    stale = ReadCursor("app", log, offset=2, device=st.st_dev, inode=st.st_ino + 1)

    tailer = _tailer(make_input(), sink, resume=stale)
    tailer.poll()
    assert sink.texts == ["a", "b"]


def test_decodes_with_configured_charset(tmp_path: Path, make_input, sink) -> None:
    (tmp_path / "app.log").write_bytes(b"caf\xe9\n")
    tailer = _tailer(make_input(charset="latin-1"), sink)
    tailer.poll()
    assert sink.texts == ["café"]
    assert sink.records[0].data == b"caf\xe9"


def test_invalid_bytes_are_replaced(tmp_path: Path, make_input, sink) -> None:
    (tmp_path / "app.log").write_bytes(b"ok \xff\n")
    tailer = _tailer(make_input(), sink)
    tailer.poll()
    assert sink.texts == ["ok \ufffd"]


def test_status_snapshot(tmp_path: Path, make_input, sink) -> None:
    (tmp_path / "app.log").write_bytes(b"a\n")
    tailer = _tailer(make_input(), sink)
    tailer.poll()
    status = tailer.status().to_dict()
    assert status == {
        "id": "app",
        "input_id": "app",
        "path": str(tmp_path / "app.log"),
        "state": "BOUND",
        "offset": 2,
        "records": 1,
        "errors": 0,
    }


def test_watch_events_decide_whether_identity_is_checked(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\n")
    tailer = _tailer(make_input(**{"reader-interval": "1m"}), sink)
    tailer.poll()
    old_inode = tailer.cursor.inode

    _append(log, b"b\n")
    log.rename(tmp_path / "app.log.1")
    log.write_bytes(b"c\n")

    tailer.notify(WatchEvent(path=log, kind=EventKind.MODIFIED))
    assert tailer._step() == 1
    assert tailer.cursor.inode == old_inode
    assert sink.texts == ["a", "b"]

    tailer.notify(WatchEvent(path=log, kind=EventKind.DELETED))
    tailer.notify(WatchEvent(path=log, kind=EventKind.CREATED))
    assert tailer._step() == 1
    assert tailer.cursor.inode != old_inode
    assert sink.texts == ["a", "b", "c"]


def test_wake_without_events_checks_identity(tmp_path: Path, make_input, sink) -> None:
    log = tmp_path / "app.log"
    log.write_bytes(b"a\n")
    tailer = _tailer(make_input(**{"reader-interval": "1m"}), sink)
    tailer.poll()

    log.unlink()
    tailer.wake()
    tailer._step()

    assert tailer.state is TailerState.UNBOUND
