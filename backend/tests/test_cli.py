"""Tests for the command-line interface."""

from __future__ import annotations

import io
import json
from pathlib import Path

import orjson
from typer.testing import CliRunner

from log_collector.cli.main import JsonLinesSink, app
from log_collector.file.types import Record

runner = CliRunner()


def test_resolve_lists_matching_files(tmp_path: Path) -> None:
    (tmp_path / "a.log").write_text("")
    (tmp_path / "b.txt").write_text("")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "inputs:\n"
        f"  single:\n    path: {tmp_path}/a.log\n"
        f"  missing:\n    path: {tmp_path}/absent.log\n"
        f"  logs:\n    path-glob-root: {tmp_path}\n    path-glob-pattern: '*.log'\n"
    )

    result = runner.invoke(app, ["resolve", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {
        "single": [str(tmp_path / "a.log")],
        "missing": [],
        "logs": [str(tmp_path / "a.log")],
    }


def test_invalid_configuration_exits_with_usage_error(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text("inputs:\n  app:\n    path: /tmp/a.log\n    content-splitter: XML\n")

    result = runner.invoke(app, ["resolve", "--config", str(config_file)])

    assert result.exit_code == 2


def test_run_requires_inputs(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text("inputs: {}\n")

    result = runner.invoke(app, ["run", "--config", str(config_file), "--no-api"])

    assert result.exit_code == 2


def test_json_lines_sink() -> None:
    stream = io.BytesIO()
    sink = JsonLinesSink(stream)
    sink(Record(input_id="app", path=Path("/var/log/app.log"), data=b"hi", text="hi", sequence=1, offset=3))

    (line,) = stream.getvalue().splitlines()
    assert orjson.loads(line) == {
        "input_id": "app",
        "path": "/var/log/app.log",
        "message": "hi",
        "sequence": 1,
        "offset": 3,
    }
