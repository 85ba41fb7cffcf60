"""CLI entrypoint for the log collector."""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import orjson
import requests
import typer
import uvicorn

from log_collector.core.config import Settings, get_settings, load_settings
from log_collector.core.errors import ConfigurationError, WatchInitError
from log_collector.core.logging import configure_logging, get_logger
from log_collector.file.types import MemoryCursorStore, Record

app = typer.Typer(name="logc", help="Log collector file input command-line interface")

DEFAULT_HOST = "http://127.0.0.1:5180"

logger = get_logger(__name__)


def _load(config: Optional[Path]) -> Settings:
    try:
        return load_settings(config) if config is not None else get_settings()
    except ConfigurationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2)


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("LOGC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


class JsonLinesSink:
    """Writes records as JSON lines; safe to call from several tailer threads."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout.buffer
        self._lock = threading.Lock()

    def __call__(self, record: Record) -> None:
        line = orjson.dumps(record.to_dict()) + b"\n"
        with self._lock:
            self.stream.write(line)
            self.stream.flush()


def _serve_api(settings: Settings) -> uvicorn.Server:
    from log_collector.app import app as api_app

    config = uvicorn.Config(
        api_app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="status-api", daemon=True)
    thread.start()
    return server


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to the YAML configuration"),
    api: bool = typer.Option(True, "--api/--no-api", help="Serve the status API"),
) -> None:
    """Tail the configured inputs and write records to stdout as JSON lines."""
    from log_collector.api.dependencies import set_engine
    from log_collector.file.engine import FileInputEngine

    settings = _load(config)
    configure_logging(settings.log_level, use_json=settings.log_json)
    if not settings.inputs:
        typer.echo("No inputs configured", err=True)
        raise typer.Exit(code=2)

    engine = FileInputEngine.from_settings(settings, JsonLinesSink(), cursor_store=MemoryCursorStore())
    try:
        engine.start()
    except WatchInitError as exc:
        logger.error("File input subsystem failed to start: %s", exc)
        typer.echo(f"Unable to start file watching: {exc}", err=True)
        raise typer.Exit(code=1)

    set_engine(engine)
    server = _serve_api(settings) if api else None

    stopped = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        stopped.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)
    try:
        while not stopped.wait(1.0):
            pass
    finally:
        engine.stop()
        set_engine(None)
        if server is not None:
            server.should_exit = True


@app.command()
def resolve(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to the YAML configuration"),
) -> None:
    """Print the files currently matching each configured input."""
    settings = _load(config)
    result = {
        input_id: sorted(str(path) for path in input_config.path_spec().resolve())
        for input_id, input_config in settings.inputs.items()
    }
    typer.echo(json.dumps(result, indent=2))


@app.command()
def status(
    input_id: Optional[str] = typer.Argument(None, help="Only show this input"),
    host: Optional[str] = typer.Option(None, "--host", help="Override agent host"),
) -> None:
    """Show the tailers of a running agent."""
    base = _resolve_host(host)
    path = f"/inputs/{input_id}" if input_id else "/inputs"
    try:
        resp = requests.get(f"{base}{path}", timeout=10)
    except requests.RequestException as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
