"""Application configuration handling."""

from __future__ import annotations

import codecs
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import regex
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from log_collector.core.errors import ConfigurationError
from log_collector.file.paths import GlobPathSpec, PathSpec, SinglePathSpec
from log_collector.file.splitters import ContentSplitter, NewlineSplitter, PatternSplitter

ENV_PREFIX = "LOGC_"
DEFAULT_CONFIG_PATH = Path("~/.config/log-collector/config.yaml")

CONTENT_SPLITTERS = ("NEWLINE", "PATTERN")
FINAL_FLUSH_POLICIES = ("EMIT", "DISCARD")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m)?\s*$")
_DURATION_FACTORS = {None: 1, "ms": 1, "s": 1000, "m": 60_000}


def parse_duration_ms(value: Any) -> Any:
    """Accept integers (milliseconds) or strings such as ``"250ms"`` / ``"2s"``."""
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        return int(match.group(1)) * _DURATION_FACTORS[match.group(2)]
    return value


class WatchServiceConfig(BaseModel):
    """Options of the ``file-watch-service`` section."""

    type: str = "native"
    interval: int = Field(default=2000, gt=0)
    event_queue_size: int = Field(default=4096, gt=0, alias="event-queue-size")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any) -> Any:
        return parse_duration_ms(value)


class FileInputConfig(BaseModel):
    """Configuration of a single file input."""

    id: str
    path: Path | None = None
    path_glob_root: Path | None = Field(default=None, alias="path-glob-root")
    path_glob_pattern: str | None = Field(default=None, alias="path-glob-pattern")
    content_splitter: str = Field(default="NEWLINE", alias="content-splitter")
    content_splitter_pattern: str = Field(default="", alias="content-splitter-pattern")
    charset: str = "UTF-8"
    reader_buffer_size: int = Field(default=102400, gt=0, alias="reader-buffer-size")
    reader_interval: int = Field(default=100, gt=0, alias="reader-interval")
    final_flush: str = Field(default="EMIT", alias="final-flush")

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    @field_validator("reader_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any) -> Any:
        return parse_duration_ms(value)

    @field_validator("path", "path_glob_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            return Path(value).expanduser()
        return value

    @field_validator("content_splitter")
    @classmethod
    def _check_splitter(cls, value: str) -> str:
        value = value.upper()
        if value not in CONTENT_SPLITTERS:
            raise ValueError(f"Unknown content splitter type: {value}")
        return value

    @field_validator("final_flush")
    @classmethod
    def _check_final_flush(cls, value: str) -> str:
        value = value.upper()
        if value not in FINAL_FLUSH_POLICIES:
            raise ValueError(f"Unknown final-flush policy: {value}")
        return value

    @field_validator("charset")
    @classmethod
    def _check_charset(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as exc:
            raise ValueError(f"Unknown charset: {value}") from exc
        return value

    @model_validator(mode="after")
    def _check_path_and_pattern(self) -> "FileInputConfig":
        has_glob = self.path_glob_root is not None and self.path_glob_pattern
        if not has_glob and self.path is None:
            raise ValueError(f"Input {self.id!r} needs either 'path' or 'path-glob-root' and 'path-glob-pattern'")
        if self.content_splitter == "PATTERN":
            if not self.content_splitter_pattern:
                raise ValueError(f"Input {self.id!r} uses the PATTERN splitter without 'content-splitter-pattern'")
            try:
                regex.compile(self.content_splitter_pattern.encode(self.charset))
            except regex.error as exc:
                raise ValueError(f"Invalid content-splitter-pattern for input {self.id!r}: {exc}") from exc
        return self

    @property
    def emit_partial_tail(self) -> bool:
        return self.final_flush == "EMIT"

    def path_spec(self) -> PathSpec:
        """Return the path spec; a glob spec wins when both kinds are configured."""
        if self.path_glob_root is not None and self.path_glob_pattern:
            return GlobPathSpec(self.path_glob_root, self.path_glob_pattern)
        assert self.path is not None
        return SinglePathSpec(self.path)

    def create_content_splitter(self) -> ContentSplitter:
        if self.content_splitter == "NEWLINE":
            return NewlineSplitter()
        if self.content_splitter == "PATTERN":
            return PatternSplitter(self.content_splitter_pattern.encode(self.charset))
        raise ConfigurationError(f"Unknown content splitter type: {self.content_splitter}")

    def to_string_values(self) -> dict[str, str]:
        values = {
            "id": self.id,
            "path-set": str(self.path_spec()),
            "charset": codecs.lookup(self.charset).name,
            "content-splitter": self.content_splitter,
            "reader-buffer-size": str(self.reader_buffer_size),
            "reader-interval": str(self.reader_interval),
            "final-flush": self.final_flush,
        }
        if self.content_splitter_pattern:
            values["content-splitter-pattern"] = self.content_splitter_pattern
        return values


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    inputs: dict[str, FileInputConfig] = Field(default_factory=dict)
    file_watch_service: WatchServiceConfig | None = Field(default=None, alias="file-watch-service")
    path_rescan_interval: int = Field(default=1000, gt=0, alias="path-rescan-interval")
    shutdown_timeout: int = Field(default=5000, gt=0, alias="shutdown-timeout")
    log_level: str = Field(default="INFO", alias="log-level")
    log_json: bool = Field(default=True, alias="log-json")
    api_host: str = Field(default="127.0.0.1", alias="api-host")
    api_port: int = Field(default=5180, alias="api-port")

    model_config = {
        "populate_by_name": True,
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("path_rescan_interval", "shutdown_timeout", mode="before")
    @classmethod
    def _parse_intervals(cls, value: Any) -> Any:
        return parse_duration_ms(value)

    @model_validator(mode="before")
    @classmethod
    def _inject_input_ids(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        inputs = data.get("inputs")
        if isinstance(inputs, Mapping):
            data = dict(data)
            data["inputs"] = {
                input_id: {**options, "id": input_id} if isinstance(options, Mapping) else options
                for input_id, options in inputs.items()
            }
        return data

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            if not isinstance(raw, Mapping):
                raise ConfigurationError(f"Configuration root in {config_path} must be a mapping")
            data.update(raw)
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with LOGC_ prefix onto top-level Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        field = Settings.model_fields.get(field_name)
        if field is None or field_name in ("inputs", "file_watch_service"):
            continue
        overrides[field.alias or field_name] = value
    return overrides


def load_settings(path: Path | None = None) -> Settings:
    """Load settings, turning validation failures into ``ConfigurationError``."""
    try:
        return Settings.from_yaml(path)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Unable to parse configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return load_settings()


__all__ = [
    "FileInputConfig",
    "Settings",
    "WatchServiceConfig",
    "get_settings",
    "load_settings",
    "parse_duration_ms",
]
