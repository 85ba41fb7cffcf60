"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from log_collector.file.types import TailerStatus


class TailerStatusResponse(BaseModel):
    id: str
    input_id: str
    path: str
    state: Literal["UNBOUND", "BOUND", "ROTATING", "CLOSED"]
    offset: int = Field(ge=0)
    records: int = Field(ge=0)
    errors: int = Field(ge=0)

    @classmethod
    def from_status(cls, status: TailerStatus) -> "TailerStatusResponse":
        return cls(**status.to_dict())


class InputsResponse(BaseModel):
    running: bool
    watch_service: str
    watched_roots: list[str]
    dropped_events: int
    tailers: list[TailerStatusResponse]


class HealthResponse(BaseModel):
    ok: bool
    running: bool = False
