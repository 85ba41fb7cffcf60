"""FastAPI application exposing the collector status."""

from __future__ import annotations

from fastapi import FastAPI

from log_collector.api.dependencies import current_engine
from log_collector.api.routes_status import router as status_router
from log_collector.models.dto import HealthResponse

app = FastAPI(
    title="Log Collector",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(status_router, prefix="", tags=["status"])


@app.get("/health", response_model=HealthResponse, tags=["status"])
def health() -> HealthResponse:
    """Simple liveness check."""
    engine = current_engine()
    return HealthResponse(ok=True, running=engine is not None and engine.running)
