"""Read-only status routes of the collector."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from log_collector.api.dependencies import get_engine
from log_collector.core.metrics import metrics_payload
from log_collector.file.engine import FileInputEngine
from log_collector.models.dto import InputsResponse, TailerStatusResponse

router = APIRouter()


@router.get("/inputs", response_model=InputsResponse, summary="List tailers and their read cursors")
async def list_inputs(engine: FileInputEngine = Depends(get_engine)) -> InputsResponse:
    watch_service = engine.watch_service
    return InputsResponse(
        running=engine.running,
        watch_service=watch_service.kind,
        watched_roots=[str(root) for root in watch_service.watched_roots],
        dropped_events=watch_service.events.dropped,
        tailers=[TailerStatusResponse.from_status(status) for status in engine.snapshot()],
    )


@router.get("/inputs/{input_id}", response_model=list[TailerStatusResponse], summary="Tailers of one input")
async def get_input(input_id: str, engine: FileInputEngine = Depends(get_engine)) -> list[TailerStatusResponse]:
    if input_id not in engine.input_ids():
        raise HTTPException(status_code=404, detail=f"Unknown input {input_id}")
    return [
        TailerStatusResponse.from_status(status) for status in engine.snapshot() if status.input_id == input_id
    ]


@router.get("/metrics", summary="Prometheus metrics")
def metrics() -> Response:
    payload, content_type = metrics_payload()
    return Response(content=payload, media_type=content_type)
