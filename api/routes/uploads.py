from __future__ import annotations

import json
from typing import Iterator

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from recipe_importer.importing import ImporterConfig, JobEvent, JobEventBus, JobOrchestrator, Subscription

from api.dependencies import get_config, get_event_bus, get_orchestrator

router = APIRouter(prefix="/upload", tags=["upload"])


async def _read_pdf(file: UploadFile) -> bytes:
    if not file.filename or not file.filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF files are allowed!")
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="No PDF file provided!")
    return payload


@router.post("/pdf")
async def upload_pdf(
    file: UploadFile = File(...),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    payload = await _read_pdf(file)
    job_id = orchestrator.submit(payload, file.filename)
    return {
        "jobId": job_id,
        "recipeId": job_id,
        "message": "PDF processing started. Connect to the status stream to track progress.",
    }


@router.post("/pdf/batch")
async def upload_pdf_batch(
    file: UploadFile = File(...),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    payload = await _read_pdf(file)
    job_id = orchestrator.submit_batch(payload, file.filename)
    return {
        "jobId": job_id,
        "message": "PDF processing started. Connect to the status stream to track progress and get recipe IDs.",
    }


def format_sse(event: JobEvent) -> str:
    data = json.dumps(event.to_dict(), default=str)
    return f"event: {event.type.value}\ndata: {data}\n\n"


def _event_stream(subscription: Subscription, heartbeat: float) -> Iterator[str]:
    try:
        while True:
            event = subscription.next_event(timeout=heartbeat)
            if event is not None:
                yield format_sse(event)
            elif subscription.finished:
                break
            else:
                yield ": keep-alive\n\n"
    finally:
        subscription.close()


@router.get("/status/{job_id}")
def stream_status(
    job_id: str,
    bus: JobEventBus = Depends(get_event_bus),
    config: ImporterConfig = Depends(get_config),
):
    subscription = bus.subscribe(job_id)
    return StreamingResponse(
        _event_stream(subscription, config.sse_heartbeat_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
