from __future__ import annotations

from fastapi import APIRouter

from ..schemas.events import EventBatch, EventBatchResponse
from ..services.events import record_events

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("", response_model=EventBatchResponse)
def ingest_events(batch: EventBatch) -> EventBatchResponse:
    recorded, skipped = record_events(batch.dataset_id, batch.events)
    return EventBatchResponse(success=True, dataset_id=batch.dataset_id, recorded=recorded, skipped=skipped)
