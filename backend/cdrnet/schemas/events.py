from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, constr
from pydantic.alias_generators import to_camel


class EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CallEvent(EventModel):
    record_id: Optional[str] = None
    event_type: Literal["call", "sms", "data", "unknown"] = "unknown"
    timestamp_utc: Optional[datetime] = Field(default=None, description="ISO formatted timestamp")
    caller_number: Optional[str] = None
    receiver_number: Optional[str] = None
    call_duration_seconds: float = Field(default=0.0, ge=0)


class EventBatch(EventModel):
    dataset_id: constr(strip_whitespace=True, min_length=1)
    events: List[CallEvent]


class EventBatchResponse(EventModel):
    success: bool
    dataset_id: str
    recorded: int
    skipped: int = 0


class DatasetSummary(EventModel):
    dataset_id: str
    event_count: int
    first_event: Optional[datetime] = None
    last_event: Optional[datetime] = None
