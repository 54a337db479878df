"""Pydantic schemas for job log queries and manual triggers."""

from datetime import datetime
from pydantic import BaseModel


class JobLogRead(BaseModel):
    id: int
    schedule_id: int
    triggered_by: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    status: str
    decision_reason: str | None
    error_kind: str | None
    message: str | None
    signal_id: int | None
    action: str | None
    confidence: int | None
    previous_signal: str | None
    notification_sent: bool

    model_config = {"from_attributes": True}


class TriggerResult(BaseModel):
    schedule_id: int
    status: str
    decision_reason: str | None = None
    signal_id: int | None = None
    message: str | None = None


class TickResult(BaseModel):
    processed: int
    results: list[TriggerResult]
