"""JobLog model: append-only outcome record, one row per job attempt."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class JobLog(SQLModel, table=True):
    __tablename__ = "job_log"

    id: int | None = Field(default=None, primary_key=True)
    schedule_id: int = Field(foreign_key="automation_schedule.id", index=True)
    triggered_by: str = "tick"  # "tick", "manual"
    started_at: datetime
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    duration_ms: int = 0
    status: str  # success, suppressed, capture_failed, analysis_failed, dispatch_failed, incomplete
    decision_reason: str | None = None  # send, channel_disabled, hold_suppressed, ...
    error_kind: str | None = None  # configuration, capture, analysis, dispatch, cancelled
    message: str | None = None
    signal_id: int | None = Field(default=None, foreign_key="signal.id")
    action: str | None = None
    confidence: int | None = None
    previous_signal: str | None = None
    notification_sent: bool = False
