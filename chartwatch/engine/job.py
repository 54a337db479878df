"""Shared job types: the immutable job context, captured images and job outcomes."""

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    SUCCESS = "success"
    SUPPRESSED = "suppressed"
    CAPTURE_FAILED = "capture_failed"
    ANALYSIS_FAILED = "analysis_failed"
    DISPATCH_FAILED = "dispatch_failed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class SessionCredentials:
    session_id: str = field(repr=False)
    session_sign: str = field(repr=False)


@dataclass(frozen=True)
class NotificationTarget:
    chat_id: str | None
    include_chart: bool = True
    include_economic: bool = True


@dataclass(frozen=True)
class FilterSettings:
    """Notification filters copied from the schedule when the job is built."""

    send_to_telegram: bool
    only_on_signal_change: bool
    min_confidence: int
    send_on_hold: bool
    last_signal: str | None = None


@dataclass(frozen=True)
class JobContext:
    schedule_id: int
    user_id: int
    layout_id: int
    capture_layout_id: str
    symbol: str | None
    interval: str | None
    frequency: str
    model: str
    credentials: SessionCredentials
    target: NotificationTarget
    filters: FilterSettings
    triggered_by: str = "tick"
    log: logging.LoggerAdapter | None = field(default=None, compare=False, repr=False)

    @property
    def display_name(self) -> str:
        return f"{self.symbol or 'Chart'} {self.interval or ''}".strip()


@dataclass(frozen=True)
class ImageRef:
    data: bytes = field(repr=False)
    content_type: str = "image/png"
    source_url: str | None = None

    @property
    def data_url(self) -> str:
        return f"data:{self.content_type};base64,{base64.b64encode(self.data).decode()}"


@dataclass
class JobOutcome:
    schedule_id: int
    started_at: datetime
    triggered_by: str = "tick"
    status: JobStatus | None = None
    decision_reason: str | None = None
    error_kind: str | None = None
    message: str | None = None
    signal_id: int | None = None
    action: str | None = None
    confidence: int | None = None
    previous_signal: str | None = None
    notification_sent: bool = False
    finished_at: datetime | None = None

    def fail(self, status: JobStatus, error) -> None:
        self.status = status
        self.error_kind = getattr(error, "kind", "internal")
        self.message = getattr(error, "message", None) or str(error)

    @property
    def evaluated_action(self) -> str | None:
        """The action to store as the schedule's dedupe key, if one was evaluated."""
        if self.status in (JobStatus.SUCCESS, JobStatus.SUPPRESSED, JobStatus.DISPATCH_FAILED):
            return self.action
        return None
