"""Schedule model: the durable automation configuration for one layout."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Schedule(SQLModel, table=True):
    __tablename__ = "automation_schedule"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    layout_id: int = Field(foreign_key="layout.id", unique=True)

    enabled: bool = Field(default=True, index=True)
    frequency: str = "1h"  # 15m, 1h, 4h, 1d, 1w

    # Notification filters
    send_to_telegram: bool = True
    only_on_signal_change: bool = False
    min_confidence: int = 50
    send_on_hold: bool = False

    # Runtime state, written by the scheduler loop only
    next_run_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    last_run_at: datetime | None = None
    last_signal: str | None = None  # BUY / SELL / HOLD of the latest evaluated signal

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
