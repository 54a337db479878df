"""Snapshot model: one captured chart image. Its id is the capture identity."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Snapshot(SQLModel, table=True):
    __tablename__ = "snapshot"

    id: int | None = Field(default=None, primary_key=True)
    layout_id: int = Field(foreign_key="layout.id", index=True)
    schedule_id: int | None = Field(default=None, foreign_key="automation_schedule.id", index=True)
    url: str  # TradingView chart url
    image_data: str  # data:image/png;base64,...
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
