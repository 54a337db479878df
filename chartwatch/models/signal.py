"""Signal model: the persisted result of one chart analysis."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class Signal(SQLModel, table=True):
    __tablename__ = "signal"

    id: int | None = Field(default=None, primary_key=True)
    snapshot_id: int = Field(foreign_key="snapshot.id", unique=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    layout_id: int = Field(foreign_key="layout.id", index=True)
    action: str  # BUY, SELL, HOLD
    confidence: int
    timeframe: str  # intraday, swing, long
    reasons: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    trade_setup: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    model: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
