"""EconomicContext model: macro-event enrichment attached to a signal."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class EconomicContext(SQLModel, table=True):
    __tablename__ = "economic_context"

    id: int | None = Field(default=None, primary_key=True)
    signal_id: int = Field(foreign_key="signal.id", unique=True)
    symbol: str
    immediate_risk: str  # NONE, LOW, MEDIUM, HIGH, EXTREME
    weekly_outlook: str  # BULLISH, BEARISH, NEUTRAL, VOLATILE
    impact_summary: str = ""
    warnings: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    opportunities: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    recommendation: str | None = None
    upcoming_events: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    weekly_events: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
