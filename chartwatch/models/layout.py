"""Layout model: one saved chart configuration a schedule is bound to."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Layout(SQLModel, table=True):
    __tablename__ = "layout"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    capture_layout_id: str | None = None  # TradingView layout id used for capture
    symbol: str | None = None  # e.g. "EURUSD", "FX:GBPJPY"
    interval: str | None = None  # e.g. "60", "4h"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def display_name(self) -> str:
        return f"{self.symbol or 'Chart'} {self.interval or ''}".strip()
