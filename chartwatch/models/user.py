"""User model: notification target and chart-session credentials."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    is_active: bool = Field(default=True)

    # Telegram delivery preferences
    telegram_chat_id: str | None = None
    include_chart: bool = True
    include_economic: bool = True

    preferred_model: str | None = None  # vision model override, e.g. "gpt-4o-mini"

    # TradingView session cookies, stored as credential envelopes
    tv_session_id: str | None = None
    tv_session_sign: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
