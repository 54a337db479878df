"""Pydantic schemas for the automation schedule API."""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from chartwatch.utils.constants import VALID_FREQUENCIES


def _check_frequency(value: str) -> str:
    if value not in VALID_FREQUENCIES:
        allowed = ", ".join(VALID_FREQUENCIES)
        raise ValueError(f"must be one of: {allowed}")
    return value


class ScheduleUpsert(BaseModel):
    """Create-or-update payload, keyed by layout. Omitted fields keep their value."""

    layout_id: int = Field(ge=1)
    enabled: bool | None = None
    frequency: str | None = None
    send_to_telegram: bool | None = None
    only_on_signal_change: bool | None = None
    min_confidence: int | None = Field(default=None, ge=0, le=100)
    send_on_hold: bool | None = None

    @field_validator("frequency")
    @classmethod
    def _validate_optional_frequency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _check_frequency(value)


# Defaults applied when a schedule is first created
SCHEDULE_DEFAULTS = {
    "enabled": True,
    "frequency": "1h",
    "send_to_telegram": True,
    "only_on_signal_change": False,
    "min_confidence": 50,
    "send_on_hold": False,
}


class LayoutBrief(BaseModel):
    id: int
    capture_layout_id: str | None
    symbol: str | None
    interval: str | None

    model_config = {"from_attributes": True}


class ScheduleRead(BaseModel):
    id: int
    user_id: int
    layout_id: int
    enabled: bool
    frequency: str
    send_to_telegram: bool
    only_on_signal_change: bool
    min_confidence: int
    send_on_hold: bool
    next_run_at: datetime
    last_run_at: datetime | None
    last_signal: str | None
    created_at: datetime
    updated_at: datetime
    layout: LayoutBrief | None = None

    model_config = {"from_attributes": True}
