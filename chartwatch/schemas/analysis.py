"""Pydantic schemas for adapter results: signals, economic events, impact summaries."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Action = Literal["BUY", "SELL", "HOLD"]
Impact = Literal["LOW", "MEDIUM", "HIGH"]
RiskLevel = Literal["NONE", "LOW", "MEDIUM", "HIGH", "EXTREME"]
Outlook = Literal["BULLISH", "BEARISH", "NEUTRAL", "VOLATILE"]


class TradeSetup(BaseModel):
    quality: Literal["A", "B", "C"] = "C"
    entry_price: float | None = Field(default=None, alias="entryPrice")
    stop_loss: float | None = Field(default=None, alias="stopLoss")
    target_price: float | None = Field(default=None, alias="targetPrice")
    risk_reward_ratio: float | None = Field(default=None, alias="riskRewardRatio")
    setup_description: str = Field(default="", alias="setupDescription")

    model_config = {"populate_by_name": True}


class SignalResult(BaseModel):
    """What the vision model returns for one chart."""

    action: Action
    confidence: int = Field(ge=0, le=100)
    timeframe: Literal["intraday", "swing", "long"] = "swing"
    reasons: list[str] = []
    trade_setup: TradeSetup | None = Field(default=None, alias="tradeSetup")

    model_config = {"populate_by_name": True}

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _round_confidence(cls, value):
        if isinstance(value, float):
            return round(value)
        return value


class EconomicEvent(BaseModel):
    event_id: str
    date: datetime
    time: str
    country: str
    currency: str | None = None
    event: str
    impact: Impact
    category: str = "Other"
    actual: str | None = None
    forecast: str | None = None
    previous: str | None = None
    source: str = "FMP"


class ImpactSummary(BaseModel):
    """Economic impact assessment for one signal."""

    impact_summary: str = Field(default="", alias="impactSummary")
    immediate_risk: RiskLevel = Field(default="NONE", alias="immediateRisk")
    weekly_outlook: Outlook = Field(default="NEUTRAL", alias="weeklyOutlook")
    warnings: list[str] = []
    opportunities: list[str] = []
    recommendation: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("immediate_risk", "weekly_outlook", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.strip().upper() if isinstance(value, str) else value
