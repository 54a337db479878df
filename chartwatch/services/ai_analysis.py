"""Vision analysis and economic-impact summarization via the OpenAI API."""

import json
import logging
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from chartwatch.engine.errors import AnalysisProviderError, EnrichmentError
from chartwatch.engine.job import ImageRef
from chartwatch.schemas.analysis import EconomicEvent, ImpactSummary, SignalResult
from chartwatch.services.economic_calendar import calculate_immediate_risk

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are an expert technical analyst. Analyze the TradingView chart image and return ONLY valid JSON:
{
  "action": "BUY" | "SELL" | "HOLD",
  "confidence": <0-100>,
  "timeframe": "intraday" | "swing" | "long",
  "reasons": ["5-7 specific reasons citing visible price levels and indicators"],
  "tradeSetup": {
    "quality": "A" | "B" | "C",
    "entryPrice": <number or null>,
    "stopLoss": <number or null>,
    "targetPrice": <number or null>,
    "riskRewardRatio": <number or null>,
    "setupDescription": "entry, stop and target reasoning"
  }
}
Read prices from the right-hand price scale. If the chart is unreadable, set tradeSetup values to null."""

IMPACT_PROMPT = """You are a macro analyst. Given a technical signal for {symbol} ({action}, {confidence}% confidence)
and the economic events below, assess how the events affect the trade. A count-based risk estimate is {risk_hint}.

Events within the next hour:
{upcoming}

Events this week:
{weekly}

Return ONLY valid JSON:
{{
  "impactSummary": "2-3 sentences",
  "immediateRisk": "NONE" | "LOW" | "MEDIUM" | "HIGH" | "EXTREME",
  "weeklyOutlook": "BULLISH" | "BEARISH" | "NEUTRAL" | "VOLATILE",
  "warnings": ["..."],
  "opportunities": ["..."],
  "recommendation": "one sentence"
}}"""


class ChartAnalyzer(Protocol):
    async def analyze(self, image: ImageRef, model: str) -> SignalResult: ...


class ImpactSummarizer(Protocol):
    async def summarize(
        self,
        symbol: str,
        signal: SignalResult,
        upcoming: list[EconomicEvent],
        weekly: list[EconomicEvent],
    ) -> ImpactSummary: ...


def _format_events(events: list[EconomicEvent]) -> str:
    if not events:
        return "- none"
    return "\n".join(
        f"- {e.date:%Y-%m-%d %H:%M} UTC {e.country} [{e.impact}] {e.event}"
        f" (forecast {e.forecast or 'n/a'}, previous {e.previous or 'n/a'})"
        for e in events[:25]
    )


class OpenAIChartAnalyzer:
    """Chart analyzer backed by an OpenAI vision model."""

    def __init__(self, api_key: str, timeout: float = 60.0, client: AsyncOpenAI | None = None):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise AnalysisProviderError("CW_OPENAI_API_KEY is not set")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def analyze(self, image: ImageRef, model: str) -> SignalResult:
        try:
            response = await self._get_client().chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": ANALYSIS_PROMPT},
                            {"type": "image_url", "image_url": {"url": image.data_url}},
                        ],
                    }
                ],
                response_format={"type": "json_object"},
                max_tokens=1000,
            )
        except OpenAIError as e:
            raise AnalysisProviderError(f"{model} analysis failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AnalysisProviderError(f"{model} returned an empty analysis")
        try:
            result = SignalResult.model_validate(json.loads(content))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unparseable analysis from {model}: {content[:300]}")
            raise AnalysisProviderError(f"{model} returned an invalid analysis") from e

        setup = result.trade_setup
        if setup and setup.entry_price is not None and setup.entry_price == setup.stop_loss:
            logger.warning(f"{model} returned identical entry and stop loss ({setup.entry_price})")
        return result


class OpenAIImpactSummarizer:
    """Economic impact summarizer backed by an OpenAI text model."""

    def __init__(self, api_key: str, model: str, timeout: float = 60.0, client: AsyncOpenAI | None = None):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise EnrichmentError("CW_OPENAI_API_KEY is not set")
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def summarize(self, symbol, signal, upcoming, weekly) -> ImpactSummary:
        prompt = IMPACT_PROMPT.format(
            symbol=symbol,
            action=signal.action,
            confidence=signal.confidence,
            risk_hint=calculate_immediate_risk(upcoming),
            upcoming=_format_events(upcoming),
            weekly=_format_events(weekly),
        )
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                max_tokens=800,
            )
            content = response.choices[0].message.content or ""
            return ImpactSummary.model_validate(json.loads(content))
        except OpenAIError as e:
            raise EnrichmentError(f"Impact summary failed: {e}") from e
        except (ValueError, ValidationError, IndexError) as e:
            raise EnrichmentError("Impact summary was not valid JSON") from e
