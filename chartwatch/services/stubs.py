"""Deterministic in-process adapters for tests and offline runs (CW_*_BACKEND=stub)."""

import asyncio
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from chartwatch.engine.errors import DispatchError
from chartwatch.engine.job import ImageRef, JobContext
from chartwatch.schemas.analysis import EconomicEvent, ImpactSummary, SignalResult
from chartwatch.services.economic_calendar import calculate_immediate_risk
from chartwatch.utils.constants import TRADINGVIEW_CHART_URL

logger = logging.getLogger(__name__)

# 1x1 transparent PNG
PLACEHOLDER_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c63000100000500010d0a2db40000000049454e44ae426082"
)


class StubChartCapture:
    """Returns a placeholder PNG. ``delay`` and ``error`` simulate slow or failing captures."""

    def __init__(self, delay: float = 0.0, error: Exception | None = None):
        self.delay = delay
        self.error = error
        self.calls: list[int] = []
        self.active = 0
        self.peak_active = 0

    async def capture(self, job: JobContext) -> ImageRef:
        self.calls.append(job.schedule_id)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return ImageRef(
                data=PLACEHOLDER_PNG,
                source_url=TRADINGVIEW_CHART_URL.format(layout_id=job.capture_layout_id),
            )
        finally:
            self.active -= 1


class StubChartAnalyzer:
    """Answers with queued signals, falling back to a digest-derived one."""

    def __init__(self, signals: list[SignalResult] | None = None, error: Exception | None = None,
                 delay: float = 0.0):
        self.queue: deque[SignalResult] = deque(signals or [])
        self.error = error
        self.delay = delay
        self.calls = 0

    def push(self, action: str, confidence: int, **kwargs) -> None:
        self.queue.append(SignalResult(action=action, confidence=confidence, **kwargs))

    async def analyze(self, image: ImageRef, model: str) -> SignalResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.queue:
            return self.queue.popleft()
        digest = hashlib.sha256(image.data).digest()
        return SignalResult(
            action=("BUY", "SELL", "HOLD")[digest[0] % 3],
            confidence=50 + digest[1] % 50,
            reasons=[f"Stub analysis by {model}"],
        )


@dataclass
class StubEconomicFeed:
    events: list[EconomicEvent] = field(default_factory=list)
    error: Exception | None = None
    calls: int = 0

    async def fetch_events(self, start: datetime, end: datetime, countries=None, currencies=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [
            e for e in self.events
            if start <= e.date <= end and (not countries or e.country in countries)
        ]


class StubImpactSummarizer:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def summarize(self, symbol, signal, upcoming, weekly) -> ImpactSummary:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ImpactSummary(
            impact_summary=f"{len(weekly)} scheduled events this week for {symbol}.",
            immediate_risk=calculate_immediate_risk(upcoming),
            weekly_outlook="VOLATILE" if any(e.impact == "HIGH" for e in weekly) else "NEUTRAL",
        )


@dataclass
class SentAlert:
    chat_id: str
    text: str
    has_image: bool
    is_error: bool = False


class StubNotifier:
    """Records alerts instead of sending them. ``fail`` makes every send raise DispatchError."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[SentAlert] = []

    @property
    def alerts(self) -> list[SentAlert]:
        return [a for a in self.sent if not a.is_error]

    @property
    def error_alerts(self) -> list[SentAlert]:
        return [a for a in self.sent if a.is_error]

    async def send_alert(self, chat_id: str, text: str, image: ImageRef | None = None) -> None:
        if self.fail:
            raise DispatchError(f"Stub delivery to {chat_id} failed")
        self.sent.append(SentAlert(chat_id, text, image is not None))
        logger.debug(f"Stub alert to {chat_id}")

    async def send_error_alert(self, chat_id: str, text: str) -> None:
        if self.fail:
            raise DispatchError(f"Stub delivery to {chat_id} failed")
        self.sent.append(SentAlert(chat_id, text, False, is_error=True))
