"""Adapter wiring: picks live or stub implementations from settings."""

from dataclasses import dataclass

from chartwatch.config import Settings
from chartwatch.services.ai_analysis import (
    ChartAnalyzer,
    ImpactSummarizer,
    OpenAIChartAnalyzer,
    OpenAIImpactSummarizer,
)
from chartwatch.services.chart_capture import ChartCapture, ChartImgCapture
from chartwatch.services.economic_calendar import EconomicFeed, FMPEconomicCalendar
from chartwatch.services.stubs import (
    StubChartAnalyzer,
    StubChartCapture,
    StubEconomicFeed,
    StubImpactSummarizer,
    StubNotifier,
)
from chartwatch.services.telegram_bot import Notifier, TelegramNotifier


@dataclass
class Adapters:
    capture: ChartCapture
    analyzer: ChartAnalyzer
    feed: EconomicFeed
    summarizer: ImpactSummarizer
    notifier: Notifier


def build_adapters(settings: Settings) -> Adapters:
    if settings.capture_backend == "stub":
        capture = StubChartCapture()
    else:
        capture = ChartImgCapture(
            api_key=settings.chart_img_api_key,
            url=settings.chart_img_url,
            timeout=settings.capture_timeout_seconds,
        )

    if settings.analysis_backend == "stub":
        analyzer = StubChartAnalyzer()
    else:
        analyzer = OpenAIChartAnalyzer(settings.openai_api_key, timeout=settings.analysis_timeout_seconds)

    if settings.economic_backend == "stub":
        feed = StubEconomicFeed()
        summarizer = StubImpactSummarizer()
    else:
        feed = FMPEconomicCalendar(
            api_key=settings.fmp_api_key,
            url=settings.economic_calendar_url,
            cache_ttl=settings.economic_cache_ttl_seconds,
        )
        summarizer = OpenAIImpactSummarizer(
            settings.openai_api_key,
            model=settings.analysis_model,
            timeout=settings.enrichment_timeout_seconds,
        )

    if settings.notify_backend == "stub":
        notifier = StubNotifier()
    else:
        notifier = TelegramNotifier(settings.telegram_bot_token)

    return Adapters(capture=capture, analyzer=analyzer, feed=feed, summarizer=summarizer, notifier=notifier)
