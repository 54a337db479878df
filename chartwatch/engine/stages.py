"""Pipeline stages. Each stage owns its timeout and maps failures to its error type."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from chartwatch.engine.errors import AnalysisProviderError, CaptureError, DispatchError, EnrichmentError
from chartwatch.engine.job import ImageRef, JobContext
from chartwatch.schemas.analysis import EconomicEvent, ImpactSummary, SignalResult
from chartwatch.services.ai_analysis import ChartAnalyzer, ImpactSummarizer
from chartwatch.services.chart_capture import ChartCapture
from chartwatch.services.economic_calendar import EconomicFeed, parse_symbol_currencies, partition_events
from chartwatch.services.telegram_bot import Notifier
from chartwatch.utils.constants import EVENT_LOOKAHEAD, EVENT_LOOKBACK

logger = logging.getLogger("chartwatch.jobs")


@dataclass
class Enrichment:
    symbol: str
    summary: ImpactSummary
    upcoming: list[EconomicEvent]
    weekly: list[EconomicEvent]


async def capture_stage(
    job: JobContext, capture: ChartCapture, slots: asyncio.Semaphore, timeout: float
) -> ImageRef:
    """Capture the chart while holding one of the shared capture slots."""
    log = job.log or logger
    async with slots:
        try:
            return await asyncio.wait_for(capture.capture(job), timeout=timeout)
        except asyncio.TimeoutError:
            raise CaptureError(f"Capture timed out after {timeout:.0f}s") from None
        except CaptureError:
            raise
        except Exception as e:
            log.exception("Unexpected capture failure")
            raise CaptureError(f"Capture failed: {e}") from e


async def analysis_stage(
    job: JobContext, analyzer: ChartAnalyzer, image: ImageRef, timeout: float
) -> SignalResult:
    log = job.log or logger
    try:
        result = await asyncio.wait_for(analyzer.analyze(image, job.model), timeout=timeout)
    except asyncio.TimeoutError:
        raise AnalysisProviderError(f"Analysis timed out after {timeout:.0f}s") from None
    except AnalysisProviderError:
        raise
    except Exception as e:
        log.exception("Unexpected analysis failure")
        raise AnalysisProviderError(f"Analysis failed: {e}") from e
    log.info(f"Analysis: {result.action} ({result.confidence}%)")
    return result


async def _enrich(
    job: JobContext, feed: EconomicFeed, summarizer: ImpactSummarizer, signal: SignalResult, now: datetime
) -> Enrichment | None:
    info = parse_symbol_currencies(job.symbol)
    events = await feed.fetch_events(
        now - EVENT_LOOKBACK,
        now + EVENT_LOOKAHEAD,
        countries=info.countries or None,
        currencies=info.currencies,
    )
    upcoming, weekly = partition_events(events, now)
    if not upcoming and not weekly:
        return None
    summary = await summarizer.summarize(job.symbol, signal, upcoming, weekly)
    return Enrichment(symbol=job.symbol, summary=summary, upcoming=upcoming, weekly=weekly)


async def enrichment_stage(
    job: JobContext,
    feed: EconomicFeed,
    summarizer: ImpactSummarizer,
    signal: SignalResult,
    now: datetime,
    timeout: float,
) -> Enrichment | None:
    """Best-effort economic context. Never raises: failures degrade to None."""
    log = job.log or logger
    if not job.symbol:
        return None
    try:
        return await asyncio.wait_for(_enrich(job, feed, summarizer, signal, now), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning(f"Economic enrichment timed out after {timeout:.0f}s, continuing without it")
    except EnrichmentError as e:
        log.warning(f"Economic enrichment failed, continuing without it: {e.message}")
    except Exception:
        log.exception("Unexpected enrichment failure, continuing without it")
    return None


async def dispatch_stage(
    job: JobContext, notifier: Notifier, text: str, image: ImageRef | None, timeout: float
) -> None:
    log = job.log or logger
    try:
        await asyncio.wait_for(notifier.send_alert(job.target.chat_id, text, image), timeout=timeout)
    except asyncio.TimeoutError:
        raise DispatchError(f"Notification timed out after {timeout:.0f}s") from None
    except DispatchError:
        raise
    except Exception as e:
        log.exception("Unexpected dispatch failure")
        raise DispatchError(f"Notification failed: {e}") from e
