"""Economic calendar feed and event helpers.

Events come from the Financial Modeling Prep economic calendar. Responses are
cached in-process per (window, filters) so a tick with many schedules on the
same currencies makes one request.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from chartwatch.engine.errors import EnrichmentError
from chartwatch.schemas.analysis import EconomicEvent
from chartwatch.utils.constants import UPCOMING_EVENT_WINDOW, EVENT_LOOKAHEAD

logger = logging.getLogger(__name__)

# Currency to the country code the calendar files its events under
CURRENCY_COUNTRIES: dict[str, str] = {
    "EUR": "EU",
    "USD": "US",
    "GBP": "GB",
    "JPY": "JP",
    "CHF": "CH",
    "AUD": "AU",
    "CAD": "CA",
    "NZD": "NZ",
}
CRYPTO_BASES = ("BTC", "ETH", "LTC")
METALS = ("XAU", "XAG")
_IMPACT_ORDER = {"HIGH": 0, "MEDIUM": 1, "LOW": 2}
_CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("GDP", ("gdp",)),
    ("Employment", ("employment", "unemployment", "jobs", "nfp")),
    ("Inflation", ("inflation", "cpi", "ppi")),
    ("CentralBank", ("interest rate", "fed", "ecb", "boe")),
    ("Trade", ("trade", "export", "import")),
    ("Consumer", ("retail", "consumer")),
    ("Manufacturing", ("manufacturing", "pmi")),
    ("Housing", ("housing",)),
]


@dataclass(frozen=True)
class SymbolInfo:
    currencies: list[str]
    countries: list[str]
    asset_type: str  # forex, crypto, commodity, stock


def parse_symbol_currencies(symbol: str) -> SymbolInfo:
    """Resolve a chart symbol such as ``FX:EURUSD`` to currencies and countries."""
    ticker = symbol.split(":")[-1]
    sym = re.sub(r"[^A-Z]", "", ticker.upper())

    if any(base in sym for base in CRYPTO_BASES):
        fiat = sym[3:6] or "USD"
        country = CURRENCY_COUNTRIES.get(fiat)
        return SymbolInfo([sym[:3], fiat], [country] if country in ("US", "EU") else [], "crypto")

    if sym.startswith(METALS):
        currency = sym[3:] or "USD"
        return SymbolInfo([currency], ["US"] if currency == "USD" else [], "commodity")

    if len(sym) == 6:
        base, quote = sym[:3], sym[3:]
        countries = [c for cur, c in CURRENCY_COUNTRIES.items() if cur in (base, quote)]
        return SymbolInfo([base, quote], countries, "forex")

    return SymbolInfo(["USD"], ["US"], "stock")


def categorize_event(name: str) -> str:
    lowered = name.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return "Other"


def _parse_impact(value: str | None) -> str:
    impact = (value or "").strip().upper()
    return impact if impact in ("HIGH", "MEDIUM") else "LOW"


def _map_fmp_event(raw: dict) -> EconomicEvent:
    date_str = raw["date"]
    when = datetime.fromisoformat(date_str.replace(" ", "T")).replace(tzinfo=timezone.utc)
    name = raw.get("event", "")
    stamp = re.sub(r"[:\s-]", "", date_str)
    slug = re.sub(r"\s+", "_", name)
    return EconomicEvent(
        event_id=f"{raw.get('country', '')}_{stamp}_{slug}".lower(),
        date=when,
        time=when.strftime("%H:%M"),
        country=raw.get("country", ""),
        currency=raw.get("currency") or None,
        event=name,
        impact=_parse_impact(raw.get("impact")),
        category=categorize_event(name),
        actual=_as_text(raw.get("actual")),
        forecast=_as_text(raw.get("estimate")),
        previous=_as_text(raw.get("previous")),
        source="FMP",
    )


def _as_text(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def filter_events(
    events: list[EconomicEvent],
    countries: list[str] | None,
    currencies: list[str] | None,
) -> list[EconomicEvent]:
    """Keep events matching the countries and currencies, dropping duplicate ids."""
    if countries:
        events = [e for e in events if e.country in countries]
    if currencies:
        events = [e for e in events if e.currency and e.currency in currencies]
    seen: set[str] = set()
    unique = []
    for event in events:
        if event.event_id in seen:
            continue
        seen.add(event.event_id)
        unique.append(event)
    return unique


def _in_window(events: list[EconomicEvent], start: datetime, end: datetime) -> list[EconomicEvent]:
    return [e for e in events if start <= e.date <= end]


def _sort_key(event: EconomicEvent):
    return (event.date, _IMPACT_ORDER[event.impact])


def partition_events(
    events: list[EconomicEvent], now: datetime
) -> tuple[list[EconomicEvent], list[EconomicEvent]]:
    """Split events into (upcoming, weekly).

    Upcoming: within an hour either side of ``now``. Weekly: from ``now`` to a
    week ahead. Both sorted by time, then HIGH impact first.
    """
    upcoming = [e for e in events if abs(e.date - now) <= UPCOMING_EVENT_WINDOW]
    weekly = [e for e in events if 0 <= (e.date - now).total_seconds() <= EVENT_LOOKAHEAD.total_seconds()]
    return sorted(upcoming, key=_sort_key), sorted(weekly, key=_sort_key)


def calculate_immediate_risk(events: list[EconomicEvent]) -> str:
    if not events:
        return "NONE"
    high = sum(1 for e in events if e.impact == "HIGH")
    medium = sum(1 for e in events if e.impact == "MEDIUM")
    if high >= 2:
        return "EXTREME"
    if high == 1 or medium >= 3:
        return "HIGH"
    if medium >= 1:
        return "MEDIUM"
    return "LOW"


class EconomicFeed(Protocol):
    async def fetch_events(
        self,
        start: datetime,
        end: datetime,
        countries: list[str] | None = None,
        currencies: list[str] | None = None,
    ) -> list[EconomicEvent]: ...


class FMPEconomicCalendar:
    """Economic feed backed by the Financial Modeling Prep calendar endpoint."""

    def __init__(
        self,
        api_key: str,
        url: str,
        cache_ttl: float = 6 * 60 * 60,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.url = url
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.transport = transport
        self._cache: dict[str, tuple[float, list[EconomicEvent]]] = {}

    @staticmethod
    def _cache_key(start: datetime, end: datetime, countries, currencies) -> str:
        return "_".join([
            f"{start:%Y-%m-%d}",
            f"{end:%Y-%m-%d}",
            ",".join(sorted(countries or [])) or "all",
            ",".join(sorted(currencies or [])) or "all",
        ])

    def _store(self, key: str, events: list[EconomicEvent]) -> None:
        now = time.monotonic()
        self._cache = {k: v for k, v in self._cache.items() if now - v[0] < self.cache_ttl}
        self._cache[key] = (now, events)

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=3.0) + wait_random(0, 0.5),
        retry=retry_if_exception_type(httpx.TransportError),
    )
    async def _request(self, start: datetime, end: datetime) -> list[dict]:
        params = {"from": f"{start:%Y-%m-%d}", "to": f"{end:%Y-%m-%d}", "apikey": self.api_key}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get(self.url, params=params)
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, list):
            raise EnrichmentError(f"Unexpected economic calendar payload: {str(payload)[:200]}")
        return payload

    async def fetch_events(self, start, end, countries=None, currencies=None) -> list[EconomicEvent]:
        if not self.api_key:
            raise EnrichmentError("CW_FMP_API_KEY is not set")

        key = self._cache_key(start, end, countries, currencies)
        cached = self._cache.get(key)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            logger.debug(f"Using cached economic events for {key}")
            return _in_window(cached[1], start, end)

        try:
            raw_events = await self._request(start, end)
        except httpx.HTTPError as e:
            if cached:
                logger.warning(f"Economic calendar unavailable, using stale cache for {key}: {e}")
                return _in_window(cached[1], start, end)
            raise EnrichmentError(f"Economic calendar request failed: {e}") from e

        events = []
        for raw in raw_events:
            try:
                events.append(_map_fmp_event(raw))
            except (KeyError, ValueError) as e:
                logger.debug(f"Skipping malformed calendar entry {raw!r}: {e}")
        events = filter_events(events, countries, currencies)

        self._store(key, events)
        logger.info(f"Fetched {len(events)} economic events for {key}")
        return _in_window(events, start, end)
