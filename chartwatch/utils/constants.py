"""Shared constants and defaults."""

from datetime import timedelta

VALID_FREQUENCIES = ["15m", "1h", "4h", "1d", "1w"]

# Schedule frequency to run interval
FREQUENCY_INTERVALS: dict[str, timedelta] = {
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}


# Captured chart images are kept for a day
SNAPSHOT_TTL = timedelta(hours=24)

# Economic enrichment windows
EVENT_LOOKBACK = timedelta(hours=1)
EVENT_LOOKAHEAD = timedelta(days=7)
UPCOMING_EVENT_WINDOW = timedelta(hours=1)

TRADINGVIEW_CHART_URL = "https://www.tradingview.com/chart/{layout_id}/"
