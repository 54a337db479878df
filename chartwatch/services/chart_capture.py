"""Chart capture through the chart-img TradingView rendering API.

The service renders the user's saved layout (drawings and indicators included)
in a headless browser on its side, authenticated with the user's TradingView
session cookies, and returns PNG bytes.
"""

import logging
from typing import Protocol

import httpx

from chartwatch.engine.errors import CaptureError
from chartwatch.engine.job import ImageRef, JobContext
from chartwatch.utils.constants import TRADINGVIEW_CHART_URL

logger = logging.getLogger(__name__)


class ChartCapture(Protocol):
    async def capture(self, job: JobContext) -> ImageRef: ...


class ChartImgCapture:
    """Capture adapter backed by api.chart-img.com."""

    def __init__(
        self,
        api_key: str,
        url: str,
        width: int = 800,
        height: int = 600,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.url = url
        self.width = width
        self.height = height
        self.timeout = timeout
        self.transport = transport

    def _headers(self, job: JobContext) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "tv-sessionid": job.credentials.session_id,
            "tv-sessionid_sign": job.credentials.session_sign,
        }

    async def capture(self, job: JobContext) -> ImageRef:
        if not self.api_key:
            raise CaptureError("CW_CHART_IMG_API_KEY is not set")

        body = {"layout": job.capture_layout_id, "width": self.width, "height": self.height}
        log = job.log or logger
        log.info(f"Capturing layout {job.capture_layout_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=body, headers=self._headers(job))
        except httpx.TimeoutException as e:
            raise CaptureError(f"Chart capture timed out: {e}") from e
        except httpx.HTTPError as e:
            raise CaptureError(f"Chart capture request failed: {e}") from e

        if resp.status_code != 200:
            detail = _error_detail(resp)
            raise CaptureError(f"Chart capture error ({resp.status_code}): {detail}")
        if not resp.content:
            raise CaptureError("Chart capture returned an empty image")

        content_type = resp.headers.get("content-type", "image/png").split(";")[0]
        log.info(f"Captured {len(resp.content)} bytes ({content_type})")
        return ImageRef(
            data=resp.content,
            content_type=content_type,
            source_url=TRADINGVIEW_CHART_URL.format(layout_id=job.capture_layout_id),
        )


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return (resp.text or resp.reason_phrase or "Unknown error")[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or payload)[:200]
    return str(payload)[:200]
