"""Calendar feed fetcher (httpx)."""
from __future__ import annotations
import httpx
import structlog

from tour_intake.common.exceptions import FeedFetchError

logger = structlog.get_logger()


class FeedFetcher:
    def __init__(self, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def fetch(self, url: str) -> str:
        if url.startswith("webcal://"):
            url = "https://" + url[len("webcal://"):]
        try:
            resp = await self._client.get(
                url, headers={"Accept": "text/calendar, text/plain;q=0.9, */*;q=0.1"})
        except httpx.HTTPError as e:
            logger.warning("calendar_fetch_transport_error", url=url, error=str(e))
            raise FeedFetchError(f"Failed to fetch calendar feed: {e}")
        if not resp.is_success:
            raise FeedFetchError(f"Failed to fetch calendar feed ({resp.status_code})")
        return resp.text

    async def aclose(self) -> None:
        await self._client.aclose()
