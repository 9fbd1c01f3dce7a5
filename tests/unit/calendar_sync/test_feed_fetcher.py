"""FeedFetcher (httpx.MockTransport)."""
import httpx
import pytest

from tour_intake.calendar_sync.fetcher import FeedFetcher
from tour_intake.common.exceptions import FeedFetchError


def _fetcher(handler):
    return FeedFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_fetch_ok():
    fetcher = _fetcher(lambda r: httpx.Response(200, text="BEGIN:VCALENDAR"))
    assert await fetcher.fetch("https://cal.test/feed.ics") == "BEGIN:VCALENDAR"


@pytest.mark.asyncio
async def test_non_2xx_raises_with_status():
    fetcher = _fetcher(lambda r: httpx.Response(404))
    with pytest.raises(FeedFetchError) as exc:
        await fetcher.fetch("https://cal.test/missing.ics")
    assert exc.value.message == "Failed to fetch calendar feed (404)"


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)
    with pytest.raises(FeedFetchError):
        await _fetcher(handler).fetch("https://cal.test/feed.ics")


@pytest.mark.asyncio
async def test_webcal_scheme_rewritten():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(200, text="")

    await _fetcher(handler).fetch("webcal://cal.test/feed.ics")
    assert seen["url"] == "https://cal.test/feed.ics"
