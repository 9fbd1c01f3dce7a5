"""
HTTP extraction adapter.

Status classification:
- 2xx → parse body
- 408 / 425 / 429 / 5xx / timeout / connection error → transient (job is requeued)
- other 4xx → ExtractionResponseError
Every call runs inside the outage breaker; an open circuit fails fast.
"""
from __future__ import annotations
import httpx
import structlog

from tour_intake.common.exceptions import (
    ExtractionResponseError, ExtractionTimeoutError, ExtractionUnavailableError,
)
from tour_intake.common.schemas import CandidateFact, RawSource
from tour_intake.extraction.base import ExtractionAdapter
from tour_intake.extraction.circuit_breaker import CircuitBreaker
from tour_intake.extraction.parser import FactParser

logger = structlog.get_logger()

TRANSIENT_STATUSES = frozenset({408, 425, 429})


class HttpExtractionAdapter(ExtractionAdapter):
    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 60.0,
        circuit_breaker: CircuitBreaker | None = None,
        parser: FactParser | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("extraction url is required")
        self._url = url
        self._api_key = api_key
        self._breaker = circuit_breaker or CircuitBreaker()
        self._parser = parser or FactParser()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def extract(self, sources: list[RawSource]) -> list[CandidateFact]:
        async with self._breaker.guard():
            body = await self._post(sources)
            facts = self._parser.parse(body)
        logger.debug("extraction_ok", facts=len(facts))
        return facts

    async def _post(self, sources: list[RawSource]) -> bytes:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            resp = await self._client.post(
                self._url,
                json={"sources": [s.model_dump() for s in sources]},
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise ExtractionTimeoutError(f"Extraction timed out: {e}")
        except httpx.TransportError as e:
            raise ExtractionUnavailableError(f"Extraction unreachable: {e}")

        if resp.status_code >= 500 or resp.status_code in TRANSIENT_STATUSES:
            logger.warning("extraction_transient_status", status=resp.status_code)
            raise ExtractionUnavailableError(f"Extraction returned {resp.status_code}")
        if resp.status_code >= 400:
            raise ExtractionResponseError(
                f"Extraction rejected request: {resp.status_code} - {resp.text[:200]}")
        return resp.content

    async def aclose(self) -> None:
        await self._client.aclose()
