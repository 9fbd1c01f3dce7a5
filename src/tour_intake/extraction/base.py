"""Extraction adapter interface. The extraction model itself lives outside this service."""
from __future__ import annotations
from abc import ABC, abstractmethod

from tour_intake.common.schemas import CandidateFact, RawSource


class ExtractionAdapter(ABC):
    """Turns raw sources into candidate facts with per-field confidence.

    Implementations raise ``RetryableError`` subclasses for transient
    failures; anything they return is untrusted input for the resolver.
    """

    @abstractmethod
    async def extract(self, sources: list[RawSource]) -> list[CandidateFact]:
        ...

    async def aclose(self) -> None:
        return None


class NullExtractionAdapter(ExtractionAdapter):
    """Used when no extraction service is configured: every job lands in review."""

    async def extract(self, sources: list[RawSource]) -> list[CandidateFact]:
        return []
