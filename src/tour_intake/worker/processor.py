"""
Per-job processing: validate → extract → resolve → persist.

Progress is written at each stage (extracting, resolving) under the lease.
Sources with too little text force needs_review with a LOW_TEXT warning.

Failure classes:
- MalformedInputError (before the adapter is called) → failed
- RetryableError / unexpected error → requeue (failed once the budget is spent)
- other IntakeError → failed
- ClaimLostError on the outcome write → logged, nothing written
process() never raises; one bad job must not take down the batch.
"""
from __future__ import annotations
from typing import Awaitable, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from tour_intake.common.exceptions import (
    ClaimLostError, IntakeError, MalformedInputError, RetryableError, StoreUnavailableError,
)
from tour_intake.common.models import ImportJob
from tour_intake.common.schemas import RawSource
from tour_intake.extraction.base import ExtractionAdapter
from tour_intake.jobs.store import JobStore
from tour_intake.resolver.confidence import ConfidenceResolver
import structlog

logger = structlog.get_logger()


def validate_sources(raw_sources) -> list[RawSource]:
    if not isinstance(raw_sources, list) or not raw_sources:
        raise MalformedInputError("raw_sources must be a non-empty list")
    sources: list[RawSource] = []
    for idx, raw in enumerate(raw_sources):
        if not isinstance(raw, dict):
            raise MalformedInputError(f"raw_sources[{idx}] is not an object")
        try:
            source = RawSource.model_validate(raw)
        except ValidationError as e:
            raise MalformedInputError(f"raw_sources[{idx}] invalid: {e.errors()[0]['msg']}")
        if not source.raw_text.strip():
            raise MalformedInputError(f"raw_sources[{idx}] has no raw_text")
        sources.append(source)
    return sources


def low_text_sources(
    sources: list[RawSource], min_words: int = 200, min_words_per_page: int = 30,
) -> list[RawSource]:
    """Sources whose text is too thin to trust for extraction."""
    thin = []
    for source in sources:
        words = len(source.raw_text.split())
        sparse = bool(source.page_count) and words / source.page_count < min_words_per_page
        if source.is_low_text or words <= 0 or words < min_words or sparse:
            thin.append(source)
    return thin


class JobProcessor:
    def __init__(
        self,
        session_factory,
        store: JobStore,
        adapter: ExtractionAdapter,
        resolver: ConfidenceResolver,
        worker_id: str,
        low_text_min_words: int = 200,
        low_text_min_words_per_page: int = 30,
    ) -> None:
        self._factory = session_factory
        self._store = store
        self._adapter = adapter
        self._resolver = resolver
        self._worker_id = worker_id
        self._min_words = low_text_min_words
        self._min_words_per_page = low_text_min_words_per_page

    async def process(self, job: ImportJob) -> str | None:
        """Returns the status written, or None when nothing could be written."""
        job_id = str(job.id)
        try:
            sources = validate_sources(job.raw_sources)
        except MalformedInputError as e:
            return await self._persist(self._store.mark_failed, job, e)

        if not await self._progress(job, "extracting",
                                    sources_total=len(sources), sources_completed=0):
            return None
        try:
            facts = await self._adapter.extract(sources)
            if not await self._progress(job, "resolving", sources_total=len(sources),
                                        sources_completed=len(sources),
                                        facts_extracted=len(facts)):
                return None
            resolution = self._resolver.resolve(job, facts)
        except RetryableError as e:
            return await self._persist(self._store.requeue_or_fail, job, e)
        except IntakeError as e:
            return await self._persist(self._store.mark_failed, job, e)
        except Exception as e:
            logger.exception("job_processing_unexpected_error", job_id=job_id)
            return await self._persist(
                self._store.requeue_or_fail, job, f"unexpected {type(e).__name__}: {e}")

        thin = low_text_sources(sources, self._min_words, self._min_words_per_page)
        if thin:
            names = ", ".join(s.filename or "<unnamed>" for s in thin)
            resolution.audit.append(f"warning: LOW_TEXT: insufficient text in {names}")
            resolution.needs_review = True
            logger.info("job_low_text_sources", job_id=job_id, sources=len(thin))

        try:
            return await self._write(self._store.mark_resolved, job, resolution)
        except ClaimLostError as e:
            logger.warning("claim_lost", job_id=job_id, worker_id=self._worker_id,
                           reason=e.message)
            return None
        except SQLAlchemyError as e:
            logger.error("job_resolve_write_failed", job_id=job_id, error=str(e))
            return await self._persist(
                self._store.requeue_or_fail, job, StoreUnavailableError(str(e)))

    async def _progress(self, job: ImportJob, stage: str, **fields) -> bool:
        """False once the lease is gone; a failed progress write is not fatal."""
        try:
            async with self._factory() as db:
                async with db.begin():
                    job.progress = await self._store.update_progress(
                        db, job, self._worker_id, stage, **fields)
        except ClaimLostError as e:
            logger.warning("claim_lost", job_id=str(job.id), worker_id=self._worker_id,
                           stage=stage, reason=e.message)
            return False
        except SQLAlchemyError as e:
            logger.warning("job_progress_write_failed", job_id=str(job.id),
                           stage=stage, error=str(e))
        return True

    async def _write(self, op: Callable[..., Awaitable[str]], job: ImportJob, arg) -> str:
        async with self._factory() as db:
            async with db.begin():
                return await op(db, job, self._worker_id, arg)

    async def _persist(self, op: Callable[..., Awaitable[str]], job: ImportJob, arg) -> str | None:
        try:
            result = await self._write(op, job, arg)
        except ClaimLostError as e:
            logger.warning("claim_lost", job_id=str(job.id), worker_id=self._worker_id,
                           reason=e.message)
            return None
        except Exception:
            # Lease expiry returns the job to the pool.
            logger.exception("job_outcome_write_failed", job_id=str(job.id))
            return None
        return result
