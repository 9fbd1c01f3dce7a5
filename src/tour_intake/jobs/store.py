"""
Job Store: the durable import_jobs table is the only source of truth for job state.

- Outcome writes are conditional on the lease token (status=processing,
  claimed_by, claimed_at). A zero-row update means the claim was lost.
- The transient retry counter is derived from ``errors``: transient entries
  recorded since the last manual retry marker.
- Every status change appends a state_transitions row in the same transaction.
- ``progress`` is a snapshot of the current attempt (claimed → extracting →
  resolving → done / requeued), written under the same lease condition.
"""
from __future__ import annotations
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tour_intake.common.enums import (
    ImportJobStatus, RETRYABLE_JOB_STATUSES, TransitionTrigger,
)
from tour_intake.common.exceptions import (
    ClaimLostError, IntakeError, JobNotFoundError, JobNotRetryableError,
)
from tour_intake.common.models import ImportJob, StateTransition
from tour_intake.common.timeutil import utcnow
import structlog

if TYPE_CHECKING:
    from tour_intake.resolver.confidence import Resolution

logger = structlog.get_logger()

TRANSIENT_PREFIX = "transient:"
FAILED_PREFIX = "failed:"
RETRY_MARKER = "manual_retry:"


def transient_error_count(errors: list[str]) -> int:
    """Transient failures since the most recent manual retry."""
    count = 0
    for entry in reversed(errors or []):
        if entry.startswith(RETRY_MARKER):
            break
        if entry.startswith(TRANSIENT_PREFIX):
            count += 1
    return count


def describe_error(error: IntakeError | str) -> str:
    if isinstance(error, IntakeError):
        return f"{error.code}: {error.message}" if error.message else error.code
    return str(error)


async def record_transition(
    db: AsyncSession, job_id: str,
    from_status: str | None, to_status: str,
    trigger: str, operator: str | None,
) -> None:
    db.add(StateTransition(
        entity_type="import_job",
        entity_id=job_id,
        from_status=from_status,
        to_status=to_status,
        trigger=str(trigger),
        operator=operator,
    ))


def progress_snapshot(stage: str, **fields) -> dict:
    return {"stage": stage, **fields, "last_updated": utcnow().isoformat()}


def parse_job_id(job_id: str | UUID) -> UUID:
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except ValueError:
        raise JobNotFoundError(f"Job {job_id} not found")


class JobStore:
    def __init__(self, max_retries: int = 3) -> None:
        self._max_retries = max_retries

    async def create_job(
        self, db: AsyncSession, tenant_id: str, raw_sources: list[dict],
    ) -> ImportJob:
        job = ImportJob(
            tenant_id=tenant_id,
            status=ImportJobStatus.PENDING.value,
            raw_sources=list(raw_sources),
            confidence_map={},
            errors=[],
        )
        db.add(job)
        await db.flush()
        await record_transition(db, str(job.id), None, ImportJobStatus.PENDING.value,
                                TransitionTrigger.CREATED, tenant_id)
        logger.info("import_job_created", job_id=str(job.id), tenant_id=tenant_id,
                    sources=len(raw_sources))
        return job

    async def get_job(self, db: AsyncSession, job_id: str | UUID) -> ImportJob:
        jid = parse_job_id(job_id)
        job = (await db.execute(
            select(ImportJob).where(ImportJob.id == jid))).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(f"Job {jid} not found")
        return job

    async def mark_resolved(
        self, db: AsyncSession, job: ImportJob, worker_id: str, resolution: "Resolution",
    ) -> str:
        """Write the resolver outcome and release the claim. Returns the new status."""
        status = (ImportJobStatus.NEEDS_REVIEW if resolution.needs_review
                  else ImportJobStatus.COMPLETED).value
        await self._write_outcome(
            db, job, worker_id,
            status=status,
            extracted=resolution.extracted,
            confidence_map=resolution.confidence_map,
            suggestions=resolution.suggestions or None,
            errors=list(job.errors or []) + list(resolution.audit),
            progress=self._done(job, status, facts_extracted=resolution.facts_considered),
        )
        await record_transition(db, str(job.id), ImportJobStatus.PROCESSING.value, status,
                                TransitionTrigger.RESOLVED, worker_id)
        logger.info("import_job_resolved", job_id=str(job.id), status=status,
                    fields=len(resolution.confidence_map))
        return status

    async def requeue_or_fail(
        self, db: AsyncSession, job: ImportJob, worker_id: str, error: IntakeError | str,
    ) -> str:
        """Transient failure: back to pending, or failed once the retry budget is spent."""
        errors = list(job.errors or []) + [f"{TRANSIENT_PREFIX} {describe_error(error)}"]
        attempts = transient_error_count(errors)
        if attempts > self._max_retries:
            errors.append(f"{FAILED_PREFIX} retry budget exhausted after {attempts} attempts")
            status, trigger = ImportJobStatus.FAILED.value, TransitionTrigger.RETRY_EXHAUSTED
        else:
            status, trigger = ImportJobStatus.PENDING.value, TransitionTrigger.TRANSIENT_ERROR

        await self._write_outcome(db, job, worker_id, status=status, errors=errors,
                                  progress=self._done(job, status, attempts=attempts))
        await record_transition(db, str(job.id), ImportJobStatus.PROCESSING.value, status,
                                trigger, worker_id)
        logger.warning("import_job_transient_error", job_id=str(job.id), status=status,
                       attempts=attempts, max_retries=self._max_retries,
                       error=describe_error(error))
        return status

    async def mark_failed(
        self, db: AsyncSession, job: ImportJob, worker_id: str, error: IntakeError | str,
    ) -> str:
        errors = list(job.errors or []) + [f"{FAILED_PREFIX} {describe_error(error)}"]
        await self._write_outcome(
            db, job, worker_id, status=ImportJobStatus.FAILED.value, errors=errors,
            progress=self._done(job, ImportJobStatus.FAILED.value))
        await record_transition(db, str(job.id), ImportJobStatus.PROCESSING.value,
                                ImportJobStatus.FAILED.value,
                                TransitionTrigger.PERMANENT_ERROR, worker_id)
        logger.warning("import_job_failed", job_id=str(job.id), error=describe_error(error))
        return ImportJobStatus.FAILED.value

    async def retry_job(
        self, db: AsyncSession, job_id: str | UUID, operator: str,
    ) -> ImportJob:
        """Human-triggered retry from failed / needs_review. Resets the retry budget."""
        job = await self.get_job(db, job_id)
        if job.status not in RETRYABLE_JOB_STATUSES:
            raise JobNotRetryableError(
                f"Job {job.id} is {job.status}; only failed or needs_review jobs can be retried")

        from_status = job.status
        errors = list(job.errors or []) + [
            f"{RETRY_MARKER} requested by {operator} at {utcnow().isoformat()}"]
        result = await db.execute(
            update(ImportJob)
            .where(ImportJob.id == job.id, ImportJob.status == from_status)
            .values(status=ImportJobStatus.PENDING.value, claimed_by=None,
                    claimed_at=None, errors=errors, progress=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise JobNotRetryableError(f"Job {job.id} changed state concurrently")
        await record_transition(db, str(job.id), from_status, ImportJobStatus.PENDING.value,
                                TransitionTrigger.MANUAL_RETRY, operator)
        logger.info("import_job_retried", job_id=str(job.id), operator=operator,
                    from_status=from_status)
        return await self._reload(db, job.id)

    async def update_progress(
        self, db: AsyncSession, job: ImportJob, worker_id: str, stage: str, **fields,
    ) -> dict:
        """Progress snapshot for a job still under our lease; ClaimLostError otherwise."""
        progress = progress_snapshot(stage, **fields)
        await self._conditional_update(db, job, worker_id, progress=progress)
        return progress

    @staticmethod
    def _done(job: ImportJob, status: str, **fields) -> dict:
        prior = {k: v for k, v in (job.progress or {}).items()
                 if k not in ("stage", "last_updated")}
        stage = "requeued" if status == ImportJobStatus.PENDING.value else "done"
        return progress_snapshot(stage, **{**prior, **fields, "outcome": status})

    async def _write_outcome(
        self, db: AsyncSession, job: ImportJob, worker_id: str, **values,
    ) -> None:
        await self._conditional_update(
            db, job, worker_id, claimed_by=None, claimed_at=None, **values)

    async def _conditional_update(
        self, db: AsyncSession, job: ImportJob, worker_id: str, **values,
    ) -> None:
        result = await db.execute(
            update(ImportJob)
            .where(
                ImportJob.id == job.id,
                ImportJob.status == ImportJobStatus.PROCESSING.value,
                ImportJob.claimed_by == worker_id,
                ImportJob.claimed_at == job.claimed_at,
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ClaimLostError(f"Claim on job {job.id} no longer held by {worker_id}")

    @staticmethod
    async def _reload(db: AsyncSession, job_id: UUID) -> ImportJob:
        return (await db.execute(
            select(ImportJob).where(ImportJob.id == job_id)
            .execution_options(populate_existing=True)
        )).scalar_one()
