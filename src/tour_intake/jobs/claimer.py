"""
Job Claimer: leased, compare-and-swap claims.

- Eligible: status=pending, or status=processing with claimed_at older than the lease
- Oldest created_at first; each job is claimed by its own conditional UPDATE
- A racing worker that loses the CAS simply gets fewer jobs
- Postgres: candidate read uses FOR UPDATE SKIP LOCKED to cut contention
"""
from __future__ import annotations
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tour_intake.common.enums import ImportJobStatus, TransitionTrigger
from tour_intake.common.models import ImportJob
from tour_intake.common.timeutil import utcnow
from tour_intake.jobs.store import record_transition
import structlog

logger = structlog.get_logger()

DEFAULT_LEASE_SECONDS = 300  # 5 min


class JobClaimer:
    def __init__(self, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self._lease = timedelta(seconds=lease_seconds)

    def _eligible(self, now: datetime):
        return or_(
            ImportJob.status == ImportJobStatus.PENDING.value,
            and_(
                ImportJob.status == ImportJobStatus.PROCESSING.value,
                ImportJob.claimed_at < now - self._lease,
            ),
        )

    async def try_claim(
        self, db: AsyncSession, job_id, worker_id: str, now: datetime,
    ) -> bool:
        """Single-job CAS. True iff this call moved the job into our hands."""
        result = await db.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, self._eligible(now))
            .values(status=ImportJobStatus.PROCESSING.value,
                    claimed_by=worker_id, claimed_at=now, updated_at=now,
                    progress={"stage": "claimed", "claimed_by": worker_id,
                              "last_updated": now.isoformat()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_batch(
        self, db: AsyncSession, worker_id: str, limit: int,
        now: datetime | None = None,
    ) -> list[ImportJob]:
        if limit <= 0:
            return []
        now = now or utcnow()

        query = (
            select(ImportJob.id, ImportJob.status)
            .where(self._eligible(now))
            .order_by(ImportJob.created_at.asc(), ImportJob.id.asc())
            .limit(limit)
        )
        if db.bind.dialect.name == "postgresql":
            query = query.with_for_update(skip_locked=True)
        candidates = (await db.execute(query)).all()

        claimed_ids = []
        for job_id, prev_status in candidates:
            if not await self.try_claim(db, job_id, worker_id, now):
                logger.debug("claim_lost_race", job_id=str(job_id), worker_id=worker_id)
                continue
            reclaim = prev_status == ImportJobStatus.PROCESSING.value
            await record_transition(
                db, str(job_id), prev_status, ImportJobStatus.PROCESSING.value,
                TransitionTrigger.LEASE_RECLAIM if reclaim else TransitionTrigger.CLAIM,
                worker_id)
            if reclaim:
                logger.warning("claim_lease_reclaimed", job_id=str(job_id), worker_id=worker_id)
            claimed_ids.append(job_id)

        if not claimed_ids:
            return []

        jobs = (await db.execute(
            select(ImportJob).where(ImportJob.id.in_(claimed_ids))
            .order_by(ImportJob.created_at.asc(), ImportJob.id.asc())
            .execution_options(populate_existing=True)
        )).scalars().all()
        logger.info("jobs_claimed", worker_id=worker_id, requested=limit,
                    claimed=len(jobs))
        return list(jobs)
