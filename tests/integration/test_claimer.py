"""JobClaimer: CAS claims and lease expiry against SQLite."""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import as_utc, utc
from tour_intake.common.models import ImportJob, StateTransition
from tour_intake.jobs.claimer import JobClaimer

NOW = utc(2026, 1, 1, 13, 0, 0)


async def _claim(session_factory, worker_id, limit, now=NOW, lease=300):
    async with session_factory() as db:
        async with db.begin():
            return await JobClaimer(lease_seconds=lease).claim_batch(db, worker_id, limit, now=now)


@pytest.mark.asyncio
async def test_claims_oldest_pending_first(session_factory, make_job):
    newest = await make_job(offset=30)
    oldest = await make_job(offset=0)
    middle = await make_job(offset=10)

    jobs = await _claim(session_factory, "w1", 2)
    assert [j.id for j in jobs] == [oldest.id, middle.id]
    for job in jobs:
        assert job.status == "processing"
        assert job.claimed_by == "w1"
        assert as_utc(job.claimed_at) == NOW
        assert job.progress["stage"] == "claimed"

    async with session_factory() as db:
        left = (await db.execute(select(ImportJob).where(ImportJob.id == newest.id))).scalar_one()
    assert left.status == "pending" and left.claimed_by is None


@pytest.mark.asyncio
async def test_concurrent_workers_get_disjoint_jobs(session_factory, make_job):
    for i in range(6):
        await make_job(offset=i)

    batches = await asyncio.gather(
        *(_claim(session_factory, f"w{n}", 3) for n in range(4)))
    claimed = [{j.id for j in batch} for batch in batches]

    union = set().union(*claimed)
    assert sum(len(ids) for ids in claimed) == len(union)
    assert 0 < len(union) <= 6

    async with session_factory() as db:
        rows = (await db.execute(select(ImportJob).where(ImportJob.id.in_(union)))).scalars().all()
    owners = {row.id: row.claimed_by for row in rows}
    for n, ids in enumerate(claimed):
        assert all(owners[job_id] == f"w{n}" for job_id in ids)


@pytest.mark.asyncio
async def test_sequential_workers_get_disjoint_jobs(session_factory, make_job):
    for i in range(4):
        await make_job(offset=i)
    first = await _claim(session_factory, "w1", 3)
    second = await _claim(session_factory, "w2", 3)
    assert len(first) == 3 and len(second) == 1
    assert not {j.id for j in first} & {j.id for j in second}


@pytest.mark.asyncio
async def test_losing_cas_does_not_claim(session_factory, make_job):
    job = await make_job()
    claimer = JobClaimer()
    async with session_factory() as db:
        async with db.begin():
            assert await claimer.try_claim(db, job.id, "w1", NOW) is True
    async with session_factory() as db:
        async with db.begin():
            assert await claimer.try_claim(db, job.id, "w2", NOW) is False
    async with session_factory() as db:
        row = (await db.execute(select(ImportJob).where(ImportJob.id == job.id))).scalar_one()
    assert row.claimed_by == "w1"


@pytest.mark.asyncio
async def test_active_lease_not_reclaimable(session_factory, make_job):
    await make_job(status="processing", claimed_by="w1", claimed_at=NOW - timedelta(seconds=299))
    assert await _claim(session_factory, "w2", 3) == []


@pytest.mark.asyncio
async def test_expired_lease_reclaimed_by_other_worker(session_factory, make_job):
    job = await make_job(status="processing", claimed_by="w1",
                         claimed_at=NOW - timedelta(seconds=301))
    jobs = await _claim(session_factory, "w2", 3)
    assert [j.id for j in jobs] == [job.id]
    assert jobs[0].claimed_by == "w2"
    assert as_utc(jobs[0].claimed_at) == NOW

    async with session_factory() as db:
        triggers = (await db.execute(
            select(StateTransition.trigger).where(StateTransition.entity_id == str(job.id))
        )).scalars().all()
    assert "lease_reclaim" in triggers


@pytest.mark.asyncio
async def test_terminal_jobs_never_claimed(session_factory, make_job):
    for status in ("completed", "needs_review", "failed"):
        await make_job(status=status)
    assert await _claim(session_factory, "w1", 5) == []


@pytest.mark.asyncio
async def test_zero_limit(session_factory, make_job):
    await make_job()
    assert await _claim(session_factory, "w1", 0) == []


@pytest.mark.asyncio
async def test_claim_records_transition(session_factory, make_job):
    job = await make_job()
    await _claim(session_factory, "w1", 1)
    async with session_factory() as db:
        row = (await db.execute(
            select(StateTransition).where(StateTransition.entity_id == str(job.id))
        )).scalar_one()
    assert (row.from_status, row.to_status, row.trigger, row.operator) == (
        "pending", "processing", "claim", "w1")
