"""Durable heartbeat registry: upsert + staleness window."""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import as_utc, utc
from tour_intake.common.models import WorkerHeartbeat
from tour_intake.worker.heartbeat import HeartbeatRegistry

T0 = utc(2026, 3, 1, 9, 0, 0)


@pytest.mark.asyncio
async def test_record_upserts_single_row(session_factory):
    registry = HeartbeatRegistry(session_factory, staleness_seconds=30)
    await registry.record("w1", "semantic", hostname="box-a", now=T0)
    await registry.record("w1", "semantic", now=T0 + timedelta(seconds=10))

    async with session_factory() as db:
        assert (await db.execute(select(func.count()).select_from(WorkerHeartbeat))).scalar() == 1
        hb = (await db.execute(select(WorkerHeartbeat))).scalar_one()
    assert as_utc(hb.started_at) == T0
    assert as_utc(hb.last_seen_at) == T0 + timedelta(seconds=10)
    assert hb.hostname == "box-a"


@pytest.mark.asyncio
async def test_health_counts_only_fresh_workers(session_factory):
    registry = HeartbeatRegistry(session_factory, staleness_seconds=30)
    await registry.record("fresh", "semantic", now=T0)
    await registry.record("stale", "semantic", now=T0 - timedelta(seconds=45))

    health = await registry.get_health(now=T0 + timedelta(seconds=5))
    assert health["healthy"] is True
    assert health["active_workers"] == 1
    (worker,) = health["workers"]
    assert worker["worker_id"] == "fresh"
    assert worker["seconds_since_seen"] == 5.0


@pytest.mark.asyncio
async def test_worker_exactly_at_staleness_is_inactive(session_factory):
    registry = HeartbeatRegistry(session_factory, staleness_seconds=30)
    await registry.record("w1", "semantic", now=T0)

    assert (await registry.get_health(now=T0 + timedelta(seconds=29)))["active_workers"] == 1
    health = await registry.get_health(now=T0 + timedelta(seconds=30))
    assert health == {"healthy": False, "active_workers": 0, "workers": []}


@pytest.mark.asyncio
async def test_no_workers_unhealthy(session_factory):
    health = await HeartbeatRegistry(session_factory).get_health(now=T0)
    assert health["healthy"] is False
    assert health["active_workers"] == 0


@pytest.mark.asyncio
async def test_query_failure_reported_not_raised(engine, session_factory):
    registry = HeartbeatRegistry(session_factory)
    async with engine.begin() as conn:
        await conn.run_sync(WorkerHeartbeat.__table__.drop)

    health = await registry.get_health(now=T0)
    assert health["healthy"] is False
    assert "error" in health
