"""
Heartbeat registry (durable worker_heartbeats table).

A worker is active iff now - last_seen_at < staleness. Rows are never
deleted; stale ones just drop out of the active view. Health is an
observability signal only, it never gates job acceptance.
"""
from __future__ import annotations
import asyncio
import socket
from datetime import datetime, timedelta

from sqlalchemy import select

from tour_intake.common.models import WorkerHeartbeat
from tour_intake.common.timeutil import ensure_utc, utcnow
import structlog

logger = structlog.get_logger()

DEFAULT_STALENESS_SEC = 30.0


class HeartbeatRegistry:
    def __init__(self, session_factory, staleness_seconds: float = DEFAULT_STALENESS_SEC) -> None:
        self._factory = session_factory
        self._staleness = timedelta(seconds=staleness_seconds)

    async def record(
        self, worker_id: str, worker_type: str,
        hostname: str | None = None, now: datetime | None = None,
    ) -> None:
        now = now or utcnow()
        async with self._factory() as db:
            async with db.begin():
                hb = (await db.execute(
                    select(WorkerHeartbeat).where(WorkerHeartbeat.worker_id == worker_id)
                )).scalar_one_or_none()
                if hb:
                    hb.last_seen_at = now
                    hb.worker_type = worker_type
                    if hostname:
                        hb.hostname = hostname
                else:
                    db.add(WorkerHeartbeat(
                        worker_id=worker_id,
                        worker_type=worker_type,
                        hostname=hostname,
                        started_at=now,
                        last_seen_at=now,
                    ))
        logger.debug("heartbeat_recorded", worker_id=worker_id, worker_type=worker_type)

    async def get_health(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        try:
            async with self._factory() as db:
                rows = (await db.execute(
                    select(WorkerHeartbeat)
                    .where(WorkerHeartbeat.last_seen_at > now - self._staleness)
                    .order_by(WorkerHeartbeat.last_seen_at.desc())
                )).scalars().all()
        except Exception as e:
            logger.error("health_query_failed", error=str(e))
            return {"healthy": False, "active_workers": 0, "workers": [], "error": str(e)}

        workers = []
        for hb in rows:
            seen = ensure_utc(hb.last_seen_at)
            age = (now - seen).total_seconds()
            if age >= self._staleness.total_seconds():
                continue
            workers.append({
                "worker_id": hb.worker_id,
                "worker_type": hb.worker_type,
                "last_seen_at": seen,
                "seconds_since_seen": round(max(age, 0.0), 1),
            })
        return {"healthy": bool(workers), "active_workers": len(workers), "workers": workers}


async def heartbeat_loop(
    registry: HeartbeatRegistry, worker_id: str, worker_type: str,
    interval: float = 10.0, stop: asyncio.Event | None = None,
) -> None:
    """Background heartbeat; runs until cancelled or ``stop`` is set."""
    hostname = socket.gethostname()
    logger.info("heartbeat_started", worker_id=worker_id, hostname=hostname,
                interval=interval)

    while stop is None or not stop.is_set():
        try:
            await registry.record(worker_id, worker_type, hostname=hostname)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("heartbeat_error", worker_id=worker_id)

        if stop is None:
            await asyncio.sleep(interval)
            continue
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("heartbeat_stopped", worker_id=worker_id)
