"""
Calendar sync scheduler.

Due calculation is a pure function over persisted timestamps; no timers
live in the process. One run_once() call per external trigger:
load active sources → filter due → fetch/import sequentially → record.
A successful import and its run row commit together. A failed attempt
leaves last_synced_at untouched so the source stays due.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import select

from tour_intake.calendar_sync.fetcher import FeedFetcher
from tour_intake.calendar_sync.ical import parse_feed
from tour_intake.calendar_sync.importer import CalendarImporter
from tour_intake.calendar_sync.recorder import RunRecorder
from tour_intake.common.enums import CalendarRunStatus, CalendarSourceStatus
from tour_intake.common.exceptions import IntakeError
from tour_intake.common.models import CalendarSyncSource
from tour_intake.common.timeutil import ensure_utc, utcnow
import structlog

logger = structlog.get_logger()


def is_due(source, now: datetime) -> bool:
    last = ensure_utc(source.last_synced_at)
    if last is None:
        return True
    return ensure_utc(now) - last >= timedelta(minutes=source.sync_interval_minutes)


def due_sources(sources: Iterable, now: datetime) -> list:
    return [
        s for s in sources
        if s.status == CalendarSourceStatus.ACTIVE.value and is_due(s, now)
    ]


def _outcome(source_id, status: CalendarRunStatus, events_processed: int,
             message: str | None = None) -> dict:
    return {
        "source_id": str(source_id),
        "status": status.value,
        "events_processed": events_processed,
        "message": message,
    }


class CalendarSyncScheduler:
    def __init__(
        self,
        session_factory,
        fetcher: FeedFetcher,
        importer: CalendarImporter,
        recorder: RunRecorder | None = None,
    ) -> None:
        self._factory = session_factory
        self._fetcher = fetcher
        self._importer = importer
        self._recorder = recorder or RunRecorder()

    async def run_once(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        async with self._factory() as db:
            sources = (await db.execute(
                select(CalendarSyncSource)
                .where(CalendarSyncSource.status == CalendarSourceStatus.ACTIVE.value)
                .order_by(CalendarSyncSource.created_at.asc())
            )).scalars().all()

        due = due_sources(sources, now)
        logger.info("calendar_sync_pass", active=len(sources), due=len(due))
        results = []
        for source in due:
            results.append(await self.sync_source(source, now))
        return {"processed": len(results), "results": results}

    async def sync_source(self, source: CalendarSyncSource, now: datetime | None = None) -> dict:
        """Fetch, import and record success in one transaction; failures get their own run row."""
        now = now or utcnow()
        source_id = source.id

        try:
            payload = await self._fetcher.fetch(source.source_url)
            events = parse_feed(payload)
            async with self._factory() as db:
                async with db.begin():
                    created, updated, unchanged = await self._importer.apply(
                        db, source.tenant_id, events, source_id)
                    await self._recorder.record(
                        db, source_id, CalendarRunStatus.SUCCESS, None,
                        created + updated, started_at=now)
        except IntakeError as e:
            logger.warning("calendar_sync_failed", source_id=str(source_id),
                           error_code=e.code, error=e.message)
            return await self._record_failure(source_id, e.message, now)
        except Exception as e:
            logger.exception("calendar_sync_failed", source_id=str(source_id))
            return await self._record_failure(
                source_id, f"Calendar import failed: {e}", now)

        logger.info("calendar_source_synced", source_id=str(source_id), events=len(events),
                    created=created, updated=updated, unchanged=unchanged)
        return _outcome(source_id, CalendarRunStatus.SUCCESS, created + updated)

    async def _record_failure(self, source_id, message: str, now: datetime) -> dict:
        try:
            async with self._factory() as db:
                async with db.begin():
                    await self._recorder.record(
                        db, source_id, CalendarRunStatus.FAILED, message, 0, started_at=now)
        except Exception:
            # no run row for this attempt; last_synced_at is untouched so the source stays due
            logger.exception("calendar_run_record_failed", source_id=str(source_id))
        return _outcome(source_id, CalendarRunStatus.FAILED, 0, message)
