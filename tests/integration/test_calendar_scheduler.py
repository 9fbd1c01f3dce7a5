"""Scheduler pass: due filtering, run recording, last_synced_at bookkeeping."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import as_utc, utc
from tour_intake.calendar_sync.importer import CalendarImporter
from tour_intake.calendar_sync.recorder import RunRecorder
from tour_intake.calendar_sync.scheduler import CalendarSyncScheduler
from tour_intake.common.enums import CalendarRunStatus
from tour_intake.common.exceptions import FeedFetchError
from tour_intake.common.models import CalendarSyncRun, CalendarSyncSource, ScheduleItem

NOW = utc(2026, 5, 1, 12, 0, 0)

FEED = "\r\n".join([
    "BEGIN:VCALENDAR",
    "BEGIN:VEVENT", "UID:gig-1", "SUMMARY:Club gig", "DTSTART:20260601T210000Z", "END:VEVENT",
    "BEGIN:VEVENT", "UID:gig-2", "SUMMARY:Festival", "DTSTART;VALUE=DATE:20260602",
    "END:VEVENT",
    "END:VCALENDAR",
])


class FakeFetcher:
    def __init__(self, payload=FEED, fail=False):
        self.payload = payload
        self.fail = fail
        self.urls = []

    async def fetch(self, url):
        self.urls.append(url)
        if self.fail:
            raise FeedFetchError("Failed to fetch calendar feed (500)")
        return self.payload


async def _add_source(session_factory, url="https://cal.example.com/a.ics", interval=60,
                      last_synced_at=None, status="active", last_error=None):
    source = CalendarSyncSource(
        tenant_id="tenant-1", source_url=url, sync_interval_minutes=interval,
        last_synced_at=last_synced_at, status=status, last_error=last_error)
    async with session_factory() as db:
        async with db.begin():
            db.add(source)
    return source


async def _reload(session_factory, source_id):
    async with session_factory() as db:
        source = (await db.execute(
            select(CalendarSyncSource).where(CalendarSyncSource.id == source_id))).scalar_one()
        runs = (await db.execute(
            select(CalendarSyncRun).where(CalendarSyncRun.source_id == source_id))).scalars().all()
    return source, runs


def _scheduler(session_factory, fetcher, recorder=None):
    return CalendarSyncScheduler(session_factory, fetcher, CalendarImporter(session_factory),
                                 recorder)


@pytest.mark.asyncio
async def test_overdue_source_synced(session_factory):
    source = await _add_source(session_factory, last_synced_at=NOW - timedelta(minutes=90),
                               last_error="old failure")
    result = await _scheduler(session_factory, FakeFetcher()).run_once(now=NOW)

    assert result["processed"] == 1
    assert result["results"][0] == {"source_id": str(source.id), "status": "success",
                                    "events_processed": 2, "message": None}

    reloaded, runs = await _reload(session_factory, source.id)
    assert as_utc(reloaded.last_synced_at) == NOW
    assert reloaded.last_error is None
    (run,) = runs
    assert run.status == "success"
    assert run.events_processed == 2
    assert as_utc(run.started_at) == NOW

    async with session_factory() as db:
        items = (await db.execute(select(ScheduleItem))).scalars().all()
    assert {i.external_uid for i in items} == {"gig-1", "gig-2"}
    assert all(i.source_id == source.id for i in items)


@pytest.mark.asyncio
async def test_failed_fetch_keeps_source_due(session_factory):
    last = NOW - timedelta(minutes=90)
    source = await _add_source(session_factory, last_synced_at=last)
    scheduler = _scheduler(session_factory, FakeFetcher(fail=True))
    result = await scheduler.run_once(now=NOW)

    assert result["results"][0]["status"] == "failed"
    reloaded, runs = await _reload(session_factory, source.id)
    assert as_utc(reloaded.last_synced_at) == last
    assert reloaded.last_error == "Failed to fetch calendar feed (500)"
    (run,) = runs
    assert run.status == "failed"
    assert run.events_processed == 0

    # still due on the next pass
    assert (await scheduler.run_once(now=NOW + timedelta(minutes=1)))["processed"] == 1


@pytest.mark.asyncio
async def test_unparseable_feed_records_failed_run(session_factory):
    source = await _add_source(session_factory)
    await _scheduler(session_factory, FakeFetcher(payload="not a calendar")).run_once(now=NOW)

    reloaded, (run,) = await _reload(session_factory, source.id)
    assert run.status == "failed"
    assert reloaded.last_synced_at is None
    assert reloaded.last_error


@pytest.mark.asyncio
async def test_paused_and_not_due_sources_skipped(session_factory):
    await _add_source(session_factory, url="https://cal.example.com/paused.ics",
                      status="paused")
    await _add_source(session_factory, url="https://cal.example.com/recent.ics",
                      last_synced_at=NOW - timedelta(minutes=30))
    fetcher = FakeFetcher()
    result = await _scheduler(session_factory, fetcher).run_once(now=NOW)

    assert result == {"processed": 0, "results": []}
    assert fetcher.urls == []


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_pass(session_factory):
    class FlakyFetcher(FakeFetcher):
        async def fetch(self, url):
            self.urls.append(url)
            if "bad" in url:
                raise FeedFetchError("Failed to fetch calendar feed (404)")
            return self.payload

    await _add_source(session_factory, url="https://cal.example.com/bad.ics")
    await _add_source(session_factory, url="https://cal.example.com/good.ics")
    result = await _scheduler(session_factory, FlakyFetcher()).run_once(now=NOW)

    assert result["processed"] == 2
    assert sorted(r["status"] for r in result["results"]) == ["failed", "success"]


@pytest.mark.asyncio
async def test_manual_sync_ignores_due_state(session_factory):
    source = await _add_source(session_factory, last_synced_at=NOW - timedelta(minutes=1))
    outcome = await _scheduler(session_factory, FakeFetcher()).sync_source(source, now=NOW)
    assert outcome["status"] == "success"
    reloaded, runs = await _reload(session_factory, source.id)
    assert as_utc(reloaded.last_synced_at) == NOW
    assert len(runs) == 1


class SuccessRecordFails(RunRecorder):
    async def record(self, db, source_id, status, *args, **kwargs):
        if CalendarRunStatus(status) == CalendarRunStatus.SUCCESS:
            raise RuntimeError("run table unavailable")
        return await super().record(db, source_id, status, *args, **kwargs)


async def _items(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(ScheduleItem))).scalars().all()


@pytest.mark.asyncio
async def test_import_rolls_back_when_run_cannot_be_recorded(session_factory):
    source = await _add_source(session_factory)
    outcome = await _scheduler(session_factory, FakeFetcher(),
                               SuccessRecordFails()).sync_source(source, now=NOW)

    assert outcome["status"] == "failed"
    assert outcome["events_processed"] == 0
    assert "run table unavailable" in outcome["message"]
    assert await _items(session_factory) == []
    reloaded, (run,) = await _reload(session_factory, source.id)
    assert run.status == "failed"
    assert reloaded.last_synced_at is None


@pytest.mark.asyncio
async def test_unrecordable_attempt_leaves_source_due(session_factory):
    class BrokenRecorder(RunRecorder):
        async def record(self, *args, **kwargs):
            raise RuntimeError("run table unavailable")

    source = await _add_source(session_factory)
    scheduler = _scheduler(session_factory, FakeFetcher(), BrokenRecorder())
    outcome = await scheduler.sync_source(source, now=NOW)

    assert outcome["status"] == "failed"
    assert await _items(session_factory) == []
    reloaded, runs = await _reload(session_factory, source.id)
    assert runs == []
    assert reloaded.last_synced_at is None
