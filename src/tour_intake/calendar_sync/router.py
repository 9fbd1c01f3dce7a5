"""Calendar routes: cron entry point, source management, manual sync."""
from __future__ import annotations
from fastapi import APIRouter, Depends, Path, Query

from tour_intake.calendar_sync.scheduler import CalendarSyncScheduler
from tour_intake.calendar_sync.sources import SourceService
from tour_intake.common.dependencies import AppSettings, DBSession, get_calendar_scheduler
from tour_intake.common.schemas import (
    CalendarRunDTO, CalendarSourceCreate, CalendarSourceDTO, CalendarSourceUpdate,
    SyncResultDTO,
)
from tour_intake.worker.auth import WorkerAuth

router = APIRouter(tags=["Calendar"])


def _service(settings) -> SourceService:
    return SourceService(settings.calendar_min_interval_minutes,
                         settings.calendar_max_interval_minutes)


@router.get("/cron/calendar-sync", dependencies=[WorkerAuth])
async def cron_calendar_sync(
    scheduler: CalendarSyncScheduler = Depends(get_calendar_scheduler),
):
    """One scheduler pass over every due source."""
    return await scheduler.run_once()


@router.post("/calendar/sources", response_model=CalendarSourceDTO, status_code=201)
async def create_source(body: CalendarSourceCreate, db: DBSession, settings: AppSettings):
    source = await _service(settings).create_source(
        db, body.tenant_id, str(body.source_url),
        name=body.name, sync_interval_minutes=body.sync_interval_minutes)
    return CalendarSourceDTO.model_validate(source)


@router.patch("/calendar/sources/{source_id}", response_model=CalendarSourceDTO)
async def update_source(
    body: CalendarSourceUpdate, db: DBSession, settings: AppSettings,
    source_id: str = Path(...),
):
    source = await _service(settings).update_source(
        db, source_id, **body.model_dump(exclude_unset=True))
    return CalendarSourceDTO.model_validate(source)


@router.get("/calendar/sources/{source_id}/runs", response_model=list[CalendarRunDTO])
async def list_source_runs(
    db: DBSession, settings: AppSettings,
    source_id: str = Path(...), limit: int = Query(20, ge=1, le=100),
):
    runs = await _service(settings).list_runs(db, source_id, limit=limit)
    return [CalendarRunDTO.model_validate(r) for r in runs]


@router.post("/calendar/sources/{source_id}/sync", response_model=SyncResultDTO)
async def sync_source_now(
    db: DBSession, settings: AppSettings, source_id: str = Path(...),
    scheduler: CalendarSyncScheduler = Depends(get_calendar_scheduler),
):
    """Manual sync of one source, regardless of due-ness; recorded like a cron run."""
    source = await _service(settings).get_source(db, source_id)
    return await scheduler.sync_source(source)
