"""Calendar source management: create / update / lookup / run history."""
from __future__ import annotations
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tour_intake.common.enums import CalendarSourceStatus
from tour_intake.common.exceptions import SourceIntervalInvalidError, SourceNotFoundError
from tour_intake.common.models import CalendarSyncRun, CalendarSyncSource
import structlog

logger = structlog.get_logger()

DEFAULT_INTERVAL_MINUTES = 60


class SourceService:
    def __init__(self, min_interval: int = 15, max_interval: int = 1440) -> None:
        self._min = min_interval
        self._max = max_interval

    def validate_interval(self, minutes: int) -> int:
        if not self._min <= minutes <= self._max:
            raise SourceIntervalInvalidError(
                f"sync_interval_minutes must be between {self._min} and {self._max}")
        return minutes

    async def create_source(
        self, db: AsyncSession, tenant_id: str, source_url: str,
        name: str | None = None, sync_interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
    ) -> CalendarSyncSource:
        source = CalendarSyncSource(
            tenant_id=tenant_id,
            name=name,
            source_url=source_url,
            sync_interval_minutes=self.validate_interval(sync_interval_minutes),
            status=CalendarSourceStatus.ACTIVE.value,
        )
        db.add(source)
        await db.flush()
        logger.info("calendar_source_created", source_id=str(source.id), tenant_id=tenant_id)
        return source

    async def get_source(self, db: AsyncSession, source_id: str | UUID) -> CalendarSyncSource:
        try:
            sid = source_id if isinstance(source_id, UUID) else UUID(str(source_id))
        except ValueError:
            raise SourceNotFoundError(f"Calendar source {source_id} not found")
        source = (await db.execute(
            select(CalendarSyncSource).where(CalendarSyncSource.id == sid)
        )).scalar_one_or_none()
        if source is None:
            raise SourceNotFoundError(f"Calendar source {sid} not found")
        return source

    async def update_source(
        self, db: AsyncSession, source_id: str | UUID, **changes,
    ) -> CalendarSyncSource:
        source = await self.get_source(db, source_id)
        if changes.get("sync_interval_minutes") is not None:
            source.sync_interval_minutes = self.validate_interval(changes["sync_interval_minutes"])
        if changes.get("status") is not None:
            source.status = CalendarSourceStatus(changes["status"]).value
        if changes.get("source_url") is not None:
            source.source_url = str(changes["source_url"])
        if changes.get("name") is not None:
            source.name = changes["name"]
        await db.flush()
        logger.info("calendar_source_updated", source_id=str(source.id),
                    fields=sorted(k for k, v in changes.items() if v is not None))
        return source

    async def list_runs(
        self, db: AsyncSession, source_id: str | UUID, limit: int = 20,
    ) -> list[CalendarSyncRun]:
        source = await self.get_source(db, source_id)
        rows = (await db.execute(
            select(CalendarSyncRun)
            .where(CalendarSyncRun.source_id == source.id)
            .order_by(CalendarSyncRun.started_at.desc(), CalendarSyncRun.finished_at.desc())
            .limit(limit)
        )).scalars().all()
        return list(rows)
