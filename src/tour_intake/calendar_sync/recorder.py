"""Run recorder: exactly one calendar_sync_runs row per attempt, whatever the outcome."""
from __future__ import annotations
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tour_intake.common.enums import CalendarRunStatus
from tour_intake.common.models import CalendarSyncRun, CalendarSyncSource
from tour_intake.common.timeutil import utcnow
import structlog

logger = structlog.get_logger()


class RunRecorder:
    async def record(
        self,
        db: AsyncSession,
        source_id,
        status: CalendarRunStatus | str,
        message: str | None,
        events_processed: int,
        started_at: datetime,
        finished_at: datetime | None = None,
    ) -> CalendarSyncRun:
        """Append the run; advance last_synced_at only on success."""
        status = CalendarRunStatus(status)
        run = CalendarSyncRun(
            source_id=source_id,
            status=status.value,
            message=message,
            events_processed=max(events_processed, 0),
            started_at=started_at,
            finished_at=finished_at or utcnow(),
        )
        db.add(run)

        values: dict = {"last_error": message}
        if status == CalendarRunStatus.SUCCESS:
            values["last_synced_at"] = started_at
        await db.execute(
            update(CalendarSyncSource)
            .where(CalendarSyncSource.id == source_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.flush()
        logger.info("calendar_run_recorded", source_id=str(source_id), status=status.value,
                    events_processed=run.events_processed)
        return run
