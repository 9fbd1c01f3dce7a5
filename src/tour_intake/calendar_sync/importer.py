"""
Calendar diff/import engine.

Idempotency key: (tenant_id, feed UID). A content fingerprint decides
whether an existing row really changed, so ``count`` only reflects genuine
creates and updates.
"""
from __future__ import annotations
import hashlib
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tour_intake.calendar_sync.ical import FeedEvent, parse_feed
from tour_intake.common.exceptions import FeedParseError
from tour_intake.common.models import ScheduleItem
import structlog

logger = structlog.get_logger()

_LOOKUP_CHUNK = 500


def event_fingerprint(event: FeedEvent) -> str:
    raw = "|".join([
        event.summary,
        event.description or "",
        event.location or "",
        event.starts_at.isoformat(),
        event.ends_at.isoformat(),
    ])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()  # nosec B324


def _result(success: bool, created=0, updated=0, unchanged=0, error=None) -> dict:
    return {
        "success": success,
        "count": created + updated,
        "created": created,
        "updated": updated,
        "unchanged": unchanged,
        "error": error,
    }


class CalendarImporter:
    def __init__(self, session_factory) -> None:
        self._factory = session_factory

    async def import_feed(
        self, tenant_id: str, payload: str | bytes, source_id: UUID | None = None,
    ) -> dict:
        try:
            events = parse_feed(payload)
        except FeedParseError as e:
            logger.warning("calendar_feed_unparseable", tenant_id=tenant_id,
                           source_id=str(source_id) if source_id else None)
            return _result(False, error=e.message)

        try:
            async with self._factory() as db:
                async with db.begin():
                    created, updated, unchanged = await self.apply(
                        db, tenant_id, events, source_id)
        except Exception as e:
            logger.exception("calendar_import_failed", tenant_id=tenant_id)
            return _result(False, error=f"Calendar import failed: {e}")

        logger.info("calendar_feed_imported", tenant_id=tenant_id,
                    source_id=str(source_id) if source_id else None,
                    events=len(events), created=created, updated=updated,
                    unchanged=unchanged)
        return _result(True, created, updated, unchanged)

    async def apply(
        self, db: AsyncSession, tenant_id: str, events: list[FeedEvent],
        source_id: UUID | None = None,
    ) -> tuple[int, int, int]:
        uids = [e.uid for e in events]
        existing: dict[str, ScheduleItem] = {}
        for i in range(0, len(uids), _LOOKUP_CHUNK):
            rows = (await db.execute(
                select(ScheduleItem).where(
                    ScheduleItem.tenant_id == tenant_id,
                    ScheduleItem.external_uid.in_(uids[i:i + _LOOKUP_CHUNK]),
                )
            )).scalars().all()
            existing.update({r.external_uid: r for r in rows})

        created = updated = unchanged = 0
        for event in events:
            fp = event_fingerprint(event)
            item = existing.get(event.uid)
            if item is None:
                db.add(ScheduleItem(
                    tenant_id=tenant_id,
                    source_id=source_id,
                    external_uid=event.uid,
                    title=event.summary,
                    starts_at=event.starts_at,
                    ends_at=event.ends_at,
                    location=event.location,
                    notes=event.description,
                    fingerprint=fp,
                ))
                created += 1
            elif item.fingerprint != fp:
                item.title = event.summary
                item.starts_at = event.starts_at
                item.ends_at = event.ends_at
                item.location = event.location
                item.notes = event.description
                item.fingerprint = fp
                if source_id is not None:
                    item.source_id = source_id
                updated += 1
            else:
                unchanged += 1
        await db.flush()
        return created, updated, unchanged
