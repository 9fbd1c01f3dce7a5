"""FastAPI dependency sentinels. The lifespan swaps them in via dependency_overrides."""
from __future__ import annotations
from typing import TYPE_CHECKING, Annotated, AsyncGenerator
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tour_intake.settings import Settings, settings as _settings

if TYPE_CHECKING:
    from tour_intake.calendar_sync.scheduler import CalendarSyncScheduler
    from tour_intake.worker.loop import WorkerLoop


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Placeholder, replaced by main.lifespan."""
    raise RuntimeError("Database session not initialized. Check lifespan setup.")
    yield  # type: ignore[misc]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    raise RuntimeError("Session factory not initialized. Check lifespan setup.")


def get_worker_loop() -> "WorkerLoop":
    raise RuntimeError("Worker loop not initialized. Check lifespan setup.")


def get_calendar_scheduler() -> "CalendarSyncScheduler":
    raise RuntimeError("Calendar scheduler not initialized. Check lifespan setup.")


def get_settings() -> Settings:
    return _settings


DBSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AppSettings = Annotated[Settings, Depends(get_settings)]
