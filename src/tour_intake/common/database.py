"""Database engine / session factory construction."""
from __future__ import annotations
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from tour_intake.settings import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    kwargs: dict = {"echo": settings.sql_echo}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=settings.db_pool_size,
                      max_overflow=settings.db_max_overflow,
                      pool_pre_ping=True)
    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(
    settings: Settings,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = build_engine(settings)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
