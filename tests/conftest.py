"""Shared pytest fixtures: SQLite (aiosqlite) database with UUID/JSONB adapted."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import types
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tour_intake.settings import Settings


class SQLiteUUID(types.TypeDecorator):
    """SQLite-compatible UUID type."""
    impl = types.String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if isinstance(value, uuid.UUID):
                return value.hex
            return str(value).replace("-", "")
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return None


def _sqlite_compat():
    """PostgreSQL → SQLite column type adaptation."""
    from tour_intake.common.models import Base
    from sqlalchemy import Uuid
    from sqlalchemy.dialects.postgresql import JSONB

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = types.JSON()
            elif isinstance(column.type, Uuid):
                column.type = SQLiteUUID()


@pytest_asyncio.fixture
async def engine(tmp_path):
    _sqlite_compat()
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'intake.db'}", echo=False)
    from tour_intake.common.models import Base
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        app_env="test",
        database_url="sqlite+aiosqlite://",
        worker_id="worker-test",
        import_worker_secret="s3cret",
        import_worker_batch_size=3,
        import_worker_concurrency=1,
        claim_lease_seconds=300,
        max_job_retries=3,
        heartbeat_staleness_sec=30,
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@pytest.fixture
def make_job(session_factory):
    """Insert an import job directly; created_at spaced by ``offset`` seconds."""
    from tour_intake.common.models import ImportJob

    async def _make(status="pending", raw_text="Show at The Venue, July 4", offset=0,
                    claimed_by=None, claimed_at=None, errors=None, extracted=None,
                    raw_sources=None, progress=None):
        job = ImportJob(
            tenant_id="tenant-1",
            status=status,
            raw_sources=raw_sources if raw_sources is not None else [
                {"filename": "mail.eml", "mime_type": "message/rfc822", "raw_text": raw_text}],
            confidence_map={},
            errors=errors or [],
            extracted=extracted,
            progress=progress,
            claimed_by=claimed_by,
            claimed_at=claimed_at,
            created_at=utc(2026, 1, 1, 12, 0, 0) + timedelta(seconds=offset),
        )
        async with session_factory() as db:
            async with db.begin():
                db.add(job)
        return job

    return _make
