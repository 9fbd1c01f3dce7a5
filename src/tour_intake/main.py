"""
Tour Intake service entry point.

Run: uvicorn tour_intake.main:create_app --factory --port 8000
Needs: PostgreSQL (alembic upgrade head)
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tour_intake.settings import Settings, settings

if TYPE_CHECKING:
    from tour_intake.calendar_sync.fetcher import FeedFetcher
    from tour_intake.calendar_sync.scheduler import CalendarSyncScheduler
    from tour_intake.extraction.base import ExtractionAdapter
    from tour_intake.worker.heartbeat import HeartbeatRegistry
    from tour_intake.worker.loop import WorkerLoop

logger = structlog.get_logger()


def configure_logging(level: str | None = None) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.app_env == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}
            .get((level or settings.log_level).upper(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class Components:
    worker_loop: "WorkerLoop"
    heartbeat: "HeartbeatRegistry"
    scheduler: "CalendarSyncScheduler"
    adapter: "ExtractionAdapter"
    fetcher: "FeedFetcher"

    async def aclose(self) -> None:
        await self.adapter.aclose()
        await self.fetcher.aclose()


def build_components(cfg: Settings, session_factory) -> Components:
    """Wire the pipeline and calendar components around one session factory."""
    from tour_intake.calendar_sync.fetcher import FeedFetcher
    from tour_intake.calendar_sync.importer import CalendarImporter
    from tour_intake.calendar_sync.scheduler import CalendarSyncScheduler
    from tour_intake.extraction.base import NullExtractionAdapter
    from tour_intake.extraction.circuit_breaker import CircuitBreaker
    from tour_intake.extraction.http_adapter import HttpExtractionAdapter
    from tour_intake.jobs.claimer import JobClaimer
    from tour_intake.jobs.store import JobStore
    from tour_intake.resolver.confidence import ConfidenceResolver
    from tour_intake.worker.heartbeat import HeartbeatRegistry
    from tour_intake.worker.loop import WorkerLoop
    from tour_intake.worker.processor import JobProcessor

    if cfg.extraction_url:
        adapter = HttpExtractionAdapter(
            url=cfg.extraction_url,
            api_key=cfg.extraction_api_key,
            timeout=cfg.extraction_timeout_seconds,
            circuit_breaker=CircuitBreaker(
                failure_threshold=cfg.extraction_failure_threshold,
                open_timeout=cfg.extraction_open_timeout_seconds,
                window_seconds=cfg.extraction_outage_window_seconds,
            ),
        )
    else:
        logger.warning("extraction_not_configured")
        adapter = NullExtractionAdapter()

    processor = JobProcessor(
        session_factory=session_factory,
        store=JobStore(max_retries=cfg.max_job_retries),
        adapter=adapter,
        resolver=ConfidenceResolver(
            threshold=cfg.confidence_acceptance_threshold,
            required_fields=cfg.required_field_list,
        ),
        worker_id=cfg.worker_id,
        low_text_min_words=cfg.low_text_min_words,
        low_text_min_words_per_page=cfg.low_text_min_words_per_page,
    )
    worker_loop = WorkerLoop(
        session_factory=session_factory,
        claimer=JobClaimer(lease_seconds=cfg.claim_lease_seconds),
        processor=processor,
        worker_id=cfg.worker_id,
        batch_size=cfg.import_worker_batch_size,
        concurrency=cfg.import_worker_concurrency,
        poll_interval=cfg.import_worker_poll_interval_sec,
        max_backoff=cfg.import_worker_max_backoff_sec,
    )
    fetcher = FeedFetcher(timeout=cfg.calendar_fetch_timeout_seconds)
    scheduler = CalendarSyncScheduler(
        session_factory=session_factory,
        fetcher=fetcher,
        importer=CalendarImporter(session_factory),
    )
    return Components(
        worker_loop=worker_loop,
        heartbeat=HeartbeatRegistry(session_factory, cfg.heartbeat_staleness_sec),
        scheduler=scheduler,
        adapter=adapter,
        fetcher=fetcher,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    log = structlog.get_logger()
    log.info("startup_begin", env=settings.app_env, worker=settings.worker_id)

    from tour_intake.common.database import build_session_factory
    from tour_intake.common.dependencies import (
        get_calendar_scheduler, get_db, get_session_factory, get_worker_loop,
    )

    engine, session_factory = build_session_factory(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.services_ready = {"database": False}
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        app.state.services_ready["database"] = True
        log.info("database_connected")
    except Exception as e:
        log.error("database_connection_failed", error=str(e))

    components = build_components(settings, session_factory)
    app.state.components = components

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_worker_loop] = lambda: components.worker_loop
    app.dependency_overrides[get_calendar_scheduler] = lambda: components.scheduler
    log.info("startup_complete", services=app.state.services_ready)

    yield

    log.info("shutdown_begin")
    await components.aclose()
    await engine.dispose()
    log.info("shutdown_complete")


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.app_title,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.app_env == "development" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from tour_intake.common.middleware import register_error_handlers
    register_error_handlers(app)

    # ─── Liveness (always available) ───
    @app.get("/health")
    async def health():
        engine = getattr(app.state, "engine", None)
        ok = False
        if engine is not None:
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                ok = True
            except Exception as e:
                logger.warning("health_db_unreachable", error=str(e))
        return JSONResponse(
            status_code=200 if ok else 503,
            content={"status": "healthy" if ok else "degraded", "services": {"database": ok}},
        )

    # ─── Routers ───
    from tour_intake.calendar_sync.router import router as calendar_router
    from tour_intake.jobs.router import router as jobs_router
    from tour_intake.worker.router import router as worker_router

    app.include_router(worker_router)
    app.include_router(jobs_router)
    app.include_router(calendar_router)

    return app

