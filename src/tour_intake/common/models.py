"""
SQLAlchemy ORM models (6 tables).

import_jobs / worker_heartbeats are the pipeline's shared mutable state;
calendar_sync_sources / calendar_sync_runs / schedule_items belong to the
calendar scheduler; state_transitions is the append-only audit trail.
"""
from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tour_intake.common.timeutil import utcnow


class Base(DeclarativeBase):
    pass


# ───────────────────────── Import pipeline ─────────────────────────

class ImportJob(Base):
    __tablename__ = "import_jobs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")

    # [{filename, mime_type, raw_text}]
    raw_sources: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    extracted: Mapped[dict | None] = mapped_column(JSONB)
    confidence_map: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    suggestions: Mapped[dict | None] = mapped_column(JSONB)  # below-threshold values, for review
    errors: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # {stage, sources_total, sources_completed, facts_extracted, last_updated, ...}
    progress: Mapped[dict | None] = mapped_column(JSONB)

    # Lease
    claimed_by: Mapped[str | None] = mapped_column(Text)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        Index("idx_import_jobs_status_created", "status", "created_at"),
        Index("idx_import_jobs_tenant", "tenant_id"),
        Index("idx_import_jobs_claimed_by", "claimed_by"),
    )


class WorkerHeartbeat(Base):
    __tablename__ = "worker_heartbeats"

    worker_id: Mapped[str] = mapped_column(Text, primary_key=True)
    worker_type: Mapped[str] = mapped_column(Text, nullable=False)
    hostname: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_heartbeats_last_seen", "last_seen_at"),)


class StateTransition(Base):
    __tablename__ = "state_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    from_status: Mapped[str | None] = mapped_column(Text)
    to_status: Mapped[str] = mapped_column(Text, nullable=False)
    trigger: Mapped[str | None] = mapped_column(Text)
    operator: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (Index("idx_transitions_entity", "entity_type", "entity_id"),)


# ───────────────────────── Calendar sync ─────────────────────────

class CalendarSyncSource(Base):
    __tablename__ = "calendar_sync_sources"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("sync_interval_minutes > 0", name="ck_sources_interval_positive"),
        Index("idx_sources_status", "status"),
        Index("idx_sources_tenant", "tenant_id"),
    )


class CalendarSyncRun(Base):
    __tablename__ = "calendar_sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("calendar_sync_sources.id"), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    events_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("events_processed >= 0", name="ck_runs_events_non_negative"),
        Index("idx_runs_source_started", "source_id", "started_at"),
    )


class ScheduleItem(Base):
    """Local event record produced by a calendar feed import."""
    __tablename__ = "schedule_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("calendar_sync_sources.id"))
    external_uid: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_uid", name="uq_schedule_items_tenant_uid"),
        Index("idx_schedule_items_starts", "tenant_id", "starts_at"),
    )
