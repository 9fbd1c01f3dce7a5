"""Core DTOs shared by the routers, the worker and the calendar sync."""
from __future__ import annotations
from datetime import datetime
from typing import Any
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator
from tour_intake.common.enums import CalendarSourceStatus

class RawSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    filename: str = Field(default="", alias="fileName")
    mime_type: str = Field(default="text/plain", alias="mimeType")
    raw_text: str = Field(default="", alias="rawText")
    page_count: int | None = Field(default=None, alias="pageCount")
    is_low_text: bool = Field(default=False, alias="isLowText")

class CandidateFact(BaseModel):
    """One extracted field value plus its confidence; untrusted until resolved."""
    field: str; value: Any = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str | None = None

# ───────────────────────── Import jobs ─────────────────────────

class ImportJobCreate(BaseModel):
    tenant_id: str = Field(min_length=1)
    raw_sources: list[RawSource] = Field(min_length=1)

    @field_validator("raw_sources")
    @classmethod
    def _sources_have_text(cls, v: list[RawSource]) -> list[RawSource]:
        for idx, source in enumerate(v):
            if not source.raw_text.strip():
                raise ValueError(f"raw_sources[{idx}] has no raw_text")
        return v

class ImportJobDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID; tenant_id: str; status: str
    raw_sources: list[dict] = Field(default_factory=list)
    extracted: dict | None = None; confidence_map: dict = Field(default_factory=dict)
    suggestions: dict | None = None; errors: list[str] = Field(default_factory=list)
    progress: dict | None = None
    claimed_by: str | None = None; claimed_at: datetime | None = None
    created_at: datetime | None = None; updated_at: datetime | None = None

class RetryRequest(BaseModel):
    operator: str = "api"

# ───────────────────────── Worker ─────────────────────────

class HeartbeatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    worker_id: str = Field(alias="workerId", min_length=1)
    worker_type: str = Field(default="semantic", alias="type")

class WorkerStatusDTO(BaseModel):
    worker_id: str; worker_type: str; last_seen_at: datetime
    seconds_since_seen: float

class HealthDTO(BaseModel):
    healthy: bool; active_workers: int = 0
    workers: list[WorkerStatusDTO] = Field(default_factory=list)
    error: str | None = None

# ───────────────────────── Calendar ─────────────────────────

class CalendarSourceCreate(BaseModel):
    tenant_id: str = Field(min_length=1); source_url: HttpUrl
    name: str | None = None; sync_interval_minutes: int = 60

class CalendarSourceUpdate(BaseModel):
    source_url: HttpUrl | None = None; name: str | None = None
    sync_interval_minutes: int | None = None; status: CalendarSourceStatus | None = None

class CalendarSourceDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID; tenant_id: str; name: str | None = None; source_url: str
    sync_interval_minutes: int; status: str
    last_synced_at: datetime | None = None; last_error: str | None = None

class CalendarRunDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID; source_id: UUID; status: str; message: str | None = None
    events_processed: int = 0; started_at: datetime; finished_at: datetime

class SyncResultDTO(BaseModel):
    source_id: str; status: str; events_processed: int = 0
    message: str | None = None
