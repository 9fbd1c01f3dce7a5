"""Import job routes: ingestion, lookup, human-triggered retry."""
from __future__ import annotations
from fastapi import APIRouter, Body, Path

from tour_intake.common.dependencies import AppSettings, DBSession
from tour_intake.common.schemas import ImportJobCreate, ImportJobDTO, RetryRequest
from tour_intake.jobs.store import JobStore

router = APIRouter(prefix="/import-jobs", tags=["ImportJobs"])


def _store(settings) -> JobStore:
    return JobStore(max_retries=settings.max_job_retries)


@router.post("", response_model=ImportJobDTO, status_code=201)
async def create_import_job(body: ImportJobCreate, db: DBSession, settings: AppSettings):
    job = await _store(settings).create_job(
        db, body.tenant_id, [s.model_dump() for s in body.raw_sources])
    return ImportJobDTO.model_validate(job)


@router.get("/{job_id}", response_model=ImportJobDTO)
async def get_import_job(db: DBSession, settings: AppSettings, job_id: str = Path(...)):
    job = await _store(settings).get_job(db, job_id)
    return ImportJobDTO.model_validate(job)


@router.post("/{job_id}/retry", response_model=ImportJobDTO)
async def retry_import_job(
    db: DBSession, settings: AppSettings,
    job_id: str = Path(...), body: RetryRequest | None = Body(default=None),
):
    operator = body.operator if body else "api"
    job = await _store(settings).retry_job(db, job_id, operator)
    return ImportJobDTO.model_validate(job)
