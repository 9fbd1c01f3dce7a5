"""Worker routes: heartbeat registration, pipeline health, batch trigger."""
from __future__ import annotations
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tour_intake.common.dependencies import AppSettings, SessionFactory, get_worker_loop
from tour_intake.common.schemas import HealthDTO, HeartbeatRequest
from tour_intake.worker.auth import WorkerAuth
from tour_intake.worker.heartbeat import HeartbeatRegistry
from tour_intake.worker.loop import WorkerLoop
import structlog

logger = structlog.get_logger()

router = APIRouter(prefix="/worker", tags=["Worker"])


@router.post("/health")
async def register_heartbeat(
    body: HeartbeatRequest, factory: SessionFactory, settings: AppSettings,
):
    """Record a heartbeat; 503 with the degraded health shape when the store is down."""
    registry = HeartbeatRegistry(factory, settings.heartbeat_staleness_sec)
    try:
        await registry.record(body.worker_id, body.worker_type)
    except Exception as e:
        logger.error("heartbeat_record_failed", worker_id=body.worker_id, error=str(e))
        return JSONResponse(status_code=503, content={
            "status": "degraded", "healthy": False, "active_workers": 0,
            "workers": [], "error": str(e)})
    health = await registry.get_health()
    return {"status": "ok", "active_workers": health["active_workers"]}


@router.get("/health", response_model=HealthDTO)
async def pipeline_health(factory: SessionFactory, settings: AppSettings):
    return await HeartbeatRegistry(factory, settings.heartbeat_staleness_sec).get_health()


@router.post("/process", dependencies=[WorkerAuth])
async def process_batch(loop: WorkerLoop = Depends(get_worker_loop)):
    """One claim + process pass, for external schedulers."""
    processed = await loop.run_once()
    return {"processed": processed}
