"""Worker / cron endpoint authorization: trusted scheduler header or bearer secret."""
from __future__ import annotations
import hmac
from typing import Mapping

from fastapi import Depends, Request

from tour_intake.common.dependencies import AppSettings
from tour_intake.common.exceptions import WorkerUnauthorizedError
from tour_intake.settings import Settings
import structlog

logger = structlog.get_logger()


def is_authorized(headers: Mapping[str, str], settings: Settings) -> bool:
    if settings.trust_scheduler_header and headers.get(settings.scheduler_header_name):
        return True
    secret = settings.import_worker_secret
    auth = headers.get("authorization") or ""
    if not secret or not auth.startswith("Bearer "):
        return False
    return hmac.compare_digest(auth[7:].strip().encode(), secret.encode())


async def require_worker_auth(request: Request, settings: AppSettings) -> None:
    if not is_authorized(request.headers, settings):
        logger.warning("worker_unauthorized", path=request.url.path,
                       has_auth="authorization" in request.headers,
                       has_scheduler_header=settings.scheduler_header_name in request.headers)
        raise WorkerUnauthorizedError("Unauthorized")


WorkerAuth = Depends(require_worker_auth)
