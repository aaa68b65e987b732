"""Batch automation entry point, called by an external scheduler."""

import json

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ticketflow.api.health import AUTOMATION_RUNS, ERRORS
from ticketflow.config import AutomationConfig, settings
from ticketflow.database import get_db
from ticketflow.errors import ConfigurationError
from ticketflow.middleware.auth import is_automation_caller, security
from ticketflow.schemas.automation import AutomationRunRequest
from ticketflow.schemas.common import ErrorResponse
from ticketflow.workers.automation import run_automation

logger = structlog.get_logger()
router = APIRouter(prefix="/automation", tags=["automation"])

_TRUTHY = {"1", "true", "yes", "on"}


def _error(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, details=details).model_dump())


async def _read_body(request: Request) -> AutomationRunRequest:
    """Body is optional; a missing or malformed one means defaults."""
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        data = {}
    try:
        return AutomationRunRequest.model_validate(data if isinstance(data, dict) else {})
    except ValidationError:
        logger.warning("automation_body_ignored", body=raw[:200].decode(errors="replace"))
        return AutomationRunRequest()


@router.post("/run")
async def run(
    request: Request,
    x_automation_secret: str | None = Header(None),
    x_run_directory_sync: str | None = Header(None),
    run_directory_sync: str | None = Query(None),
    credentials: HTTPAuthorizationCredentials | None = Security(security),
    db: Session = Depends(get_db),
):
    """Run one pass of SLA scan, escalation seed/advance and auto-close."""
    try:
        config = AutomationConfig.from_settings(settings)
    except ConfigurationError as e:
        AUTOMATION_RUNS.labels(outcome="misconfigured").inc()
        logger.error("automation_misconfigured", missing=e.missing)
        return _error(500, "Server misconfigured", e.reason)

    if not is_automation_caller(x_automation_secret, credentials):
        AUTOMATION_RUNS.labels(outcome="unauthorized").inc()
        return _error(401, "Unauthorized")

    body = await _read_body(request)
    sync_requested = (
        body.run_directory_sync
        or (x_run_directory_sync or "").lower() in _TRUTHY
        or (run_directory_sync or "").lower() in _TRUTHY
    )

    try:
        result = await run_in_threadpool(run_automation, db, config, body.limit, sync_requested)
    except Exception as e:
        AUTOMATION_RUNS.labels(outcome="error").inc()
        ERRORS.labels(type="automation").inc()
        logger.error("automation_run_failed", error=f"{type(e).__name__}: {e}")
        return _error(500, "Internal error", str(e))

    AUTOMATION_RUNS.labels(outcome="ok").inc()
    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))
