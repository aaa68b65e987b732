"""Health check and metrics endpoints."""

import redis as redis_lib
from fastapi import APIRouter, Response
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from ticketflow.config import settings
from ticketflow.database import get_engine
from ticketflow.schemas.common import HealthResponse

router = APIRouter(tags=["health"])

# Prometheus metrics
WEBHOOK_NOTIFICATIONS = Counter("mail_webhook_notifications_total", "Inbound mail notifications", ["outcome"])
AUTOMATION_RUNS = Counter("automation_runs_total", "Batch automation invocations", ["outcome"])
OUTBOUND_MESSAGES = Counter("outbound_messages_total", "Outbound emails and alerts", ["kind", "outcome"])
ERRORS = Counter("errors_total", "Total errors", ["type"])


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    db_status = "ok"
    redis_status = "ok"

    # Check DB
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    # Check Redis
    try:
        r = redis_lib.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
    except Exception:
        redis_status = "error"

    overall = "healthy" if db_status == "ok" and redis_status == "ok" else "degraded"
    return HealthResponse(status=overall, db=db_status, redis=redis_status)


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
