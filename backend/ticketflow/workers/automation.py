"""Batch entry point - one pass of every polling component, in dependency order."""

from datetime import datetime

import httpx
import structlog
from sqlalchemy.orm import Session

from ticketflow.adapters.directory import trigger_directory_sync
from ticketflow.config import AutomationConfig
from ticketflow.database import utcnow
from ticketflow.schemas.automation import AutomationRunResponse
from ticketflow.workers.auto_close import auto_close_pending, auto_close_resolved
from ticketflow.workers.escalation_advancer import advance_escalations
from ticketflow.workers.escalation_seeder import seed_escalations
from ticketflow.workers.sla_scanner import scan_sla_breaches

logger = structlog.get_logger()


def _run_directory_sync(config: AutomationConfig) -> dict:
    if not config.directory_sync_url:
        return {"ok": False, "error": "directory sync URL not configured"}
    try:
        return trigger_directory_sync(config.directory_sync_url, config.automation_secret)
    except httpx.HTTPError as e:
        logger.error("directory_sync_failed", error=str(e))
        return {"ok": False, "error": str(e)}


def run_automation(
    session: Session,
    config: AutomationConfig,
    limit: int,
    run_directory_sync: bool = False,
    now: datetime | None = None,
) -> AutomationRunResponse:
    """Run every component once, each bounded by ``limit`` rows.

    The seeder runs after the scanner so breaches flagged in this pass are
    seeded in the same pass.
    """
    now = now or utcnow()
    log = logger.bind(limit=limit, at=now.isoformat())

    sla_breaches = scan_sla_breaches(session, limit, now)
    escalation_seeds = seed_escalations(session, limit, now)
    escalation_advances = advance_escalations(session, limit, now, config)
    resolved = auto_close_resolved(session, limit, now, config)
    pending = auto_close_pending(session, limit, now, config, system_user_id=config.system_user_id)
    directory_sync = _run_directory_sync(config) if run_directory_sync else None

    log.info(
        "automation_run_completed",
        breaches=sla_breaches.first_response_breaches + sla_breaches.resolution_breaches,
        escalations_created=escalation_seeds.created,
        steps_advanced=escalation_advances.advanced,
        closed=resolved.closed + pending.closed,
    )

    return AutomationRunResponse(
        success=True,
        at=now,
        limit=limit,
        sla_breaches=sla_breaches,
        escalation_seeds=escalation_seeds,
        escalation_advances=escalation_advances,
        auto_close_resolved=resolved,
        auto_close_pending=pending,
        directory_sync=directory_sync,
    )
