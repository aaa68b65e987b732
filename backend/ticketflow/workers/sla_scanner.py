"""SLA breach scanner - flags expired first-response and resolution timers."""

from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from ticketflow.models.sla import TicketSla
from ticketflow.schemas.automation import SlaScanSummary
from ticketflow.schemas.events import FirstResponseBreached, ResolutionBreached
from ticketflow.services.ledger import append_event
from ticketflow.workers.base import RowFailed, row_scope

logger = structlog.get_logger()


def _first_response_due(sla: TicketSla, now: datetime) -> bool:
    return (
        not sla.first_response_breached
        and sla.first_response_at is None
        and sla.first_response_due_at is not None
        and sla.first_response_due_at <= now
    )


def _resolution_due(sla: TicketSla, now: datetime) -> bool:
    return (
        not sla.resolution_breached
        and sla.resolved_at is None
        and sla.resolution_due_at is not None
        and sla.resolution_due_at <= now
    )


def scan_sla_breaches(session: Session, limit: int, now: datetime) -> SlaScanSummary:
    rows = session.execute(
        select(TicketSla)
        .where(
            or_(
                and_(
                    TicketSla.first_response_breached.is_(False),
                    TicketSla.first_response_due_at <= now,
                    TicketSla.first_response_at.is_(None),
                ),
                and_(
                    TicketSla.resolution_breached.is_(False),
                    TicketSla.resolution_due_at <= now,
                    TicketSla.resolved_at.is_(None),
                ),
            )
        )
        .limit(limit)
    ).scalars().all()

    summary = SlaScanSummary(scanned=len(rows))

    for sla in rows:
        ticket_id = sla.ticket_id
        first_due_at = sla.first_response_due_at if _first_response_due(sla, now) else None
        resolution_due_at = sla.resolution_due_at if _resolution_due(sla, now) else None
        first = resolution = False
        try:
            with row_scope(session, "sla_scan", ticket_id=str(ticket_id)):
                # Both timers are checked independently; one pass may flag both.
                # The flag predicate in each UPDATE keeps an overlapping pass from
                # writing a second event.
                if first_due_at is not None:
                    result = session.execute(
                        update(TicketSla)
                        .where(TicketSla.ticket_id == ticket_id, TicketSla.first_response_breached.is_(False))
                        .values(first_response_breached=True, first_response_breached_at=now)
                    )
                    if result.rowcount:
                        append_event(session, "ticket", ticket_id,
                                     FirstResponseBreached(at=now, due_at=first_due_at))
                        first = True

                if resolution_due_at is not None:
                    result = session.execute(
                        update(TicketSla)
                        .where(TicketSla.ticket_id == ticket_id, TicketSla.resolution_breached.is_(False))
                        .values(resolution_breached=True, resolution_breached_at=now)
                    )
                    if result.rowcount:
                        append_event(session, "ticket", ticket_id,
                                     ResolutionBreached(at=now, due_at=resolution_due_at))
                        resolution = True
        except RowFailed:
            summary.failed += 1
            continue

        summary.first_response_breaches += int(first)
        summary.resolution_breaches += int(resolution)
        if first or resolution:
            logger.info("sla_breach_flagged", ticket_id=str(ticket_id),
                        first_response=first, resolution=resolution)

    return summary
