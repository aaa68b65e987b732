"""Auto-close engine.

Two sweeps, each idempotent:

* resolved -> closed once ``resolved_at`` is older than the cool-down, followed
  by a one-time satisfaction survey email;
* pending -> closed once the ticket has been idle for the same window and the
  requester has not replied since the cutoff, followed by a system comment and
  a one-time notice email.

Closing is authoritative: email is best-effort and never undoes a close.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from ticketflow.adapters.email import EmailResult, Failed, Sent, Skipped, send_email
from ticketflow.api.health import OUTBOUND_MESSAGES
from ticketflow.config import AutomationConfig
from ticketflow.models.sla import TicketSla
from ticketflow.models.ticket import Ticket, TicketComment
from ticketflow.schemas.automation import AutoCloseSummary
from ticketflow.schemas.events import AutoCloseEmailSent, SatisfactionEmailSent, TicketStatusChanged
from ticketflow.services.ledger import append_event, has_event
from ticketflow.services.notifications import (
    auto_close_comment, format_auto_close_email, format_satisfaction_email, resolve_requester_contact,
)
from ticketflow.workers.base import RowFailed, row_scope, run_async

logger = structlog.get_logger()


def close_ticket(session: Session, ticket_id: uuid.UUID, expected_status: str, now: datetime) -> bool:
    """Guarded status change. False means someone else already moved the ticket."""
    result = session.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == expected_status)
        .values(status="closed", updated_at=now)
    )
    return bool(result.rowcount)


def _record_email(summary: AutoCloseSummary, result: EmailResult) -> None:
    OUTBOUND_MESSAGES.labels(kind="auto_close", outcome=type(result).__name__.lower()).inc()
    if isinstance(result, Sent):
        summary.emailed += 1
    elif isinstance(result, Failed):
        summary.email_failed += 1
    else:
        summary.email_skipped += 1


def _send_once(
    session: Session,
    config: AutomationConfig,
    ticket: Ticket,
    event_type: str,
    build,
    record,
) -> EmailResult:
    """Send one customer email unless the ledger says it already went out.

    ``build(name) -> (subject, html)`` renders it; ``record(to, result)`` returns
    the ledger payload written after a successful send.
    """
    if not config.email.enabled:
        return Skipped("provider_not_configured")
    if has_event(session, event_type, subject_id=ticket.id):
        return Skipped("already_sent")

    to_email, name = resolve_requester_contact(ticket)
    if not to_email:
        return Skipped("no_recipient")

    subject, html = build(name)
    result = run_async(send_email(config.email, to_email, subject, html))
    if isinstance(result, Sent):
        try:
            append_event(session, "ticket", ticket.id, record(to_email, result))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("email_ledger_write_failed", ticket_id=str(ticket.id), error=str(e))
            return Failed(str(e))
    return result


def auto_close_resolved(
    session: Session, limit: int, now: datetime, config: AutomationConfig
) -> AutoCloseSummary:
    cutoff = now - timedelta(days=config.auto_close_days)
    tickets = session.execute(
        select(Ticket)
        .where(Ticket.status == "resolved", Ticket.resolved_at.is_not(None), Ticket.resolved_at <= cutoff)
        .limit(limit)
    ).unique().scalars().all()

    summary = AutoCloseSummary(scanned=len(tickets), cutoff=cutoff)

    for ticket in tickets:
        ticket_id = ticket.id
        closed = False
        try:
            with row_scope(session, "auto_close_resolved", ticket_id=str(ticket_id)):
                closed = close_ticket(session, ticket_id, "resolved", now)
                if closed:
                    append_event(session, "ticket", ticket_id, TicketStatusChanged(
                        at=now, from_status="resolved", to_status="closed", reason="auto_close",
                    ))
        except RowFailed:
            summary.failed += 1
            continue

        if not closed:
            summary.skipped += 1
            continue
        summary.closed += 1
        logger.info("ticket_auto_closed", ticket_id=str(ticket_id), reason="auto_close")

        result = _send_once(
            session, config, ticket, "satisfaction_email_sent",
            build=lambda name, t=ticket: format_satisfaction_email(t, name, config.email.app_url),
            record=lambda to, res: SatisfactionEmailSent(at=now, to=to, provider_id=res.provider_id),
        )
        _record_email(summary, result)

    return summary


def _requester_replied_since(session: Session, ticket: Ticket, cutoff: datetime) -> bool:
    if ticket.requester_id is None:
        return False
    reply = session.execute(
        select(TicketComment.id)
        .where(
            TicketComment.ticket_id == ticket.id,
            TicketComment.author_id == ticket.requester_id,
            TicketComment.is_internal.is_(False),
            TicketComment.created_at > cutoff,
        )
        .limit(1)
    ).first()
    return reply is not None


def auto_close_pending(
    session: Session, limit: int, now: datetime, config: AutomationConfig, system_user_id: uuid.UUID | None = None
) -> AutoCloseSummary:
    days = config.auto_close_days
    cutoff = now - timedelta(days=days)
    # A resolution already recorded on the SLA row means the ticket is done, not idle.
    sla_resolved = exists().where(TicketSla.ticket_id == Ticket.id, TicketSla.resolved_at.is_not(None))
    tickets = session.execute(
        select(Ticket)
        .where(Ticket.status == "pending", Ticket.updated_at <= cutoff, ~sla_resolved)
        .limit(limit)
    ).unique().scalars().all()

    summary = AutoCloseSummary(scanned=len(tickets), cutoff=cutoff)

    for ticket in tickets:
        ticket_id = ticket.id
        closed = False
        try:
            with row_scope(session, "auto_close_pending", ticket_id=str(ticket_id)):
                replied = _requester_replied_since(session, ticket, cutoff)
                closed = not replied and close_ticket(session, ticket_id, "pending", now)
                if closed:
                    session.add(TicketComment(
                        ticket_id=ticket_id,
                        author_id=system_user_id,
                        body=auto_close_comment(days),
                        is_internal=False,
                        created_at=now,
                    ))
                    append_event(session, "ticket", ticket_id, TicketStatusChanged(
                        at=now, from_status="pending", to_status="closed",
                        reason="auto_close_no_response", days_inactive=days,
                    ))
        except RowFailed:
            summary.failed += 1
            continue

        if not closed:
            summary.skipped += 1
            continue
        summary.closed += 1
        logger.info("ticket_auto_closed", ticket_id=str(ticket_id), reason="auto_close_no_response")

        result = _send_once(
            session, config, ticket, "auto_close_email_sent",
            build=lambda name, t=ticket: format_auto_close_email(t, name, config.email.app_url, days),
            record=lambda to, res: AutoCloseEmailSent(
                at=now, to=to, provider_id=res.provider_id, reason=f"no_response_{days}_days",
            ),
        )
        _record_email(summary, result)

    return summary
