"""Escalation seeder - opens one workflow per resolution-breached ticket."""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from ticketflow.models.escalation import EscalationPolicy, TicketEscalation
from ticketflow.models.sla import TicketSla
from ticketflow.models.ticket import Ticket
from ticketflow.schemas.automation import EscalationSeedSummary
from ticketflow.schemas.events import EscalationCreated
from ticketflow.services.ledger import append_event
from ticketflow.workers.base import RowFailed, row_scope

logger = structlog.get_logger()


def match_escalation_policy(policies: list[EscalationPolicy], ticket: Ticket) -> uuid.UUID | None:
    """First match wins; ``policies`` must already be in ascending priority order."""
    for policy in policies:
        if policy.matches(ticket.ticket_type, ticket.assignment_group_id):
            return policy.id
    return None


def load_active_policies(session: Session) -> list[EscalationPolicy]:
    return list(
        session.execute(
            select(EscalationPolicy)
            .where(EscalationPolicy.is_active.is_(True))
            .order_by(EscalationPolicy.priority.asc())
        ).scalars().all()
    )


def _has_escalation(session: Session, ticket_id: uuid.UUID) -> bool:
    existing = session.execute(
        select(TicketEscalation.id).where(TicketEscalation.ticket_id == ticket_id).limit(1)
    ).first()
    return existing is not None


def _seed_one(
    session: Session, policies: list[EscalationPolicy], ticket_id: uuid.UUID, now: datetime
) -> tuple[uuid.UUID | None, bool]:
    # Re-check: an overlapping pass may have seeded it since the scan.
    if _has_escalation(session, ticket_id):
        return None, False
    ticket = session.get(Ticket, ticket_id)
    if ticket is None:
        return None, False

    policy_id = match_escalation_policy(policies, ticket)
    escalation = TicketEscalation(
        ticket_id=ticket_id,
        policy_id=policy_id,
        status="open",
        current_step=0,
        next_run_at=now,
    )
    session.add(escalation)
    session.flush()
    append_event(session, "escalation", escalation.id,
                 EscalationCreated(at=now, ticket_id=ticket_id, policy_id=policy_id))
    return policy_id, True


def seed_escalations(session: Session, limit: int, now: datetime) -> EscalationSeedSummary:
    # A ticket gets one workflow per breach flag. Breach flags never reset, so a
    # ticket whose workflow completed is not seeded again.
    has_workflow = exists().where(TicketEscalation.ticket_id == TicketSla.ticket_id)
    ticket_ids = session.execute(
        select(TicketSla.ticket_id)
        .where(TicketSla.resolution_breached.is_(True), ~has_workflow)
        .limit(limit)
    ).scalars().all()

    summary = EscalationSeedSummary(scanned=len(ticket_ids))
    policies = load_active_policies(session) if ticket_ids else []

    for ticket_id in ticket_ids:
        try:
            with row_scope(session, "escalation_seed", ticket_id=str(ticket_id)):
                policy_id, created = _seed_one(session, policies, ticket_id, now)
        except RowFailed:
            summary.failed += 1
            continue

        if created:
            summary.created += 1
            logger.info("escalation_created", ticket_id=str(ticket_id),
                        policy_id=str(policy_id) if policy_id else None)
        else:
            summary.skipped += 1

    return summary
