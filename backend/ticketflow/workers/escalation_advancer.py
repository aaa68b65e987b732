"""Escalation step advancer.

Each open workflow whose ``next_run_at`` has passed moves at most one step
forward per pass:

    policy_id is NULL            -> completed
    no step current_step + 1     -> completed, current_step = current_step + 1
    step already executed        -> re-arm next_run_at only, no notification
    otherwise                    -> step_executed event, current_step + 1,
                                    next_run_at = now + delay, notify targets

The workflow update is guarded on the ``(status, current_step)`` it was read
with, so an overlapping pass that loses the race writes nothing. A step's
notification is attempted once, after the step commits, and its failure never
undoes the step.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ticketflow.adapters.email import EmailResult, Failed, Sent, send_email
from ticketflow.adapters.slack import post_slack_alert
from ticketflow.api.health import OUTBOUND_MESSAGES
from ticketflow.config import AutomationConfig
from ticketflow.models.directory import OperatorGroupMember, Profile
from ticketflow.models.escalation import EscalationStep, TicketEscalation
from ticketflow.models.ticket import Ticket
from ticketflow.schemas.automation import EscalationAdvanceSummary
from ticketflow.schemas.events import EscalationCompleted, EscalationNotificationSent, StepExecuted
from ticketflow.services.ledger import append_event, has_event
from ticketflow.services.notifications import format_escalation_email, format_escalation_slack
from ticketflow.workers.base import RowFailed, row_scope, run_async

logger = structlog.get_logger()


def _guarded(escalation_id: uuid.UUID, current_step: int):
    return update(TicketEscalation).where(
        TicketEscalation.id == escalation_id,
        TicketEscalation.status == "open",
        TicketEscalation.current_step == current_step,
    )


def _complete(session: Session, escalation_id: uuid.UUID, current_step: int, final_step: int,
              reason: str, now: datetime) -> bool:
    result = session.execute(
        _guarded(escalation_id, current_step).values(
            status="completed", current_step=final_step, next_run_at=None, updated_at=now,
        )
    )
    if not result.rowcount:
        return False
    append_event(session, "escalation", escalation_id,
                 EscalationCompleted(at=now, reason=reason, final_step=final_step))
    return True


def resolve_step_recipients(session: Session, step: EscalationStep) -> list[str]:
    """Email addresses for a step's notify user, or every active member of its group."""
    addresses: list[str] = []
    if step.notify_user_id:
        profile = session.get(Profile, step.notify_user_id)
        if profile and profile.email:
            addresses.append(profile.email)
    if step.notify_group_id:
        members = session.execute(
            select(Profile.email)
            .join(OperatorGroupMember, OperatorGroupMember.user_id == Profile.id)
            .where(OperatorGroupMember.group_id == step.notify_group_id, Profile.is_active.is_(True))
        ).scalars().all()
        addresses.extend(e for e in members if e)

    seen: set[str] = set()
    unique = []
    for address in addresses:
        key = address.strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(address.strip())
    return unique


def _notify_step(
    session: Session,
    config: AutomationConfig,
    escalation_id: uuid.UUID,
    ticket: Ticket,
    step: EscalationStep,
    now: datetime,
) -> EmailResult | None:
    """Best-effort delivery of one executed step. Returns None if nothing was attempted."""
    if has_event(session, "escalation_notification_sent", subject_id=escalation_id,
                 dedup_key=f"step:{step.step_order}"):
        return None

    if step.notify_channel == "in_app":
        # The step_executed event is the in-app record; nothing goes out.
        return None

    results: list[tuple[str, EmailResult]] = []
    if step.notify_channel == "slack":
        text, blocks = format_escalation_slack(ticket, step.step_order)
        results.append(("slack", run_async(post_slack_alert(config.slack_webhook_url, text, blocks))))
    else:
        subject, html = format_escalation_email(ticket, step.step_order, config.email.app_url)
        for address in resolve_step_recipients(session, step):
            results.append((address, run_async(send_email(config.email, address, subject, html))))

    if not results:
        return None
    for _, result in results:
        OUTBOUND_MESSAGES.labels(kind="escalation", outcome=type(result).__name__.lower()).inc()

    delivered = [target for target, result in results if isinstance(result, Sent)]
    if delivered:
        append_event(session, "escalation", escalation_id, EscalationNotificationSent(
            at=now, step_order=step.step_order, channel=step.notify_channel, recipients=delivered,
        ))
        session.commit()
    failures = [result for _, result in results if isinstance(result, Failed)]
    if failures:
        return failures[0]
    if delivered:
        return Sent()
    return results[0][1]


def _advance_one(
    session: Session, escalation_id: uuid.UUID, policy_id: uuid.UUID | None, current_step: int, now: datetime
) -> tuple[str | None, EscalationStep | None]:
    """Apply one transition. Returns the outcome and, when a step ran, that step."""
    if policy_id is None:
        if _complete(session, escalation_id, current_step, current_step, "no_policy", now):
            return "completed", None
        return None, None

    target_step = current_step + 1
    step = session.execute(
        select(EscalationStep).where(
            EscalationStep.policy_id == policy_id,
            EscalationStep.step_order == target_step,
        )
    ).scalar_one_or_none()

    if step is None:
        if _complete(session, escalation_id, current_step, target_step, "steps_exhausted", now):
            return "completed", None
        return None, None

    next_run_at = now + timedelta(minutes=step.delay_minutes or 0)

    if has_event(session, "step_executed", subject_id=escalation_id, dedup_key=f"step:{target_step}"):
        # Already notified for this step; only push the next run out.
        session.execute(
            update(TicketEscalation)
            .where(TicketEscalation.id == escalation_id)
            .values(next_run_at=next_run_at, updated_at=now)
        )
        return "rearmed", None

    result = session.execute(
        _guarded(escalation_id, current_step).values(
            current_step=target_step, next_run_at=next_run_at, updated_at=now,
        )
    )
    if not result.rowcount:
        return None, None
    append_event(session, "escalation", escalation_id, StepExecuted(
        at=now,
        step_order=step.step_order,
        delay_minutes=step.delay_minutes or 0,
        notify_user_id=step.notify_user_id,
        notify_group_id=step.notify_group_id,
        notify_channel=step.notify_channel,
    ))
    return "advanced", step


def advance_escalations(
    session: Session, limit: int, now: datetime, config: AutomationConfig
) -> EscalationAdvanceSummary:
    rows = session.execute(
        select(TicketEscalation)
        .where(
            TicketEscalation.status == "open",
            or_(TicketEscalation.next_run_at.is_(None), TicketEscalation.next_run_at <= now),
        )
        .limit(limit)
    ).scalars().all()

    summary = EscalationAdvanceSummary(scanned=len(rows))

    for escalation in rows:
        escalation_id = escalation.id
        ticket_id = escalation.ticket_id
        policy_id = escalation.policy_id
        current_step = escalation.current_step or 0

        try:
            with row_scope(session, "escalation_advance", escalation_id=str(escalation_id)):
                outcome, executed_step = _advance_one(session, escalation_id, policy_id, current_step, now)
        except RowFailed:
            summary.failed += 1
            continue

        if outcome == "completed":
            summary.completed += 1
            logger.info("escalation_completed", escalation_id=str(escalation_id))
        elif outcome == "rearmed":
            summary.rearmed += 1
        elif outcome == "advanced":
            summary.advanced += 1
            logger.info("escalation_step_executed", escalation_id=str(escalation_id),
                        step_order=executed_step.step_order, channel=executed_step.notify_channel)

            ticket = session.get(Ticket, ticket_id)
            if ticket is None:
                continue
            try:
                delivery = _notify_step(session, config, escalation_id, ticket, executed_step, now)
            except Exception as e:
                session.rollback()
                logger.error("escalation_notification_failed", escalation_id=str(escalation_id), error=str(e))
                summary.notify_failed += 1
                continue
            if isinstance(delivery, Sent):
                summary.notified += 1
            elif isinstance(delivery, Failed):
                summary.notify_failed += 1

    return summary
