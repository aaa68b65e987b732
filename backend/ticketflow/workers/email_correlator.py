"""Inbound email correlator worker.

One RQ job per Graph change notification:
1. Fetch the full message from the shared mailbox
2. Skip if an email_ingested event already carries its dedup key
3. Resolve the target ticket: ticket number (plus-address, subject, body),
   then a previously ingested message in the same conversation
4. Append a comment to that ticket, or open a new email ticket
5. Record email_ingested keyed by the dedup key, carrying the conversation id

Provider redelivery is the normal case. Step 2 makes a second delivery a
no-op. A delivery racing one still in flight loses on the unique
email_ingested dedup key at commit and is reported as a duplicate.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketflow.adapters.graph import GraphMailClient
from ticketflow.api.health import ERRORS
from ticketflow.config import MailIngestConfig, settings
from ticketflow.database import get_sync_session, utcnow
from ticketflow.errors import ConfigurationError
from ticketflow.models.ticket import Ticket, TicketComment
from ticketflow.schemas.events import EmailIngested, MailIngestFailed
from ticketflow.schemas.mail import GraphMessage, GraphNotification
from ticketflow.services.ledger import append_event, find_subject_by_thread, has_event
from ticketflow.services.mail_parsing import TicketNumberExtractor, format_inbound_text

logger = structlog.get_logger()

EMAIL_TICKET_CATEGORY = "Customer Support"
EMAIL_TICKET_TYPE = "customer_service"


def next_ticket_number(session: Session, now: datetime) -> str:
    """Next ``T-YYYY-NNNNNN`` for the year of ``now``."""
    prefix = f"T-{now.year}-"
    last = session.execute(
        select(Ticket.ticket_number)
        .where(Ticket.ticket_number.like(f"{prefix}%"))
        .order_by(Ticket.ticket_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    seq = 0
    if last:
        try:
            seq = int(last[len(prefix):])
        except ValueError:
            seq = 0
    return f"{prefix}{seq + 1:06d}"


def resolve_ticket(
    session: Session, extractor: TicketNumberExtractor, msg: GraphMessage
) -> Ticket | None:
    """Existing ticket this message belongs to, if any."""
    ticket_number = extractor.from_message(msg)
    if ticket_number:
        ticket = session.execute(
            select(Ticket).where(Ticket.ticket_number == ticket_number)
        ).unique().scalar_one_or_none()
        if ticket:
            return ticket

    if msg.conversation_id:
        subject_id = find_subject_by_thread(session, "email_ingested", msg.conversation_id)
        if subject_id:
            ticket = session.get(Ticket, uuid.UUID(subject_id))
            if ticket:
                return ticket

    return None


def _create_ticket(session: Session, config: MailIngestConfig, msg: GraphMessage, now: datetime) -> Ticket:
    ticket = Ticket(
        ticket_number=next_ticket_number(session, now),
        title=(msg.subject or "").strip() or "(no subject)",
        description=format_inbound_text(msg),
        status="new",
        priority="medium",
        category=EMAIL_TICKET_CATEGORY,
        ticket_type=EMAIL_TICKET_TYPE,
        channel="email",
        mailbox=config.shared_mailbox,
        requester_id=config.system_user_id,
        requester_email=msg.from_address,
        requester_name=msg.from_name,
        created_by=config.system_user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(ticket)
    session.flush()
    return ticket


def correlate_message(
    session: Session, config: MailIngestConfig, msg: GraphMessage, now: datetime | None = None
) -> str:
    """Ingest one fetched message. Returns ``duplicate``, ``ticket_created`` or ``comment_added``."""
    now = now or utcnow()
    key = msg.dedup_key
    log = logger.bind(message_id=msg.id, dedup_key=key)

    if has_event(session, "email_ingested", dedup_key=key):
        log.info("inbound_email_duplicate")
        return "duplicate"

    extractor = TicketNumberExtractor(config.shared_mailbox, config.ticket_number_pattern)
    ticket = resolve_ticket(session, extractor, msg)

    if ticket is None:
        ticket = _create_ticket(session, config, msg, now)
        action = "ticket_created"
    else:
        session.add(TicketComment(
            ticket_id=ticket.id,
            author_id=config.system_user_id,
            body=format_inbound_text(msg),
            is_internal=False,
            created_at=now,
        ))
        action = "comment_added"

    append_event(session, "ticket", ticket.id, EmailIngested(
        at=now,
        key=key,
        message_id=msg.id,
        internet_message_id=msg.internet_message_id,
        conversation_id=msg.conversation_id,
        ticket_number=ticket.ticket_number,
        subject=msg.subject,
        action=action,
    ), actor_id=config.system_user_id)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        # A racing delivery of the same message committed first.
        if has_event(session, "email_ingested", dedup_key=key):
            log.info("inbound_email_duplicate", raced=True)
            return "duplicate"
        raise

    log.info("inbound_email_ingested", action=action, ticket_number=ticket.ticket_number)
    return action


def _record_failure(session: Session, message_id: str, stage: str, error: Exception) -> None:
    try:
        session.rollback()
        append_event(session, "message", message_id, MailIngestFailed(
            at=utcnow(), stage=stage, error=f"{type(error).__name__}: {error}"[:1000], message_id=message_id,
        ))
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error("mail_ingest_failure_not_recorded", message_id=message_id, error=str(e))


def process_mail_notification(notification: dict):
    """RQ entry point for one validated change notification."""
    parsed = GraphNotification.model_validate(notification)
    message_id = parsed.message_id
    if not message_id:
        logger.warning("mail_notification_without_message_id", subscription_id=parsed.subscription_id)
        return None

    try:
        config = MailIngestConfig.from_settings(settings)
    except ConfigurationError as e:
        logger.error("mail_ingest_misconfigured", message_id=message_id, missing=e.missing)
        raise

    session = get_sync_session()
    graph = GraphMailClient(config)
    stage = "fetch"

    try:
        msg = graph.fetch_message(message_id)
        stage = "correlate"
        return correlate_message(session, config, msg)
    except Exception as e:
        logger.error("mail_notification_failed", message_id=message_id, stage=stage,
                     error=f"{type(e).__name__}: {e}")
        ERRORS.labels(type="mail_ingest").inc()
        _record_failure(session, message_id, stage, e)
        raise
    finally:
        graph.close()
        session.close()
