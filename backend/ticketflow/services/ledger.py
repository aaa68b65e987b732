"""Event ledger helpers - append events and answer "did this already happen"."""

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketflow.models.event import TicketEvent
from ticketflow.schemas.events import EventPayload


def append_event(
    session: Session,
    subject_type: str,
    subject_id: uuid.UUID | str,
    payload: EventPayload,
    actor_id: uuid.UUID | None = None,
) -> TicketEvent:
    """Stage a ledger row in the current transaction. The caller commits."""
    entry = TicketEvent(
        subject_type=subject_type,
        subject_id=str(subject_id),
        event_type=payload.event_type,
        dedup_key=payload.dedup_key,
        thread_key=payload.thread_key,
        payload=payload.model_dump(mode="json", by_alias=True),
        actor_id=actor_id,
    )
    session.add(entry)
    return entry


def has_event(
    session: Session,
    event_type: str,
    *,
    subject_id: uuid.UUID | str | None = None,
    dedup_key: str | None = None,
) -> bool:
    query = select(TicketEvent.id).where(TicketEvent.event_type == event_type)
    if subject_id is not None:
        query = query.where(TicketEvent.subject_id == str(subject_id))
    if dedup_key is not None:
        query = query.where(TicketEvent.dedup_key == dedup_key)
    return session.execute(query.limit(1)).first() is not None


def find_subject_by_thread(session: Session, event_type: str, thread_key: str) -> str | None:
    """Most recent subject id that recorded ``event_type`` for this thread."""
    result = session.execute(
        select(TicketEvent.subject_id)
        .where(TicketEvent.event_type == event_type, TicketEvent.thread_key == thread_key)
        .order_by(TicketEvent.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
