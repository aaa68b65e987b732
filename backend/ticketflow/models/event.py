"""Event ledger model - append-only audit trail and idempotency record."""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, JSON, Uuid, Index, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ticketflow.database import Base, utcnow


class TicketEvent(Base):
    __tablename__ = "ticket_events"
    __table_args__ = (
        Index("ix_ticket_events_dedup", "event_type", "dedup_key"),
        Index("ix_ticket_events_subject", "subject_id", "event_type"),
        # One ingestion per inbound message, even when redeliveries race.
        Index(
            "uq_ticket_events_email_ingested",
            "dedup_key",
            unique=True,
            postgresql_where=text("event_type = 'email_ingested'"),
            sqlite_where=text("event_type = 'email_ingested'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    subject_type: Mapped[str] = mapped_column(String(30), nullable=False)  # ticket, escalation, message
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)

    # Lookup keys lifted out of the payload
    dedup_key: Mapped[str | None] = mapped_column(String(998), nullable=True)
    thread_key: Mapped[str | None] = mapped_column(String(512), nullable=True, index=True)

    payload: Mapped[dict] = mapped_column(JSON().with_variant(JSONB(), "postgresql"), default=dict)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
