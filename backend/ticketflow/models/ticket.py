"""Ticket and ticket comment models."""

import uuid
from datetime import datetime

from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketflow.database import Base, utcnow

TICKET_STATUSES = ("new", "open", "in_progress", "pending", "resolved", "closed")


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="new", index=True)  # see TICKET_STATUSES
    priority: Mapped[str] = mapped_column(String(20), default="medium")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ticket_type: Mapped[str] = mapped_column(String(50), default="incident")  # incident, customer_service, ...
    channel: Mapped[str] = mapped_column(String(30), default="portal")  # portal, email, phone
    mailbox: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Routing
    assignment_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Requester (profile link plus email snapshot for external senders)
    requester_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=True)
    requester_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requester_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    requester = relationship("Profile", lazy="joined")

    def __repr__(self) -> str:
        return f"<Ticket {self.ticket_number} {self.status}>"


class TicketComment(Base):
    __tablename__ = "ticket_comments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
