"""Escalation policies (reference data) and per-ticket escalation workflows."""

import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, DateTime, ForeignKey, Index, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketflow.database import Base, utcnow


class EscalationPolicy(Base):
    __tablename__ = "escalation_policies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int] = mapped_column(Integer, default=100)  # lower wins

    # Optional match filters; NULL means "any"
    match_ticket_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    match_assignment_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    steps = relationship("EscalationStep", order_by="EscalationStep.step_order", back_populates="policy")

    def matches(self, ticket_type: str | None, assignment_group_id: uuid.UUID | None) -> bool:
        if self.match_ticket_type and self.match_ticket_type.lower() != (ticket_type or "").lower():
            return False
        if self.match_assignment_group_id and self.match_assignment_group_id != assignment_group_id:
            return False
        return True


class EscalationStep(Base):
    __tablename__ = "escalation_policy_steps"
    __table_args__ = (UniqueConstraint("policy_id", "step_order"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("escalation_policies.id"), nullable=False, index=True)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0)

    notify_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notify_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notify_channel: Mapped[str] = mapped_column(String(30), default="email")  # email, slack, in_app

    policy = relationship("EscalationPolicy", back_populates="steps")


class TicketEscalation(Base):
    """One run of a policy for one ticket. At most one non-completed row per ticket."""

    __tablename__ = "ticket_escalations"
    __table_args__ = (
        Index(
            "uq_ticket_escalations_open_ticket", "ticket_id", unique=True,
            postgresql_where=text("status <> 'completed'"),
            sqlite_where=text("status <> 'completed'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    policy_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("escalation_policies.id"), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="open", index=True)  # open, completed
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
