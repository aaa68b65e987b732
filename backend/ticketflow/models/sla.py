"""Per-ticket SLA timers.

Breach flags only ever go from false to true, and completion timestamps are
never cleared once set.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ticketflow.database import Base


class TicketSla(Base):
    __tablename__ = "ticket_slas"

    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), primary_key=True)

    first_response_due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    resolution_due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    first_response_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    first_response_breached: Mapped[bool] = mapped_column(Boolean, default=False)
    first_response_breached_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolution_breached: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolution_breached_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
