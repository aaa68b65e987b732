"""Shared fixtures: an in-memory store and factories for the rows the engine reads."""

import itertools
import uuid
from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ticketflow.models  # noqa: F401  registers every table on Base.metadata
from ticketflow.config import AutomationConfig, EmailConfig
from ticketflow.database import Base
from ticketflow.models.event import TicketEvent
from ticketflow.models.sla import TicketSla
from ticketflow.models.ticket import Ticket

NOW = datetime(2025, 3, 10, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def make_ticket(session):
    counter = itertools.count(1)

    def _make(**overrides) -> Ticket:
        values = {
            "ticket_number": f"T-2025-{next(counter):06d}",
            "title": "Printer on fire",
            "status": "open",
            "ticket_type": "incident",
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        ticket = Ticket(**values)
        session.add(ticket)
        session.commit()
        return ticket

    return _make


@pytest.fixture
def make_sla(session):
    def _make(ticket: Ticket, **overrides) -> TicketSla:
        sla = TicketSla(ticket_id=ticket.id, **overrides)
        session.add(sla)
        session.commit()
        return sla

    return _make


@pytest.fixture
def events(session):
    """All ledger rows of one type, oldest first."""
    def _events(event_type: str, subject_id=None) -> list[TicketEvent]:
        query = select(TicketEvent).where(TicketEvent.event_type == event_type)
        if subject_id is not None:
            query = query.where(TicketEvent.subject_id == str(subject_id))
        return list(session.execute(query.order_by(TicketEvent.created_at)).scalars().all())

    return _events


@pytest.fixture
def automation_config():
    return AutomationConfig(
        automation_secret="s3cret",
        email=EmailConfig(
            provider="resend",
            from_email="support@example.com",
            app_url="https://desk.example.com",
            resend_api_key="re_test",
        ),
        auto_close_days=5,
        slack_webhook_url="https://hooks.slack.test/T000",
        system_user_id=uuid.UUID("00000000-0000-0000-0000-00000000000a"),
    )


def fail_first(real, error: Exception | None = None):
    """Wrap ``real`` so its first call raises and later calls go through."""
    calls = itertools.count()

    def _call(*args, **kwargs):
        if next(calls) == 0:
            raise error or RuntimeError("connection reset by peer")
        return real(*args, **kwargs)

    return _call
