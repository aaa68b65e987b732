"""Tests for inbound email correlation."""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select

from ticketflow.config import MailIngestConfig
from ticketflow.errors import GraphApiError
from ticketflow.models.ticket import Ticket, TicketComment
from ticketflow.schemas.mail import GraphMessage
from ticketflow.workers.email_correlator import correlate_message, next_ticket_number, process_mail_notification

from conftest import NOW

SYSTEM_USER = uuid.UUID("00000000-0000-0000-0000-0000000000ff")


@pytest.fixture
def mail_config():
    return MailIngestConfig(
        tenant_id="tenant", client_id="client", client_secret="secret", client_state="state-123",
        shared_mailbox="support@example.com", system_user_id=SYSTEM_USER,
    )


def _message(**overrides) -> GraphMessage:
    data = {
        "id": "AAMk-1",
        "subject": "VPN keeps dropping",
        "body": {"contentType": "html", "content": "<p>Hello</p><p>It drops every hour.</p>"},
        "from": {"emailAddress": {"address": "jane@customer.com", "name": "Jane Doe"}},
        "toRecipients": [{"emailAddress": {"address": "support@example.com"}}],
        "receivedDateTime": "2025-03-10T11:59:00Z",
        "internetMessageId": "<abc@customer.com>",
        "conversationId": "conv-1",
    }
    data.update(overrides)
    return GraphMessage.model_validate(data)


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestNextTicketNumber:
    def test_first_of_year(self, session):
        assert next_ticket_number(session, NOW) == "T-2025-000001"

    def test_increments_within_year(self, session, make_ticket):
        make_ticket(ticket_number="T-2025-000041")
        make_ticket(ticket_number="T-2024-000900")
        assert next_ticket_number(session, NOW) == "T-2025-000042"


class TestCorrelateMessage:
    def test_new_message_creates_ticket(self, session, mail_config, events):
        action = correlate_message(session, mail_config, _message(), NOW)

        assert action == "ticket_created"
        ticket = session.execute(select(Ticket)).unique().scalar_one()
        assert ticket.ticket_number == "T-2025-000001"
        assert ticket.title == "VPN keeps dropping"
        assert ticket.channel == "email"
        assert ticket.ticket_type == "customer_service"
        assert ticket.requester_email == "jane@customer.com"
        assert ticket.requester_name == "Jane Doe"
        assert ticket.description.startswith("Inbound email from: Jane Doe <jane@customer.com>\n")
        assert "<p>" not in ticket.description
        [ingested] = events("email_ingested", ticket.id)
        assert ingested.dedup_key == "<abc@customer.com>"
        assert ingested.thread_key == "conv-1"
        assert ingested.payload["action"] == "ticket_created"

    def test_same_message_twice_is_one_effect(self, session, mail_config, events):
        correlate_message(session, mail_config, _message(), NOW)
        action = correlate_message(session, mail_config, _message(), NOW)

        assert action == "duplicate"
        assert _count(session, Ticket) == 1
        assert len(events("email_ingested")) == 1

    def test_internet_message_id_wins_over_provider_id(self, session, mail_config, events):
        correlate_message(session, mail_config, _message(id="AAMk-1"), NOW)
        action = correlate_message(session, mail_config, _message(id="AAMk-2"), NOW)

        assert action == "duplicate"
        assert _count(session, Ticket) == 1
        assert len(events("email_ingested")) == 1

    def test_provider_id_used_without_internet_id(self, session, mail_config, events):
        correlate_message(session, mail_config, _message(internetMessageId=None), NOW)
        [ingested] = events("email_ingested")
        assert ingested.dedup_key == "AAMk-1"

    def test_ticket_number_in_subject_adds_comment(self, session, mail_config, make_ticket):
        ticket = make_ticket(ticket_number="T-2025-000007")

        action = correlate_message(session, mail_config, _message(
            subject="RE: [T-2025-000007] VPN", conversationId="other",
        ), NOW)

        assert action == "comment_added"
        [comment] = session.execute(select(TicketComment)).scalars().all()
        assert comment.ticket_id == ticket.id
        assert comment.is_internal is False
        assert _count(session, Ticket) == 1

    def test_plus_address_tag(self, session, mail_config, make_ticket):
        ticket = make_ticket(ticket_number="T-2025-000123")

        correlate_message(session, mail_config, _message(
            subject="no number here",
            toRecipients=[{"emailAddress": {"address": "Support+t-2025-000123@example.com"}}],
        ), NOW)

        [comment] = session.execute(select(TicketComment)).scalars().all()
        assert comment.ticket_id == ticket.id

    def test_conversation_threading(self, session, mail_config):
        correlate_message(session, mail_config, _message(), NOW)

        action = correlate_message(session, mail_config, _message(
            id="AAMk-9", internetMessageId="<reply@customer.com>", subject="RE: VPN keeps dropping",
        ), NOW)

        assert action == "comment_added"
        assert _count(session, Ticket) == 1
        assert _count(session, TicketComment) == 1

    def test_redelivery_racing_first_attempt_adds_one_comment(self, session, mail_config, make_ticket, events):
        make_ticket(ticket_number="T-2025-000007")
        first = _message(subject="RE: [T-2025-000007] VPN")
        assert correlate_message(session, mail_config, first, NOW) == "comment_added"

        # The second delivery passed its ledger check before the first one committed.
        with patch("ticketflow.workers.email_correlator.has_event", side_effect=[False, True]):
            action = correlate_message(session, mail_config, _message(
                id="AAMk-2", subject="RE: [T-2025-000007] VPN",
            ), NOW)

        assert action == "duplicate"
        assert _count(session, TicketComment) == 1
        assert len(events("email_ingested")) == 1

    def test_unknown_ticket_number_falls_through_to_new_ticket(self, session, mail_config):
        action = correlate_message(session, mail_config, _message(subject="About T-2025-999999"), NOW)
        assert action == "ticket_created"

    def test_missing_subject(self, session, mail_config):
        correlate_message(session, mail_config, _message(subject=None), NOW)
        ticket = session.execute(select(Ticket)).unique().scalar_one()
        assert ticket.title == "(no subject)"


class TestProcessMailNotification:
    def setup_method(self):
        self.notification = {
            "subscriptionId": "sub-1",
            "clientState": "state-123",
            "changeType": "created",
            "resourceData": {"id": "AAMk-1"},
        }

    def test_without_message_id_is_ignored(self):
        assert process_mail_notification({"subscriptionId": "sub-1"}) is None

    def test_fetch_failure_is_recorded_and_reraised(self, session, mail_config, events):
        graph = MagicMock()
        graph.fetch_message.side_effect = GraphApiError("Fetch message failed: 503", 503)

        with patch("ticketflow.workers.email_correlator.MailIngestConfig.from_settings", return_value=mail_config), \
             patch("ticketflow.workers.email_correlator.get_sync_session", return_value=session), \
             patch("ticketflow.workers.email_correlator.GraphMailClient", return_value=graph):
            with pytest.raises(GraphApiError):
                process_mail_notification(self.notification)

        [failed] = events("mail_ingest_failed", "AAMk-1")
        assert failed.payload["stage"] == "fetch"
        assert "503" in failed.payload["error"]
        graph.close.assert_called_once()

    def test_success(self, session, mail_config):
        graph = MagicMock()
        graph.fetch_message.return_value = _message()

        with patch("ticketflow.workers.email_correlator.MailIngestConfig.from_settings", return_value=mail_config), \
             patch("ticketflow.workers.email_correlator.get_sync_session", return_value=session), \
             patch("ticketflow.workers.email_correlator.GraphMailClient", return_value=graph):
            assert process_mail_notification(self.notification) == "ticket_created"

        graph.fetch_message.assert_called_once_with("AAMk-1")
