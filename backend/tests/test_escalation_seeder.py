"""Tests for escalation seeding and policy matching."""

import uuid
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select

from ticketflow.models.escalation import EscalationPolicy, TicketEscalation
from ticketflow.services.ledger import append_event
from ticketflow.workers.escalation_seeder import match_escalation_policy, seed_escalations
from ticketflow.workers.sla_scanner import scan_sla_breaches

from conftest import NOW, fail_first

GROUP = uuid.UUID("11111111-1111-1111-1111-111111111111")


def _workflows(session, ticket_id):
    return list(session.execute(
        select(TicketEscalation).where(TicketEscalation.ticket_id == ticket_id)
    ).scalars().all())


class TestMatchEscalationPolicy:
    def setup_method(self):
        self.by_group = EscalationPolicy(id=uuid.uuid4(), name="Network", priority=10,
                                         match_assignment_group_id=GROUP)
        self.by_type = EscalationPolicy(id=uuid.uuid4(), name="Incidents", priority=20,
                                        match_ticket_type="Incident")
        self.catch_all = EscalationPolicy(id=uuid.uuid4(), name="Default", priority=100)
        self.policies = [self.by_group, self.by_type, self.catch_all]

    def test_first_match_wins(self, make_ticket):
        ticket = make_ticket(ticket_type="incident", assignment_group_id=GROUP)
        assert match_escalation_policy(self.policies, ticket) == self.by_group.id

    def test_ticket_type_is_case_insensitive(self, make_ticket):
        ticket = make_ticket(ticket_type="INCIDENT")
        assert match_escalation_policy(self.policies, ticket) == self.by_type.id

    def test_absent_filters_match_anything(self, make_ticket):
        ticket = make_ticket(ticket_type="request")
        assert match_escalation_policy(self.policies, ticket) == self.catch_all.id

    def test_no_match(self, make_ticket):
        ticket = make_ticket(ticket_type="request")
        assert match_escalation_policy([self.by_group, self.by_type], ticket) is None


class TestSeedEscalations:
    def test_breach_then_seed(self, session, make_ticket, make_sla, events):
        policy = EscalationPolicy(name="Default", priority=100)
        session.add(policy)
        session.commit()
        ticket = make_ticket()
        make_sla(ticket, resolution_due_at=NOW - timedelta(hours=1))

        scan_sla_breaches(session, 200, NOW)
        summary = seed_escalations(session, 200, NOW)

        assert summary.created == 1
        [workflow] = _workflows(session, ticket.id)
        assert workflow.status == "open"
        assert workflow.current_step == 0
        assert workflow.next_run_at == NOW
        assert workflow.policy_id == policy.id
        [created] = events("escalation_created", workflow.id)
        assert created.payload["ticket_id"] == str(ticket.id)

    def test_seed_is_idempotent(self, session, make_ticket, make_sla):
        ticket = make_ticket()
        make_sla(ticket, resolution_breached=True)

        seed_escalations(session, 200, NOW)
        again = seed_escalations(session, 200, NOW + timedelta(minutes=5))

        assert again.scanned == 0
        assert again.created == 0
        assert len(_workflows(session, ticket.id)) == 1

    def test_no_policy_still_creates_workflow(self, session, make_ticket, make_sla):
        ticket = make_ticket()
        make_sla(ticket, resolution_breached=True)

        summary = seed_escalations(session, 200, NOW)

        assert summary.created == 1
        [workflow] = _workflows(session, ticket.id)
        assert workflow.policy_id is None

    def test_inactive_policies_are_ignored(self, session, make_ticket, make_sla):
        session.add(EscalationPolicy(name="Retired", priority=1, is_active=False))
        session.commit()
        ticket = make_ticket()
        make_sla(ticket, resolution_breached=True)

        seed_escalations(session, 200, NOW)

        [workflow] = _workflows(session, ticket.id)
        assert workflow.policy_id is None

    def test_completed_workflow_is_not_reseeded(self, session, make_ticket, make_sla):
        ticket = make_ticket()
        make_sla(ticket, resolution_breached=True)
        session.add(TicketEscalation(ticket_id=ticket.id, status="completed", current_step=2))
        session.commit()

        summary = seed_escalations(session, 200, NOW)

        assert summary.created == 0
        assert len(_workflows(session, ticket.id)) == 1

    def test_unbreached_tickets_are_not_seeded(self, session, make_ticket, make_sla):
        make_sla(make_ticket(), resolution_due_at=NOW + timedelta(hours=1))
        assert seed_escalations(session, 200, NOW).scanned == 0

    def test_workflow_opened_since_the_scan_is_skipped(self, session, make_ticket, make_sla):
        ticket = make_ticket()
        make_sla(ticket, resolution_breached=True)

        with patch("ticketflow.workers.escalation_seeder._has_escalation", return_value=True):
            summary = seed_escalations(session, 200, NOW)

        assert summary.scanned == 1
        assert summary.skipped == 1
        assert summary.created == 0
        assert _workflows(session, ticket.id) == []

    def test_row_failure_does_not_stop_the_pass(self, session, make_ticket, make_sla):
        for _ in range(2):
            make_sla(make_ticket(), resolution_breached=True)

        with patch("ticketflow.workers.escalation_seeder.append_event", side_effect=fail_first(append_event)):
            summary = seed_escalations(session, 200, NOW)

        assert summary.failed == 1
        assert summary.created == 1
        assert len(session.execute(select(TicketEscalation)).scalars().all()) == 1

        retry = seed_escalations(session, 200, NOW)
        assert retry.created == 1
