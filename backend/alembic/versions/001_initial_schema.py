"""Initial schema: tickets, SLA timers, escalations and the event ledger.

Revision ID: 001
Revises: None
Create Date: 2025-01-01
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Directory (owned by the directory sync job)
    op.create_table(
        "profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true"),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "operator_group_members",
        sa.Column("group_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), primary_key=True),
    )

    # Tickets
    op.create_table(
        "tickets",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ticket_number", sa.String(32), nullable=False, unique=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(30), server_default="new"),
        sa.Column("priority", sa.String(20), server_default="medium"),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("ticket_type", sa.String(50), server_default="incident"),
        sa.Column("channel", sa.String(30), server_default="portal"),
        sa.Column("mailbox", sa.String(255), nullable=True),
        sa.Column("assignment_group_id", UUID(as_uuid=True), nullable=True),
        sa.Column("assignee_id", UUID(as_uuid=True), nullable=True),
        sa.Column("requester_id", UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("requester_email", sa.String(255), nullable=True),
        sa.Column("requester_name", sa.String(255), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"])
    op.create_index("ix_tickets_status", "tickets", ["status"])
    op.create_index("ix_tickets_assignment_group_id", "tickets", ["assignment_group_id"])
    op.create_index("ix_tickets_updated_at", "tickets", ["updated_at"])

    op.create_table(
        "ticket_comments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("author_id", UUID(as_uuid=True), nullable=True),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("is_internal", sa.Boolean, server_default="false"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"])
    op.create_index("ix_ticket_comments_created_at", "ticket_comments", ["created_at"])

    # SLA timers
    op.create_table(
        "ticket_slas",
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), primary_key=True),
        sa.Column("first_response_due_at", sa.DateTime, nullable=True),
        sa.Column("resolution_due_at", sa.DateTime, nullable=True),
        sa.Column("first_response_at", sa.DateTime, nullable=True),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
        sa.Column("first_response_breached", sa.Boolean, server_default="false"),
        sa.Column("first_response_breached_at", sa.DateTime, nullable=True),
        sa.Column("resolution_breached", sa.Boolean, server_default="false"),
        sa.Column("resolution_breached_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_ticket_slas_first_response_due_at", "ticket_slas", ["first_response_due_at"])
    op.create_index("ix_ticket_slas_resolution_due_at", "ticket_slas", ["resolution_due_at"])
    op.create_index("ix_ticket_slas_resolution_breached", "ticket_slas", ["resolution_breached"])

    # Escalation policies
    op.create_table(
        "escalation_policies",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("priority", sa.Integer, server_default="100"),
        sa.Column("match_ticket_type", sa.String(50), nullable=True),
        sa.Column("match_assignment_group_id", UUID(as_uuid=True), nullable=True),
    )

    op.create_table(
        "escalation_policy_steps",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("policy_id", UUID(as_uuid=True), sa.ForeignKey("escalation_policies.id"), nullable=False),
        sa.Column("step_order", sa.Integer, nullable=False),
        sa.Column("delay_minutes", sa.Integer, server_default="0"),
        sa.Column("notify_user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("notify_group_id", UUID(as_uuid=True), nullable=True),
        sa.Column("notify_channel", sa.String(30), server_default="email"),
        sa.UniqueConstraint("policy_id", "step_order"),
    )
    op.create_index("ix_escalation_policy_steps_policy_id", "escalation_policy_steps", ["policy_id"])

    # Escalation workflows
    op.create_table(
        "ticket_escalations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("policy_id", UUID(as_uuid=True), sa.ForeignKey("escalation_policies.id"), nullable=True),
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("current_step", sa.Integer, server_default="0"),
        sa.Column("next_run_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_ticket_escalations_ticket_id", "ticket_escalations", ["ticket_id"])
    op.create_index("ix_ticket_escalations_status", "ticket_escalations", ["status"])
    op.create_index("ix_ticket_escalations_next_run_at", "ticket_escalations", ["next_run_at"])
    op.create_index(
        "uq_ticket_escalations_open_ticket", "ticket_escalations", ["ticket_id"],
        unique=True, postgresql_where=sa.text("status <> 'completed'"),
    )

    # Event ledger
    op.create_table(
        "ticket_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subject_type", sa.String(30), nullable=False),
        sa.Column("subject_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(60), nullable=False),
        sa.Column("dedup_key", sa.String(998), nullable=True),
        sa.Column("thread_key", sa.String(512), nullable=True),
        sa.Column("payload", JSONB, server_default="{}"),
        sa.Column("actor_id", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_ticket_events_dedup", "ticket_events", ["event_type", "dedup_key"])
    op.create_index("ix_ticket_events_subject", "ticket_events", ["subject_id", "event_type"])
    op.create_index(
        "uq_ticket_events_email_ingested", "ticket_events", ["dedup_key"],
        unique=True, postgresql_where=sa.text("event_type = 'email_ingested'"),
    )
    op.create_index("ix_ticket_events_thread_key", "ticket_events", ["thread_key"])
    op.create_index("ix_ticket_events_created_at", "ticket_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("ticket_events")
    op.drop_table("ticket_escalations")
    op.drop_table("escalation_policy_steps")
    op.drop_table("escalation_policies")
    op.drop_table("ticket_slas")
    op.drop_table("ticket_comments")
    op.drop_table("tickets")
    op.drop_table("operator_group_members")
    op.drop_table("profiles")
