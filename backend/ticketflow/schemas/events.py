"""Ledger event payloads, one schema per event type.

Every variant knows its own ``dedup_key``: the value that answers "has this
exact effect already happened" for its subject.
"""

import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _EventBase(BaseModel):
    at: datetime

    @property
    def dedup_key(self) -> Optional[str]:
        return None

    @property
    def thread_key(self) -> Optional[str]:
        return None


class FirstResponseBreached(_EventBase):
    event_type: Literal["first_response_breached"] = "first_response_breached"
    due_at: datetime

    @property
    def dedup_key(self) -> str:
        return "first_response"


class ResolutionBreached(_EventBase):
    event_type: Literal["resolution_breached"] = "resolution_breached"
    due_at: datetime

    @property
    def dedup_key(self) -> str:
        return "resolution"


class EscalationCreated(_EventBase):
    event_type: Literal["escalation_created"] = "escalation_created"
    ticket_id: uuid.UUID
    policy_id: Optional[uuid.UUID] = None


class StepExecuted(_EventBase):
    event_type: Literal["step_executed"] = "step_executed"
    step_order: int
    delay_minutes: int
    notify_user_id: Optional[uuid.UUID] = None
    notify_group_id: Optional[uuid.UUID] = None
    notify_channel: str = "email"

    @property
    def dedup_key(self) -> str:
        return f"step:{self.step_order}"


class EscalationNotificationSent(_EventBase):
    event_type: Literal["escalation_notification_sent"] = "escalation_notification_sent"
    step_order: int
    channel: str
    recipients: list[str] = Field(default_factory=list)
    provider_id: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return f"step:{self.step_order}"


class EscalationCompleted(_EventBase):
    event_type: Literal["escalation_completed"] = "escalation_completed"
    reason: Literal["no_policy", "steps_exhausted"]
    final_step: int


class TicketStatusChanged(_EventBase):
    event_type: Literal["ticket_status_changed"] = "ticket_status_changed"
    from_status: str = Field(alias="from")
    to_status: str = Field(alias="to")
    reason: str
    days_inactive: Optional[int] = None

    model_config = {"populate_by_name": True}


class SatisfactionEmailSent(_EventBase):
    event_type: Literal["satisfaction_email_sent"] = "satisfaction_email_sent"
    to: str
    provider_id: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return "satisfaction_email"


class AutoCloseEmailSent(_EventBase):
    event_type: Literal["auto_close_email_sent"] = "auto_close_email_sent"
    to: str
    provider_id: Optional[str] = None
    reason: str = "no_response"

    @property
    def dedup_key(self) -> str:
        return "auto_close_email"


class EmailIngested(_EventBase):
    event_type: Literal["email_ingested"] = "email_ingested"
    key: str
    message_id: str
    internet_message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    ticket_number: Optional[str] = None
    subject: Optional[str] = None
    action: Literal["ticket_created", "comment_added"]

    @property
    def dedup_key(self) -> str:
        return self.key

    @property
    def thread_key(self) -> Optional[str]:
        return self.conversation_id


class MailIngestFailed(_EventBase):
    event_type: Literal["mail_ingest_failed"] = "mail_ingest_failed"
    stage: str
    error: str
    message_id: Optional[str] = None


EventPayload = Annotated[
    Union[
        FirstResponseBreached,
        ResolutionBreached,
        EscalationCreated,
        StepExecuted,
        EscalationNotificationSent,
        EscalationCompleted,
        TicketStatusChanged,
        SatisfactionEmailSent,
        AutoCloseEmailSent,
        EmailIngested,
        MailIngestFailed,
    ],
    Field(discriminator="event_type"),
]

event_payload_adapter: TypeAdapter[EventPayload] = TypeAdapter(EventPayload)


def parse_event_payload(data: dict) -> EventPayload:
    """Rehydrate a stored payload into its typed variant."""
    return event_payload_adapter.validate_python(data)
