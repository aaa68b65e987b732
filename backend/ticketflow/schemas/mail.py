"""Microsoft Graph change-notification and message schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class GraphResourceData(BaseModel):
    id: Optional[str] = None

    model_config = {"extra": "allow"}


class GraphNotification(BaseModel):
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    client_state: Optional[str] = Field(None, alias="clientState")
    change_type: Optional[str] = Field(None, alias="changeType")
    resource: Optional[str] = None
    resource_data: Optional[GraphResourceData] = Field(None, alias="resourceData")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def message_id(self) -> Optional[str]:
        return self.resource_data.id if self.resource_data else None


class GraphNotificationEnvelope(BaseModel):
    value: list[GraphNotification] = Field(default_factory=list)


class GraphEmailAddress(BaseModel):
    address: Optional[str] = None
    name: Optional[str] = None


class GraphRecipient(BaseModel):
    email_address: Optional[GraphEmailAddress] = Field(None, alias="emailAddress")

    model_config = {"populate_by_name": True}


class GraphItemBody(BaseModel):
    content_type: Optional[str] = Field(None, alias="contentType")
    content: Optional[str] = None

    model_config = {"populate_by_name": True}


class GraphMessage(BaseModel):
    """An inbound message as returned by GET /users/{mailbox}/messages/{id}."""
    id: str
    subject: Optional[str] = None
    body_preview: Optional[str] = Field(None, alias="bodyPreview")
    body: Optional[GraphItemBody] = None
    sender: Optional[GraphRecipient] = Field(None, alias="from")
    to_recipients: list[GraphRecipient] = Field(default_factory=list, alias="toRecipients")
    cc_recipients: list[GraphRecipient] = Field(default_factory=list, alias="ccRecipients")
    received_date_time: Optional[str] = Field(None, alias="receivedDateTime")
    internet_message_id: Optional[str] = Field(None, alias="internetMessageId")
    conversation_id: Optional[str] = Field(None, alias="conversationId")

    model_config = {"populate_by_name": True}

    @property
    def dedup_key(self) -> str:
        """Internet message id survives re-delivery under a new provider id."""
        return self.internet_message_id or self.id

    @property
    def from_address(self) -> Optional[str]:
        addr = self.sender.email_address if self.sender else None
        return ((addr.address or "").strip() or None) if addr else None

    @property
    def from_name(self) -> Optional[str]:
        addr = self.sender.email_address if self.sender else None
        return ((addr.name or "").strip() or None) if addr else None


class SubscriptionResponse(BaseModel):
    id: Optional[str] = None
    resource: Optional[str] = None
    expiration_date_time: Optional[str] = Field(None, alias="expirationDateTime")

    model_config = {"populate_by_name": True, "extra": "allow"}
