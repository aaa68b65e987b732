"""Inbound mail text handling: ticket-number extraction, HTML stripping, addresses.

The ticket-number pattern and the plus-address tag convention are an external
contract shared with outbound mail; change them together.
"""

import re

from ticketflow.schemas.mail import GraphMessage

DEFAULT_TICKET_NUMBER_PATTERN = r"\bT-\d{4}-\d{6}\b"

_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_ANGLE_RE = re.compile(r"<([^>]+)>")
_SPLIT_RE = re.compile(r"\s*,\s*")


def strip_html(value: str) -> str:
    return _BLANK_RUN_RE.sub("\n\n", _TAG_RE.sub("", value)).strip()


def extract_first_email_address(value: str) -> str:
    """'Jane <jane@x.com>, bob@y.com' -> 'jane@x.com'."""
    trimmed = value.strip()
    match = _ANGLE_RE.search(trimmed)
    candidate = (match.group(1) if match else trimmed).strip()
    return _SPLIT_RE.split(candidate)[0].strip()


def mailbox_local_part(mailbox: str) -> str:
    return (mailbox.split("@")[0] or "support").lower()


class TicketNumberExtractor:
    def __init__(self, shared_mailbox: str, pattern: str = DEFAULT_TICKET_NUMBER_PATTERN):
        self.pattern = re.compile(pattern)
        base = re.escape(mailbox_local_part(shared_mailbox))
        self.plus_address = re.compile(rf"\b{base}\+([^@]+)@", re.IGNORECASE)

    def from_text(self, text: str | None) -> str | None:
        if not text:
            return None
        match = self.pattern.search(text)
        return match.group(0) if match else None

    def from_recipients(self, msg: GraphMessage) -> str | None:
        for recipient in [*msg.to_recipients, *msg.cc_recipients]:
            address = (recipient.email_address.address or "") if recipient.email_address else ""
            match = self.plus_address.search(address.lower())
            if not match:
                continue
            ticket_number = self.from_text(match.group(1).upper())
            if ticket_number:
                return ticket_number
        return None

    def from_message(self, msg: GraphMessage) -> str | None:
        """Plus-addressed recipient first, then subject, then body."""
        return (
            self.from_recipients(msg)
            or self.from_text(msg.subject)
            or self.from_text(normalize_body(msg))
        )


def normalize_body(msg: GraphMessage) -> str:
    raw = (msg.body.content if msg.body else None) or msg.body_preview or ""
    content_type = ((msg.body.content_type if msg.body else None) or "").lower()
    if content_type == "html":
        return strip_html(raw)
    return raw.strip()


def format_inbound_metadata(msg: GraphMessage) -> str:
    from_address = msg.from_address or "unknown"
    from_line = f"{msg.from_name} <{from_address}>" if msg.from_name else from_address
    return (
        f"Inbound email from: {from_line}\n"
        f"Received: {msg.received_date_time or ''}\n"
        f"MessageId: {msg.internet_message_id or msg.id}\n"
        f"ConversationId: {msg.conversation_id or ''}\n"
    )


def format_inbound_text(msg: GraphMessage) -> str:
    return f"{format_inbound_metadata(msg)}\n{normalize_body(msg)}"
