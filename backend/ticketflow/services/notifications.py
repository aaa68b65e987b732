"""Notification content - customer emails and escalation alerts."""

from html import escape
from urllib.parse import quote

from ticketflow.models.ticket import Ticket
from ticketflow.services.mail_parsing import extract_first_email_address

_WRAPPER_STYLE = (
    "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; "
    "line-height: 1.6; color: #111827;"
)
_BUTTON_STYLE = (
    "display: inline-block; padding: 10px 14px; border-radius: 8px; "
    "background: #4f46e5; color: #ffffff; text-decoration: none;"
)


def resolve_requester_contact(ticket: Ticket) -> tuple[str, str]:
    """Destination address and greeting name for a ticket's requester.

    The email snapshot on the ticket wins over the linked profile; only the
    first address is used. Returns ("", "") when there is nowhere to send.
    """
    profile = ticket.requester
    raw = (ticket.requester_email or "").strip() or ((profile.email or "") if profile else "")
    to_email = extract_first_email_address(raw) if raw else ""
    if not to_email:
        return "", ""
    name = (
        (ticket.requester_name or "").strip()
        or ((profile.full_name or "").strip() if profile else "")
        or to_email.split("@")[0]
    )
    return to_email, name


def ticket_app_link(app_url: str, ticket: Ticket) -> str:
    module = "customer-support-queue" if (ticket.ticket_type or "").lower() == "customer_service" else "call-management"
    return f"{app_url}/#/{module}?ticketId={quote(str(ticket.id))}"


def format_satisfaction_email(ticket: Ticket, requester_name: str, app_url: str) -> tuple[str, str]:
    subject = f"How did we do? (Ticket #{ticket.ticket_number})"
    html = f"""
      <div style="{_WRAPPER_STYLE}">
        <p style="margin: 0 0 16px 0;">Hi {escape(requester_name)},</p>
        <p style="margin: 0 0 16px 0;">Your ticket <strong>#{escape(ticket.ticket_number)}</strong> has been closed.</p>
        <p style="margin: 0 0 16px 0;">We'd really appreciate it if you could rate your experience.</p>
        <p style="margin: 0 0 16px 0;">
          <a href="{ticket_app_link(app_url, ticket)}" style="{_BUTTON_STYLE}">Open Service Desk</a>
        </p>
        <p style="margin: 0; color: #6b7280; font-size: 14px;">Open the ticket and use the Customer Satisfaction tab to leave a rating.</p>
      </div>
    """
    return subject, html


def auto_close_comment(days: int) -> str:
    return (
        f"This ticket has been automatically closed due to no response from the requester for {days} days. "
        "If you still need assistance, please submit a new ticket or reply to reopen this one."
    )


def format_auto_close_email(ticket: Ticket, requester_name: str, app_url: str, days: int) -> tuple[str, str]:
    subject = f"Ticket #{ticket.ticket_number} has been closed - No response received"
    html = f"""
      <div style="{_WRAPPER_STYLE}">
        <p style="margin: 0 0 16px 0;">Hi {escape(requester_name)},</p>
        <p style="margin: 0 0 16px 0;">Your ticket <strong>#{escape(ticket.ticket_number)}</strong> - "{escape(ticket.title)}" has been automatically closed because we haven't received a response from you in the last {days} days.</p>
        <p style="margin: 0 0 16px 0;">If you still need assistance with this issue, you can:</p>
        <ul style="margin: 0 0 16px 0; padding-left: 20px;">
          <li>Reply to this email to reopen the ticket</li>
          <li>Submit a new ticket through the service desk</li>
        </ul>
        <p style="margin: 0 0 16px 0;">
          <a href="{ticket_app_link(app_url, ticket)}" style="{_BUTTON_STYLE}">View Ticket</a>
        </p>
      </div>
    """
    return subject, html


def format_escalation_email(ticket: Ticket, step_order: int, app_url: str) -> tuple[str, str]:
    subject = f"[Escalation level {step_order}] Ticket #{ticket.ticket_number}: {ticket.title}"
    html = f"""
      <div style="{_WRAPPER_STYLE}">
        <p style="margin: 0 0 16px 0;">Ticket <strong>#{escape(ticket.ticket_number)}</strong> has breached its resolution SLA and reached escalation level {step_order}.</p>
        <p style="margin: 0 0 16px 0;"><strong>{escape(ticket.title)}</strong><br>Priority: {escape(ticket.priority or 'medium')} &middot; Status: {escape(ticket.status)}</p>
        <p style="margin: 0;">
          <a href="{ticket_app_link(app_url, ticket)}" style="{_BUTTON_STYLE}">Open Ticket</a>
        </p>
      </div>
    """
    return subject, html


def format_escalation_slack(ticket: Ticket, step_order: int) -> tuple[str, list]:
    """Format an escalation alert for Slack."""
    text = f"Escalation level {step_order}: ticket #{ticket.ticket_number} breached its resolution SLA"
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Escalation level {step_order}"}
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Ticket:* #{ticket.ticket_number}"},
                {"type": "mrkdwn", "text": f"*Priority:* {ticket.priority or 'medium'}"},
                {"type": "mrkdwn", "text": f"*Status:* {ticket.status}"},
                {"type": "mrkdwn", "text": f"*Type:* {ticket.ticket_type}"},
            ]
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Title:* {ticket.title[:200]}"}
        },
    ]
    return text, blocks
