"""Email adapter - Resend HTTP API or SMTP, returning a result instead of raising."""

from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Union

import aiosmtplib
import httpx
import structlog

from ticketflow.config import EmailConfig
from ticketflow.errors import EmailDeliveryError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Sent:
    provider_id: Optional[str] = None


@dataclass(frozen=True)
class Skipped:
    reason: str


@dataclass(frozen=True)
class Failed:
    error: str


EmailResult = Union[Sent, Skipped, Failed]


async def _send_resend(config: EmailConfig, to_email: str, subject: str, body_html: str) -> Sent:
    async with httpx.AsyncClient(timeout=15.0) as client:
        resp = await client.post(
            config.resend_api_url,
            headers={"Authorization": f"Bearer {config.resend_api_key}"},
            json={"from": config.from_email, "to": to_email, "subject": subject, "html": body_html},
        )
    if resp.status_code >= 400:
        raise EmailDeliveryError(f"Resend send failed: {resp.status_code} {resp.text[:500]}", "resend")
    try:
        provider_id = resp.json().get("id")
    except ValueError:
        provider_id = None
    return Sent(provider_id=provider_id)


async def _send_smtp(config: EmailConfig, to_email: str, subject: str, body_html: str) -> Sent:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = config.from_email
    msg["To"] = to_email
    msg.attach(MIMEText(body_html, "html"))

    try:
        await aiosmtplib.send(
            msg,
            hostname=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_user or None,
            password=config.smtp_password or None,
            use_tls=config.smtp_use_tls,
        )
    except aiosmtplib.SMTPException as e:
        raise EmailDeliveryError(str(e), "smtp") from e
    return Sent()


async def send_email(
    config: EmailConfig,
    to_email: str,
    subject: str,
    body_html: str,
) -> EmailResult:
    """Send one email. Never raises: callers count the outcome.

    Args:
        config: Provider selection and credentials
        to_email: Recipient address
        subject: Email subject
        body_html: HTML body content
    """
    if not config.enabled:
        return Skipped("provider_not_configured")
    if not to_email:
        return Skipped("no_recipient")

    try:
        if config.provider == "resend":
            result = await _send_resend(config, to_email, subject, body_html)
        else:
            result = await _send_smtp(config, to_email, subject, body_html)
        logger.info("email_sent", to=to_email, subject=subject, provider=config.provider)
        return result
    except Exception as e:
        logger.error("email_send_failed", error=str(e), to=to_email, provider=config.provider)
        return Failed(str(e))
