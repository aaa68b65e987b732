"""Slack adapter - escalation alerts over an incoming webhook."""

import httpx
import structlog

from ticketflow.adapters.email import EmailResult, Failed, Sent, Skipped

logger = structlog.get_logger()


async def post_slack_alert(webhook_url: str, text: str, blocks: list | None = None) -> EmailResult:
    """Post an alert. Like send_email, reports the outcome instead of raising."""
    if not webhook_url:
        return Skipped("slack_not_configured")

    payload: dict = {"text": text}
    if blocks:
        payload["blocks"] = blocks

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(webhook_url, json=payload)
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("slack_alert_failed", error=str(e))
        return Failed(str(e))

    logger.info("slack_alert_sent", text=text[:100])
    return Sent()
