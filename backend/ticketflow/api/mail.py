"""Inbound mail webhook and Graph subscription management."""

import hmac
import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from rq import Retry

from ticketflow.adapters.graph import GraphMailClient
from ticketflow.api.health import ERRORS, WEBHOOK_NOTIFICATIONS
from ticketflow.config import MailIngestConfig, settings
from ticketflow.errors import ConfigurationError, GraphApiError
from ticketflow.middleware.auth import verify_admin_caller
from ticketflow.schemas.mail import GraphNotificationEnvelope, SubscriptionResponse
from ticketflow.workers.base import get_queue

logger = structlog.get_logger()
router = APIRouter(prefix="/mail", tags=["mail"])

JOB_PATH = "ticketflow.workers.email_correlator.process_mail_notification"


def _client_state_ok(received: str | None, expected: str) -> bool:
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


@router.get("/webhook")
def validate_subscription(validation_token: str | None = Query(None, alias="validationToken")):
    """Graph subscription handshake: echo the token back as plain text."""
    if validation_token is None:
        return PlainTextResponse("OK", status_code=200)
    return PlainTextResponse(validation_token, status_code=200)


@router.post("/webhook")
async def receive_notifications(
    request: Request,
    validation_token: str | None = Query(None, alias="validationToken"),
):
    """Acknowledge immediately; each valid notification is correlated by its own RQ job."""
    if validation_token is not None:
        return PlainTextResponse(validation_token, status_code=200)

    try:
        envelope = GraphNotificationEnvelope.model_validate(json.loads(await request.body()))
    except (ValueError, ValidationError):
        WEBHOOK_NOTIFICATIONS.labels(outcome="malformed").inc()
        return PlainTextResponse("Invalid JSON", status_code=400)

    expected_state = settings.graph_client_state
    queue = None

    for notification in envelope.value:
        if not _client_state_ok(notification.client_state, expected_state):
            WEBHOOK_NOTIFICATIONS.labels(outcome="rejected").inc()
            logger.warning("mail_notification_rejected", subscription_id=notification.subscription_id)
            continue
        if not notification.message_id:
            WEBHOOK_NOTIFICATIONS.labels(outcome="ignored").inc()
            continue

        try:
            queue = queue or get_queue()
            queue.enqueue(
                JOB_PATH,
                notification.model_dump(mode="json", by_alias=True),
                job_timeout=300,
                retry=Retry(max=3, interval=[10, 30, 60]),
            )
            WEBHOOK_NOTIFICATIONS.labels(outcome="queued").inc()
        except Exception as e:
            logger.error("failed_to_enqueue_mail_notification",
                         message_id=notification.message_id, error=str(e))
            ERRORS.labels(type="queue").inc()

    return PlainTextResponse("Accepted", status_code=202)


def _mail_config() -> MailIngestConfig:
    try:
        return MailIngestConfig.from_settings(settings)
    except ConfigurationError as e:
        logger.error("mail_ingest_misconfigured", missing=e.missing)
        raise HTTPException(status_code=500, detail=e.reason)


def _call_graph(action):
    client = GraphMailClient(_mail_config())
    try:
        return action(client)
    except GraphApiError as e:
        ERRORS.labels(type="graph").inc()
        raise HTTPException(status_code=502, detail=e.reason)
    finally:
        client.close()


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=201,
             dependencies=[Depends(verify_admin_caller)])
def create_subscription():
    """Subscribe to new messages in the shared mailbox inbox."""
    return _call_graph(lambda client: client.create_subscription())


@router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionResponse,
             dependencies=[Depends(verify_admin_caller)])
def renew_subscription(subscription_id: str):
    return _call_graph(lambda client: client.renew_subscription(subscription_id))
