"""Microsoft Graph adapter - app-only token, message fetch, change subscriptions."""

import time
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import httpx
import structlog

from ticketflow.config import MailIngestConfig
from ticketflow.errors import GraphApiError
from ticketflow.schemas.mail import GraphMessage, SubscriptionResponse

logger = structlog.get_logger()

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
LOGIN_BASE_URL = "https://login.microsoftonline.com"

MESSAGE_FIELDS = (
    "id,subject,bodyPreview,body,from,toRecipients,ccRecipients,"
    "receivedDateTime,internetMessageId,conversationId"
)
SUBSCRIPTION_MINUTES = 55
TOKEN_REFRESH_MARGIN = 60  # seconds before expiry


class GraphMailClient:
    """Thin client for the shared support mailbox."""

    def __init__(self, config: MailIngestConfig, http: httpx.Client | None = None):
        self.config = config
        self._http = http or httpx.Client(timeout=20.0)
        self._token: str | None = None
        self._token_expires_at = 0.0

    def close(self) -> None:
        self._http.close()

    def get_token(self) -> str:
        now = time.time()
        if self._token and now < self._token_expires_at - TOKEN_REFRESH_MARGIN:
            return self._token

        resp = self._http.post(
            f"{LOGIN_BASE_URL}/{self.config.tenant_id}/oauth2/v2.0/token",
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "client_credentials",
                "scope": "https://graph.microsoft.com/.default",
            },
        )
        if resp.status_code >= 400:
            raise GraphApiError(f"Token request failed: {resp.status_code} {resp.text[:500]}", resp.status_code)

        data = resp.json()
        self._token = data["access_token"]
        self._token_expires_at = now + int(data.get("expires_in", 3600))
        return self._token

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.get_token()}"}

    def fetch_message(self, message_id: str) -> GraphMessage:
        mailbox = quote(self.config.shared_mailbox, safe="")
        resp = self._http.get(
            f"{GRAPH_BASE_URL}/users/{mailbox}/messages/{quote(message_id, safe='')}",
            params={"$select": MESSAGE_FIELDS},
            headers=self._headers(),
        )
        if resp.status_code >= 400:
            raise GraphApiError(f"Fetch message failed: {resp.status_code} {resp.text[:500]}", resp.status_code)
        return GraphMessage.model_validate(resp.json())

    def create_subscription(self) -> SubscriptionResponse:
        if not self.config.webhook_url:
            raise GraphApiError("Webhook URL not configured")
        body = {
            "changeType": "created",
            "notificationUrl": self.config.webhook_url,
            "resource": f"/users/{self.config.shared_mailbox}/mailFolders('Inbox')/messages",
            "expirationDateTime": _expiry(),
            "clientState": self.config.client_state,
        }
        resp = self._http.post(f"{GRAPH_BASE_URL}/subscriptions", json=body, headers=self._headers())
        if resp.status_code >= 400:
            raise GraphApiError(f"Create subscription failed: {resp.status_code} {resp.text[:500]}", resp.status_code)
        logger.info("graph_subscription_created", mailbox=self.config.shared_mailbox)
        return SubscriptionResponse.model_validate(resp.json())

    def renew_subscription(self, subscription_id: str) -> SubscriptionResponse:
        resp = self._http.patch(
            f"{GRAPH_BASE_URL}/subscriptions/{quote(subscription_id, safe='')}",
            json={"expirationDateTime": _expiry()},
            headers=self._headers(),
        )
        if resp.status_code >= 400:
            raise GraphApiError(f"Renew subscription failed: {resp.status_code} {resp.text[:500]}", resp.status_code)
        logger.info("graph_subscription_renewed", subscription_id=subscription_id)
        return SubscriptionResponse.model_validate(resp.json())


def _expiry() -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=SUBSCRIPTION_MINUTES)
    return expires.isoformat().replace("+00:00", "Z")
