"""Tests for the HTTP surface: batch entry point, mail webhook, subscriptions, health."""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from ticketflow.config import MailIngestConfig, settings
from ticketflow.database import get_db
from ticketflow.errors import GraphApiError
from ticketflow.main import app
from ticketflow.middleware.auth import create_automation_token
from ticketflow.schemas.mail import SubscriptionResponse

PREFIX = settings.api_prefix


@pytest.fixture
def client(session):
    app.dependency_overrides[get_db] = lambda: session
    with patch.object(settings, "automation_secret", "s3cret"), \
         patch.object(settings, "admin_token", "adm1n"), \
         patch.object(settings, "email_provider", ""), \
         patch.object(settings, "directory_sync_url", ""), \
         patch.object(settings, "support_system_user_id", ""), \
         patch.object(settings, "graph_client_state", "state-123"):
        yield TestClient(app)
    app.dependency_overrides.clear()


class TestAutomationRun:
    def test_secret_header(self, client):
        resp = client.post(f"{PREFIX}/automation/run", headers={"X-Automation-Secret": "s3cret"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["limit"] == 200
        assert data["slaBreaches"] == {"scanned": 0, "firstBreaches": 0, "resolutionBreaches": 0, "failed": 0}
        assert data["escalationAdvances"]["notifyFailed"] == 0
        assert "cutoff" in data["autoClosePending"]
        assert data["directorySync"] is None

    def test_bearer_secret(self, client):
        resp = client.post(f"{PREFIX}/automation/run", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_bearer_jwt(self, client):
        token = create_automation_token("cron")
        resp = client.post(f"{PREFIX}/automation/run", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_wrong_secret(self, client):
        resp = client.post(f"{PREFIX}/automation/run", headers={"X-Automation-Secret": "nope"})
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_missing_secret_is_server_error(self, client):
        with patch.object(settings, "automation_secret", ""):
            resp = client.post(f"{PREFIX}/automation/run", headers={"X-Automation-Secret": ""})
        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert "TICKETFLOW_AUTOMATION_SECRET" in body["details"]

    def test_limit_clamped(self, client):
        resp = client.post(f"{PREFIX}/automation/run", json={"limit": 9999},
                           headers={"X-Automation-Secret": "s3cret"})
        assert resp.json()["limit"] == 500

    def test_malformed_body_uses_defaults(self, client):
        resp = client.post(f"{PREFIX}/automation/run", content=b"{not json",
                           headers={"X-Automation-Secret": "s3cret"})
        assert resp.status_code == 200
        assert resp.json()["limit"] == 200

    def test_null_sync_flag_uses_defaults(self, client):
        resp = client.post(f"{PREFIX}/automation/run", json={"run_directory_sync": None},
                           headers={"X-Automation-Secret": "s3cret"})
        assert resp.status_code == 200
        assert resp.json()["directorySync"] is None

    def test_overflowing_limit_is_clamped(self, client):
        resp = client.post(f"{PREFIX}/automation/run", content=b'{"limit": 1e999}',
                           headers={"X-Automation-Secret": "s3cret", "Content-Type": "application/json"})
        assert resp.status_code == 200
        assert resp.json()["limit"] == 500

    def test_wrongly_typed_limit_uses_default(self, client):
        resp = client.post(f"{PREFIX}/automation/run", json={"limit": [1, 2]},
                           headers={"X-Automation-Secret": "s3cret"})
        assert resp.status_code == 200
        assert resp.json()["limit"] == 200

    def test_directory_sync_via_query(self, client):
        with patch.object(settings, "directory_sync_url", "https://dir.example.com/sync"), \
             patch("ticketflow.workers.automation.trigger_directory_sync",
                   return_value={"ok": True, "upserted": 3}) as sync:
            resp = client.post(f"{PREFIX}/automation/run?run_directory_sync=1",
                               headers={"X-Automation-Secret": "s3cret"})
        assert resp.json()["directorySync"] == {"ok": True, "upserted": 3}
        sync.assert_called_once_with("https://dir.example.com/sync", "s3cret")

    def test_directory_sync_not_configured(self, client):
        resp = client.post(f"{PREFIX}/automation/run", json={"run_directory_sync": True},
                           headers={"X-Automation-Secret": "s3cret"})
        assert resp.json()["directorySync"]["ok"] is False


class TestMailWebhook:
    def _notification(self, state="state-123", message_id="AAMk-1"):
        return {
            "subscriptionId": "sub-1",
            "clientState": state,
            "changeType": "created",
            "resource": f"Users/x/Messages/{message_id}",
            "resourceData": {"id": message_id},
        }

    def test_validation_handshake_get(self, client):
        resp = client.get(f"{PREFIX}/mail/webhook", params={"validationToken": "abc 123"})
        assert resp.status_code == 200
        assert resp.text == "abc 123"
        assert resp.headers["content-type"].startswith("text/plain")

    def test_plain_get_is_ok(self, client):
        resp = client.get(f"{PREFIX}/mail/webhook")
        assert resp.status_code == 200
        assert resp.text == "OK"

    def test_validation_handshake_post(self, client):
        resp = client.post(f"{PREFIX}/mail/webhook?validationToken=tok")
        assert resp.status_code == 200
        assert resp.text == "tok"

    def test_invalid_json(self, client):
        resp = client.post(f"{PREFIX}/mail/webhook", content=b"<xml/>")
        assert resp.status_code == 400

    def test_enqueues_only_valid_notifications(self, client):
        queue = MagicMock()
        with patch("ticketflow.api.mail.get_queue", return_value=queue):
            resp = client.post(f"{PREFIX}/mail/webhook", json={"value": [
                self._notification(),
                self._notification(state="forged", message_id="AAMk-2"),
                self._notification(message_id="AAMk-3"),
            ]})

        assert resp.status_code == 202
        assert queue.enqueue.call_count == 2
        args, kwargs = queue.enqueue.call_args_list[0]
        assert args[0] == "ticketflow.workers.email_correlator.process_mail_notification"
        assert args[1]["resourceData"]["id"] == "AAMk-1"
        assert kwargs["job_timeout"] == 300

    def test_queue_failure_still_acknowledged(self, client):
        queue = MagicMock()
        queue.enqueue.side_effect = ConnectionError("redis down")
        with patch("ticketflow.api.mail.get_queue", return_value=queue):
            resp = client.post(f"{PREFIX}/mail/webhook", json={"value": [self._notification()]})
        assert resp.status_code == 202


class TestSubscriptions:
    def setup_method(self):
        self.config = MailIngestConfig(
            tenant_id="t", client_id="c", client_secret="s", client_state="state-123",
            shared_mailbox="support@example.com", system_user_id=uuid.uuid4(),
            webhook_url="https://api.example.com/api/v1/mail/webhook",
        )

    def test_requires_admin(self, client):
        assert client.post(f"{PREFIX}/mail/subscriptions").status_code == 401

    def test_create(self, client):
        graph = MagicMock()
        graph.create_subscription.return_value = SubscriptionResponse(
            id="sub-1", expirationDateTime="2025-03-10T12:55:00Z",
        )
        with patch("ticketflow.api.mail.MailIngestConfig.from_settings", return_value=self.config), \
             patch("ticketflow.api.mail.GraphMailClient", return_value=graph):
            resp = client.post(f"{PREFIX}/mail/subscriptions", headers={"X-Admin-Token": "adm1n"})

        assert resp.status_code == 201
        assert resp.json()["id"] == "sub-1"
        assert resp.json()["expirationDateTime"] == "2025-03-10T12:55:00Z"
        graph.close.assert_called_once()

    def test_renew_graph_error(self, client):
        graph = MagicMock()
        graph.renew_subscription.side_effect = GraphApiError("Renew subscription failed: 404", 404)
        with patch("ticketflow.api.mail.MailIngestConfig.from_settings", return_value=self.config), \
             patch("ticketflow.api.mail.GraphMailClient", return_value=graph):
            resp = client.post(f"{PREFIX}/mail/subscriptions/sub-1/renew", headers={"X-Admin-Token": "adm1n"})
        assert resp.status_code == 502

    def test_missing_mail_config(self, client):
        resp = client.post(f"{PREFIX}/mail/subscriptions", headers={"X-Admin-Token": "adm1n"})
        assert resp.status_code == 500


class TestHealth:
    def test_healthy(self, client, engine):
        with patch("ticketflow.api.health.get_engine", return_value=engine), \
             patch("ticketflow.api.health.redis_lib.from_url", return_value=MagicMock()):
            resp = client.get(f"{PREFIX}/health")
        assert resp.json()["status"] == "healthy"

    def test_metrics(self, client):
        resp = client.get(f"{PREFIX}/metrics")
        assert resp.status_code == 200
        assert "automation_runs_total" in resp.text
