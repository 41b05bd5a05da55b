"""System webhook notifications: signing, retries, best-effort delivery."""

import hashlib
import hmac
import json

import httpx
import pytest

from Localstays.config.settings import NotificationConfig
from Localstays.observability.logging import LogContext
from Localstays.services import notification_service
from Localstays.services.notification_service import NotificationService


@pytest.fixture
def webhook_env(monkeypatch):
    monkeypatch.setenv("SYSTEM_WEBHOOK_URL", "https://notify.example.com/hook")
    monkeypatch.setenv("SYSTEM_WEBHOOK_SECRET", "s3cret")
    monkeypatch.setenv("SYSTEM_WEBHOOK_ENABLED", "true")


class FakePost:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, url, content=None, headers=None, timeout=None):
        self.calls.append({"url": url, "content": content, "headers": headers})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome)


def test_disabled_without_configuration(monkeypatch):
    monkeypatch.delenv("SYSTEM_WEBHOOK_URL", raising=False)
    fake = FakePost()
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    NotificationService().emit_event("slots.expired", {"count": 1}, host_id="host_1")
    assert fake.calls == []


def test_signed_delivery(webhook_env, monkeypatch):
    fake = FakePost(200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)

    NotificationService().emit_event("billing.payment_failed", {"invoice_id": "in_1"}, host_id="host_1")

    call = fake.calls[0]
    payload = json.loads(call["content"])
    assert payload["event_type"] == "billing.payment_failed"
    assert payload["host_id"] == "host_1"
    expected = hmac.new(b"s3cret", call["content"], hashlib.sha256).hexdigest()
    assert call["headers"]["X-Webhook-Signature"] == f"sha256={expected}"
    assert call["headers"]["X-Webhook-Event-Id"] == payload["event_id"]


def test_retries_server_errors(webhook_env, monkeypatch):
    fake = FakePost(httpx.ConnectError("refused"), 503, 200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    NotificationService().emit_event("slots.expiring_soon", {"count": 2})
    assert len(fake.calls) == 3


def test_client_errors_are_not_retried(webhook_env, monkeypatch):
    fake = FakePost(400, 200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    result = NotificationService()._deliver_webhook("https://notify.example.com/hook", "s3cret", {"a": 1})
    assert result == {"status": "failed", "error": "HTTP 400"}
    assert len(fake.calls) == 1


def test_delivery_failure_never_raises(webhook_env, monkeypatch):
    fake = FakePost(500, 500, 500)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    NotificationService().emit_event("listing.published", {"listing_id": "l1"})
    assert len(fake.calls) == 3


def test_rate_limited_delivery_is_retried_with_same_event_id(webhook_env, monkeypatch):
    fake = FakePost(429, 200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    NotificationService().emit_event("slots.expired", {"count": 1})
    assert len(fake.calls) == 2
    ids = {call["headers"]["X-Webhook-Event-Id"] for call in fake.calls}
    assert len(ids) == 1


def test_request_id_is_forwarded(webhook_env, monkeypatch):
    fake = FakePost(200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    with LogContext(request_id="req-7"):
        NotificationService().emit_event("listing.published", {"listing_id": "l1"})
    assert json.loads(fake.calls[0]["content"])["request_id"] == "req-7"


def test_explicit_config_overrides_environment(monkeypatch):
    for name in ("SYSTEM_WEBHOOK_URL", "SYSTEM_WEBHOOK_SECRET", "SYSTEM_WEBHOOK_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    fake = FakePost(200)
    monkeypatch.setattr(notification_service.httpx, "post", fake)
    config = NotificationConfig(webhook_url="https://hooks.example.com/ls", webhook_secret="k", enabled=True)
    NotificationService(config).emit_event("billing.subscription_created", {"plan_id": "pro"})
    assert fake.calls[0]["url"] == "https://hooks.example.com/ls"
