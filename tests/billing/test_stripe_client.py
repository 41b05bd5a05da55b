"""StripeClient configuration guards and webhook signature verification."""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from Localstays.services.stripe_service import StripeClient, to_plain
from Localstays.utils.exceptions import APIException, ConfigException


def sign(payload: str, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def client(settings):
    return StripeClient(api_key="sk_test_123", webhook_secret="whsec_test")


def test_construct_event_verifies_signature(client):
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}})
    event = client.construct_event(payload.encode("utf-8"), sign(payload, "whsec_test", int(time.time())))
    assert event["type"] == "invoice.paid"
    assert event["data"]["object"]["id"] == "in_1"


def test_construct_event_rejects_forged_signature(client):
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {}})
    with pytest.raises(stripe.SignatureVerificationError):
        client.construct_event(payload.encode("utf-8"), sign(payload, "whsec_other", int(time.time())))


def test_missing_webhook_secret(settings):
    client = StripeClient(api_key="sk_test_123")
    client.webhook_secret = None
    with pytest.raises(ConfigException):
        client.construct_event(b"{}", "t=1,v1=abc")


def test_missing_api_key(settings):
    client = StripeClient()
    client.api_key = None
    with pytest.raises(ConfigException):
        client.retrieve_subscription("sub_1")


def test_sdk_errors_become_api_exceptions(client, monkeypatch):
    def _fail(*args, **kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.Subscription, "retrieve", _fail)
    with pytest.raises(APIException):
        client.retrieve_subscription("sub_1")


def test_to_plain_accepts_dicts():
    assert to_plain({"id": "sub_1"}) == {"id": "sub_1"}
