"""
Stripe Service - thin wrapper around the Stripe SDK

Everything the billing pipeline reads from Stripe goes through StripeClient,
returned as plain dicts, so the synchronizer can be exercised with a fake
client in tests. SDK errors are re-raised as APIException; since the queue
redelivers failed messages, a transient Stripe outage is simply retried.

SECURITY NOTE: webhook payloads MUST be verified with construct_event()
before they are handed to the synchronizer.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional

import stripe

from Localstays.config.settings import get_settings
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.utils.exceptions import APIException, ConfigException

logger = get_module_logger(LogModule.BILLING)


def to_plain(obj: Any) -> Dict[str, Any]:
    """StripeObject -> plain (JSON-compatible) dict."""
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return dict(obj)


class StripeClient:
    """Service for read access to Stripe (subscriptions, catalog, webhooks)"""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        billing = get_settings().billing
        self.api_key = api_key or billing.stripe_secret_key
        self.webhook_secret = webhook_secret or billing.stripe_webhook_secret

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigException("STRIPE_SECRET_KEY is not configured")
        return self.api_key

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Fetch live subscription state, with price and product expanded

        Raises:
            APIException: on any Stripe API failure
        """
        try:
            subscription = stripe.Subscription.retrieve(
                subscription_id,
                api_key=self._require_key(),
                expand=["items.data.price.product"],
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise APIException(f"Stripe subscription retrieve failed: {e}", {"subscription_id": subscription_id}) from e
        return to_plain(subscription)

    def list_subscriptions(self, status: str = "all") -> Iterator[Dict[str, Any]]:
        try:
            page = stripe.Subscription.list(status=status, limit=100, api_key=self._require_key())
            for subscription in page.auto_paging_iter():
                yield to_plain(subscription)
        except stripe.StripeError as e:
            raise APIException(f"Stripe subscription list failed: {e}") from e

    def find_checkout_reference(self, subscription_id: str) -> Optional[str]:
        """client_reference_id (host id) of the checkout that created the subscription"""
        try:
            sessions = stripe.checkout.Session.list(
                subscription=subscription_id, limit=1, api_key=self._require_key()
            )
        except stripe.StripeError as e:
            raise APIException(f"Stripe checkout session list failed: {e}") from e
        for session in sessions.data:
            return session.get("client_reference_id")
        return None

    def list_products(self) -> Iterator[Dict[str, Any]]:
        try:
            page = stripe.Product.list(active=True, limit=100, api_key=self._require_key())
            for product in page.auto_paging_iter():
                yield to_plain(product)
        except stripe.StripeError as e:
            raise APIException(f"Stripe product list failed: {e}") from e

    def list_prices(self) -> Iterator[Dict[str, Any]]:
        try:
            page = stripe.Price.list(active=True, type="recurring", limit=100, api_key=self._require_key())
            for price in page.auto_paging_iter():
                yield to_plain(price)
        except stripe.StripeError as e:
            raise APIException(f"Stripe price list failed: {e}") from e

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """Verify a webhook signature and return the event as a dict

        Raises:
            ConfigException: webhook secret missing
            stripe.SignatureVerificationError: invalid signature
            ValueError: invalid payload
        """
        if not self.webhook_secret:
            raise ConfigException("STRIPE_WEBHOOK_SECRET is not configured")
        event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        return to_plain(event)


__all__ = ["StripeClient", "to_plain"]
