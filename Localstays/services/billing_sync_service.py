"""
Billing Event Synchronizer - Stripe event stream -> subscription / slot state

Stripe events reach us at-least-once, possibly out of order, either one at a
time through the signed webhook or in batches from the event queue. Every
mutation below is written to be safe under redelivery:

- checkout.session.completed is the only creator of a host subscription; it
  reads live subscription state from Stripe instead of trusting the payload
- customer.subscription.created is a no-op until that host link exists
- update-type events require the host link and fail loudly without it, so
  the message is redelivered instead of silently dropped
- renewals only ever extend slot expiries; plan changes may shorten them
- compensation is recomputed from elapsed time, never accumulated

Malformed envelopes (no event type) can never succeed and are dropped; any
other failure is reported per message so only that message is redelivered.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from Localstays.database.models import HostSubscription, SubscriptionStatus
from Localstays.observability.logging import LogContext, LogModule, get_module_logger
from Localstays.schemas.billing import (
    BatchItemFailure,
    BatchResponse,
    BillingEventEnvelope,
    EventResult,
    QueueMessage,
)
from Localstays.services.entitlements.catalog import extract_plan_id
from Localstays.services.entitlements.engine import EntitlementEngine
from Localstays.services.notification_service import NotificationService
from Localstays.services.stripe_service import StripeClient
from Localstays.utils.exceptions import APIException, MalformedEventError, NotFoundError
from Localstays.utils.timeutils import from_timestamp, utc_now

logger = get_module_logger(LogModule.BILLING)

_STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
    "unpaid": SubscriptionStatus.EXPIRED,
    "paused": SubscriptionStatus.ACTIVE,
}

# Invoices for these reasons are handled by the checkout / subscription.updated paths
SKIPPED_BILLING_REASONS = ("subscription_create", "subscription_update")


def map_stripe_status(status: Optional[str]) -> SubscriptionStatus:
    mapped = _STRIPE_STATUS_MAP.get(status or "")
    if mapped is None:
        logger.warning(f"Unknown Stripe subscription status {status!r}, treating as INCOMPLETE")
        return SubscriptionStatus.INCOMPLETE
    return mapped


def _first_item(subscription_obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription_obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _subscription_period(subscription_obj: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Subscription-level period, falling back to the first item's period."""
    item = _first_item(subscription_obj)
    start = subscription_obj.get("current_period_start") or item.get("current_period_start")
    end = subscription_obj.get("current_period_end") or item.get("current_period_end")
    return from_timestamp(start), from_timestamp(end)


def _invoice_subscription_id(invoice_obj: Dict[str, Any]) -> Optional[str]:
    parent = invoice_obj.get("parent") or {}
    details = parent.get("subscription_details") or {}
    subscription = details.get("subscription") or invoice_obj.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _invoice_period(invoice_obj: Dict[str, Any], subscription_id: str) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Period of the subscription line item, falling back to the invoice period."""
    for line in (invoice_obj.get("lines") or {}).get("data") or []:
        parent = line.get("parent") or {}
        item_details = parent.get("subscription_item_details") or {}
        line_subscription = item_details.get("subscription") or line.get("subscription")
        if line_subscription == subscription_id or line.get("type") == "subscription":
            period = line.get("period") or {}
            if period.get("end"):
                return from_timestamp(period.get("start")), from_timestamp(period.get("end"))
    return from_timestamp(invoice_obj.get("period_start")), from_timestamp(invoice_obj.get("period_end"))


def _message_id(record: Any) -> Optional[str]:
    if isinstance(record, QueueMessage):
        return record.message_id
    if isinstance(record, dict):
        return record.get("messageId") or record.get("message_id")
    return None

class BillingEventSynchronizer:
    """Consumes Stripe events and drives subscription / slot mutations"""

    def __init__(
        self,
        db: Session,
        *,
        stripe_client: Optional[StripeClient] = None,
        engine: Optional[EntitlementEngine] = None,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            db: Database session
            stripe_client: Stripe read access (live subscription state)
            engine: Entitlement engine sharing ``db``
            notifications: Best-effort notification emitter
            clock: Source of "now" (naive UTC)
        """
        self.db = db
        self.engine = engine or EntitlementEngine(db, clock=clock)
        self.subscriptions = self.engine.subscriptions
        self.catalog = self.engine.catalog
        self.stripe = stripe_client or StripeClient()
        self.notifications = notifications or NotificationService()
        self._clock = clock

        self._handlers: Dict[str, Callable[[BillingEventEnvelope], EventResult]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_created,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_payment_failed,
            "customer.deleted": self._handle_customer_deleted,
            "product.created": self._handle_product_upsert,
            "product.updated": self._handle_product_upsert,
            "product.deleted": self._handle_product_deleted,
            "price.created": self._handle_price_upsert,
            "price.updated": self._handle_price_upsert,
            "price.deleted": self._handle_price_deleted,
        }

    # ==================================================================
    # Entry points
    # ==================================================================

    @staticmethod
    def parse_message(body: Union[str, bytes, Dict[str, Any]]) -> BillingEventEnvelope:
        """Queue message body -> event envelope (unwraps an event-bus ``detail``)

        Raises:
            MalformedEventError: body is not JSON or carries no event type
        """
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except (TypeError, ValueError) as e:
                raise MalformedEventError(f"Message body is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise MalformedEventError("Message body is not an object")

        detail = body.get("detail", body)
        if not isinstance(detail, dict) or not detail.get("type"):
            raise MalformedEventError("Event envelope has no type", {"keys": sorted(body.keys())})
        return BillingEventEnvelope.model_validate(detail)

    def process_batch(self, records: Iterable[Union[QueueMessage, Dict[str, Any]]]) -> BatchResponse:
        """Process a queue batch; returns only the messages that should be redelivered."""
        failures: List[BatchItemFailure] = []
        processed = 0
        dropped = 0

        for raw in records:
            message_id = _message_id(raw)
            try:
                record = raw if isinstance(raw, QueueMessage) else QueueMessage.model_validate(raw)
            except SchemaValidationError as e:
                # 缺少 body 等字段的记录永远无法成功，直接丢弃
                dropped += 1
                logger.error(f"Dropping unreadable queue record {message_id}: {e.error_count()} error(s)")
                continue
            try:
                envelope = self.parse_message(record.body)
                self.handle_event(envelope)
                processed += 1
            except MalformedEventError as e:
                dropped += 1
                logger.error(f"Dropping malformed message {record.message_id}: {e.message}")
            except Exception as e:
                self.db.rollback()
                failures.append(BatchItemFailure(item_identifier=record.message_id))
                logger.error(f"Failed to process message {record.message_id}: {e}", exc_info=True)

        logger.info(
            f"Batch finished: {processed} processed, {dropped} dropped, {len(failures)} failed"
        )
        return BatchResponse(batch_item_failures=failures)

    def handle_event(self, envelope: Union[BillingEventEnvelope, Dict[str, Any]]) -> EventResult:
        """Dispatch one event by type

        Raises:
            MalformedEventError: event has no type or no payload object
            Exception: any processing error (the message should be retried)
        """
        if not isinstance(envelope, BillingEventEnvelope):
            envelope = BillingEventEnvelope.model_validate(envelope)
        if not envelope.type:
            raise MalformedEventError("Event envelope has no type")

        with LogContext(event_id=envelope.id):
            handler = self._handlers.get(envelope.type)
            if handler is None:
                logger.info(f"Unhandled event type: {envelope.type}")
                return EventResult(success=True, action="UNHANDLED", details={"type": envelope.type})
            if not envelope.payload:
                raise MalformedEventError(f"Event {envelope.id} ({envelope.type}) has no data.object")

            result = handler(envelope)
            logger.info(f"Processed {envelope.type} ({envelope.id}): {result.action}")
            return result

    # ==================================================================
    # Helpers
    # ==================================================================

    def now(self) -> datetime:
        return self._clock()

    def _notify(self, event_type: str, data: Dict[str, Any], host_id: Optional[str]) -> None:
        try:
            self.notifications.emit_event(event_type, data, host_id=host_id)
        except Exception as e:
            logger.warning(f"Notification {event_type} for host {host_id} failed: {e}")

    def _require_by_customer(self, customer_id: Optional[str], event_type: str) -> HostSubscription:
        record = self.subscriptions.get_by_customer_id(customer_id) if customer_id else None
        if record is None:
            raise NotFoundError(
                f"No host subscription linked to customer {customer_id} ({event_type})",
                {"customer_id": customer_id, "event_type": event_type},
            )
        return record

    def _apply_live_state(self, record: HostSubscription, subscription_obj: Dict[str, Any]) -> None:
        """Copy plan, status, period, trial and cancellation fields from a Stripe subscription."""
        item = _first_item(subscription_obj)
        price = item.get("price") or {}
        price_id = price.get("id")
        plan_id = extract_plan_id(price) if price else None

        plan = self.catalog.resolve_plan(price_id=price_id, plan_id=plan_id) if (price_id or plan_id) else None
        if plan is not None:
            record.plan_id = plan.plan_id
            record.total_tokens = plan.ad_slots
        else:
            logger.warning(
                f"No catalog entry for price {price_id}; host {record.host_id} keeps "
                f"{'its token count' if record.price_id == price_id else '0 tokens'} until the catalog syncs"
            )
            if record.price_id != price_id:
                record.total_tokens = 0
            record.plan_id = plan_id or record.plan_id or "pending"
        record.price_id = price_id or record.price_id

        record.status = map_stripe_status(subscription_obj.get("status")).value
        period_start, period_end = _subscription_period(subscription_obj)
        if period_end is not None:
            record.current_period_start = period_start
            record.current_period_end = period_end
        record.trial_start = from_timestamp(subscription_obj.get("trial_start"))
        record.trial_end = from_timestamp(subscription_obj.get("trial_end"))

        cancel_at = subscription_obj.get("cancel_at")
        record.cancel_at_period_end = bool(subscription_obj.get("cancel_at_period_end") or cancel_at)
        record.cancelled_at = from_timestamp(cancel_at or subscription_obj.get("canceled_at"))
        if record.started_at is None:
            record.started_at = from_timestamp(subscription_obj.get("start_date")) or self.now()

    # ==================================================================
    # Subscription lifecycle
    # ==================================================================

    def link_checkout(self, host_id: str, customer_id: str, subscription_id: str) -> EventResult:
        """Create (or link) the host subscription from live Stripe state.

        Also used to relink orphaned subscriptions whose checkout event was lost.
        """
        existing = self.subscriptions.get(host_id)
        if existing is not None and existing.status != SubscriptionStatus.INCOMPLETE.value:
            existing.stripe_customer_id = customer_id
            existing.stripe_subscription_id = subscription_id
            self.subscriptions.save(existing)
            logger.info(f"Linked existing subscription of host {host_id} to {subscription_id}")
            return EventResult(
                success=True,
                action="SUBSCRIPTION_LINKED",
                details={"host_id": host_id, "subscription_id": subscription_id},
            )

        live: Optional[Dict[str, Any]] = None
        try:
            live = self.stripe.retrieve_subscription(subscription_id)
        except APIException as e:
            logger.warning(f"Could not fetch subscription {subscription_id}, linking ids only: {e.message}")

        record = existing or HostSubscription(
            host_id=host_id,
            plan_id="pending",
            total_tokens=0,
            status=SubscriptionStatus.INCOMPLETE.value,
        )
        record.stripe_customer_id = customer_id
        record.stripe_subscription_id = subscription_id
        if live is not None:
            self._apply_live_state(record, live)
        self.subscriptions.save(record)

        extended = 0
        period_end = record.effective_period_end
        if live is not None and record.can_publish_ads and period_end is not None:
            extended = self.engine.extend_slots_at_renewal(host_id, period_end)

        logger.info(
            f"Created subscription record for host {host_id} "
            f"({record.plan_id}, {record.total_tokens} tokens, {record.status})"
        )
        self._notify(
            "billing.subscription_started",
            {"plan_id": record.plan_id, "tokens": record.total_tokens, "status": record.status},
            host_id,
        )
        return EventResult(
            success=True,
            action="SUBSCRIPTION_CREATED",
            details={
                "host_id": host_id,
                "plan_id": record.plan_id,
                "status": record.status,
                "live_state": live is not None,
                "slots_extended": extended,
            },
        )

    def _handle_checkout_completed(self, envelope: BillingEventEnvelope) -> EventResult:
        session = envelope.payload
        host_id = session.get("client_reference_id")
        customer_id = session.get("customer")
        subscription_id = session.get("subscription")
        if not host_id or not customer_id or not subscription_id:
            logger.warning(
                f"Checkout session {session.get('id')} missing host/customer/subscription, ignoring"
            )
            return EventResult(success=True, action="CHECKOUT_IGNORED", details={"session_id": session.get("id")})
        return self.link_checkout(host_id, customer_id, subscription_id)

    def _handle_subscription_created(self, envelope: BillingEventEnvelope) -> EventResult:
        subscription_obj = envelope.payload
        record = self.subscriptions.get_by_customer_id(subscription_obj.get("customer"))
        if record is None:
            # checkout.session.completed owns creation
            logger.info(
                f"No host linked to customer {subscription_obj.get('customer')} yet, "
                f"deferring subscription {subscription_obj.get('id')} to checkout completion"
            )
            return EventResult(success=True, action="SUBSCRIPTION_CREATED_DEFERRED")

        record.stripe_subscription_id = subscription_obj.get("id")
        self._apply_live_state(record, subscription_obj)
        self.subscriptions.save(record)

        extended = 0
        period_end = record.effective_period_end
        if record.can_publish_ads and period_end is not None:
            extended = self.engine.extend_slots_at_renewal(record.host_id, period_end)
        return EventResult(
            success=True,
            action="SUBSCRIPTION_CREATED",
            details={"host_id": record.host_id, "slots_extended": extended},
        )

    def _handle_subscription_updated(self, envelope: BillingEventEnvelope) -> EventResult:
        subscription_obj = envelope.payload
        record = self._require_by_customer(subscription_obj.get("customer"), envelope.type)

        previous_status = record.status
        previous_period_end = record.current_period_end
        previous_tokens = record.total_tokens

        record.stripe_subscription_id = subscription_obj.get("id") or record.stripe_subscription_id
        self._apply_live_state(record, subscription_obj)

        trial_converted = (
            previous_status == SubscriptionStatus.TRIALING.value
            and record.status == SubscriptionStatus.ACTIVE.value
        )
        if trial_converted:
            record.trial_start = None
            record.trial_end = None
        self.subscriptions.save(record)

        updated = 0
        if record.current_period_end is not None and record.current_period_end != previous_period_end:
            updated = self.engine.update_slots_to_new_period(record.host_id, record.current_period_end)

        if trial_converted:
            self._notify("billing.trial_converted", {"plan_id": record.plan_id}, record.host_id)
        if record.total_tokens != previous_tokens:
            logger.info(f"Host {record.host_id} tokens {previous_tokens} -> {record.total_tokens}")

        return EventResult(
            success=True,
            action="SUBSCRIPTION_UPDATED",
            details={
                "host_id": record.host_id,
                "status": record.status,
                "tokens": record.total_tokens,
                "cancel_at_period_end": record.cancel_at_period_end,
                "trial_converted": trial_converted,
                "slots_updated": updated,
            },
        )

    def _handle_subscription_deleted(self, envelope: BillingEventEnvelope) -> EventResult:
        subscription_obj = envelope.payload
        record = self.subscriptions.get_by_customer_id(subscription_obj.get("customer"))
        if record is None and subscription_obj.get("id"):
            record = self.subscriptions.get_by_stripe_subscription_id(subscription_obj["id"])
        if record is None:
            logger.info(f"Subscription {subscription_obj.get('id')} has no host record, already deleted")
            return EventResult(success=True, action="SUBSCRIPTION_ALREADY_DELETED")

        immediate = subscription_obj.get("status") == "canceled"
        marked = 0
        if immediate:
            record.status = SubscriptionStatus.CANCELLED.value
            record.cancel_at_period_end = False
            record.cancelled_at = from_timestamp(subscription_obj.get("canceled_at")) or self.now()
            self.subscriptions.save(record)
            marked = self.engine.mark_immediate_expiry(record.host_id)
        else:
            record.cancel_at_period_end = True
            record.cancelled_at = from_timestamp(
                subscription_obj.get("cancel_at") or subscription_obj.get("canceled_at")
            )
            self.subscriptions.save(record)

        self._notify(
            "billing.subscription_cancelled",
            {"immediate": immediate, "slots_marked": marked},
            record.host_id,
        )
        return EventResult(
            success=True,
            action="SUBSCRIPTION_CANCELLED",
            details={"host_id": record.host_id, "immediate": immediate, "slots_marked": marked},
        )

    def _handle_invoice_paid(self, envelope: BillingEventEnvelope) -> EventResult:
        invoice_obj = envelope.payload
        subscription_id = _invoice_subscription_id(invoice_obj)
        if not subscription_id:
            logger.info(f"Invoice {invoice_obj.get('id')} is not a subscription invoice, skipping")
            return EventResult(success=True, action="INVOICE_SKIPPED", details={"reason": "no_subscription"})
        billing_reason = invoice_obj.get("billing_reason")
        if billing_reason in SKIPPED_BILLING_REASONS:
            logger.info(f"Invoice {invoice_obj.get('id')} ({billing_reason}) handled by subscription events")
            return EventResult(success=True, action="INVOICE_SKIPPED", details={"reason": billing_reason})

        record = self._require_by_customer(invoice_obj.get("customer"), envelope.type)
        period_start, period_end = _invoice_period(invoice_obj, subscription_id)
        if period_end is None:
            raise MalformedEventError(f"Invoice {invoice_obj.get('id')} carries no billing period")

        was_past_due = record.status == SubscriptionStatus.PAST_DUE.value
        record.status = SubscriptionStatus.ACTIVE.value
        if record.current_period_end is None or period_end > record.current_period_end:
            record.current_period_start = period_start
            record.current_period_end = period_end
        self.subscriptions.save(record)

        purged = self.engine.purge_empty_slots(record.host_id)
        extended = self.engine.extend_slots_at_renewal(record.host_id, period_end)
        if was_past_due:
            self.engine.mark_past_due(record.host_id, False)

        self._notify(
            "billing.subscription_renewed",
            {"period_end": period_end, "slots_extended": extended},
            record.host_id,
        )
        return EventResult(
            success=True,
            action="SUBSCRIPTION_RENEWED",
            details={
                "host_id": record.host_id,
                "slots_extended": extended,
                "empty_slots_purged": purged,
                "past_due_cleared": was_past_due,
            },
        )

    def _handle_payment_failed(self, envelope: BillingEventEnvelope) -> EventResult:
        invoice_obj = envelope.payload
        if not _invoice_subscription_id(invoice_obj):
            return EventResult(success=True, action="INVOICE_SKIPPED", details={"reason": "no_subscription"})

        record = self._require_by_customer(invoice_obj.get("customer"), envelope.type)
        record.status = SubscriptionStatus.PAST_DUE.value
        self.subscriptions.save(record)
        marked = self.engine.mark_past_due(record.host_id, True)

        self._notify(
            "billing.payment_failed",
            {"invoice_id": invoice_obj.get("id"), "slots_marked": marked},
            record.host_id,
        )
        return EventResult(
            success=True,
            action="PAYMENT_FAILED",
            details={"host_id": record.host_id, "slots_marked": marked},
        )

    def _handle_customer_deleted(self, envelope: BillingEventEnvelope) -> EventResult:
        customer_id = envelope.payload.get("id")
        record = self.subscriptions.get_by_customer_id(customer_id) if customer_id else None
        if record is None:
            return EventResult(success=True, action="CUSTOMER_NOT_LINKED", details={"customer_id": customer_id})
        host_id = record.host_id
        self.subscriptions.delete(record)
        return EventResult(success=True, action="SUBSCRIPTION_DELETED", details={"host_id": host_id})

    # ==================================================================
    # Catalog mirror
    # ==================================================================

    def _handle_product_upsert(self, envelope: BillingEventEnvelope) -> EventResult:
        record = self.catalog.upsert_product(envelope.payload)
        action = "PRODUCT_SYNCED" if record is not None else "PRODUCT_SKIPPED"
        return EventResult(success=True, action=action, details={"product_id": envelope.payload.get("id")})

    def _handle_product_deleted(self, envelope: BillingEventEnvelope) -> EventResult:
        found = self.catalog.deactivate_product(envelope.payload.get("id"))
        return EventResult(success=True, action="PRODUCT_DEACTIVATED", details={"found": found})

    def _handle_price_upsert(self, envelope: BillingEventEnvelope) -> EventResult:
        record = self.catalog.upsert_price(envelope.payload)
        action = "PRICE_SYNCED" if record is not None else "PRICE_SKIPPED"
        return EventResult(success=True, action=action, details={"price_id": envelope.payload.get("id")})

    def _handle_price_deleted(self, envelope: BillingEventEnvelope) -> EventResult:
        found = self.catalog.deactivate_price(envelope.payload.get("id"))
        return EventResult(success=True, action="PRICE_DEACTIVATED", details={"found": found})


__all__ = ["BillingEventSynchronizer", "map_stripe_status", "SKIPPED_BILLING_REASONS"]
