"""
Reconciliation Service - operator repairs

- rebuild the listing slot projection from the slot store alone
- find provider subscriptions no host is linked to (lost checkout events)
- relink such a subscription to a host by replaying checkout semantics
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from Localstays.database.models import Listing
from Localstays.observability.logging import LogContext, LogModule, get_module_logger
from Localstays.schemas.billing import EventResult, OrphanSubscription
from Localstays.services.billing_sync_service import BillingEventSynchronizer
from Localstays.services.entitlements.slot_store import SlotStore
from Localstays.services.entitlements.subscription_store import SubscriptionStore
from Localstays.services.publish_service import apply_projection
from Localstays.services.stripe_service import StripeClient
from Localstays.utils.exceptions import APIException, ConflictError, ValidationError

logger = get_module_logger(LogModule.SYSTEM)

# Provider statuses worth linking; ended subscriptions are ignored
RELINKABLE_STATUSES = ("active", "trialing", "past_due")


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        *,
        stripe_client: Optional[StripeClient] = None,
        synchronizer: Optional[BillingEventSynchronizer] = None,
    ):
        self.db = db
        self.slots = SlotStore(db)
        self.subscriptions = SubscriptionStore(db)
        self._stripe = stripe_client
        self._synchronizer = synchronizer

    @property
    def stripe(self) -> StripeClient:
        if self._stripe is None:
            self._stripe = StripeClient()
        return self._stripe

    @property
    def synchronizer(self) -> BillingEventSynchronizer:
        if self._synchronizer is None:
            self._synchronizer = BillingEventSynchronizer(self.db, stripe_client=self.stripe)
        return self._synchronizer

    def rebuild_listing_projection(self, host_id: Optional[str] = None) -> int:
        """Rewrite every listing's slot projection; returns the number of listings changed."""
        stmt = select(Listing).where(Listing.is_deleted.is_(False))
        if host_id is not None:
            stmt = stmt.where(Listing.host_id == host_id)
        listings = list(self.db.execute(stmt).scalars().all())
        slots_by_listing = {slot.listing_id: slot for slot in self.slots.list_attached(host_id)}

        changed = 0
        for listing in listings:
            if apply_projection(listing, slots_by_listing.get(listing.listing_id)):
                changed += 1
        if changed:
            self.db.commit()
        logger.info(f"Rebuilt listing projection: {changed}/{len(listings)} listing(s) changed")
        return changed

    def find_orphan_subscriptions(self) -> List[OrphanSubscription]:
        """Live provider subscriptions whose customer is not linked to any host."""
        linked = set(self.subscriptions.linked_customer_ids())
        orphans: List[OrphanSubscription] = []
        for subscription in self.stripe.list_subscriptions():
            if subscription.get("status") not in RELINKABLE_STATUSES:
                continue
            if subscription.get("customer") in linked:
                continue
            reference = None
            try:
                reference = self.stripe.find_checkout_reference(subscription["id"])
            except APIException as e:
                logger.warning(f"Could not look up checkout for {subscription['id']}: {e.message}")
            orphans.append(
                OrphanSubscription(
                    stripe_subscription_id=subscription["id"],
                    stripe_customer_id=subscription.get("customer"),
                    status=subscription.get("status"),
                    client_reference_id=reference,
                )
            )
        logger.info(f"Found {len(orphans)} orphaned subscription(s)")
        return orphans

    def relink_orphan(self, host_id: str, stripe_subscription_id: str) -> EventResult:
        """Link a provider subscription to ``host_id`` as if its checkout had completed.

        Raises:
            ValidationError: the subscription carries no customer
            ConflictError: the customer is already linked to another host
            APIException: the provider lookup failed
        """
        with LogContext(host_id=host_id):
            live = self.stripe.retrieve_subscription(stripe_subscription_id)
            customer_id = live.get("customer")
            if not customer_id:
                raise ValidationError(f"Subscription {stripe_subscription_id} has no customer")

            linked = self.subscriptions.get_by_customer_id(customer_id)
            if linked is not None and linked.host_id != host_id:
                raise ConflictError(
                    f"Customer {customer_id} is already linked to host {linked.host_id}",
                    {"customer_id": customer_id, "host_id": linked.host_id},
                )
            logger.info(f"Relinking subscription {stripe_subscription_id} to host {host_id}")
            return self.synchronizer.link_checkout(host_id, customer_id, stripe_subscription_id)


__all__ = ["ReconciliationService", "RELINKABLE_STATUSES"]
