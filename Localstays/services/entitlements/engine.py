"""
Entitlement Engine - 订阅权益 / 广告位核算

Reconciles a host's subscription (a token allowance with a billing cycle)
against the host's advertising slots:

- token availability and commission eligibility checks
- slot creation, conversion between ad models, reuse of empty slots
- renewal (monotonic, extend-only) and plan change (unconditional) recomputation
- past-due / immediate-expiry flagging used by the payment-failure flow

Every mutation targets a single subscription or slot row. Expiry enforcement
itself is left to the periodic sweep in ``slot_expiry_service``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy.orm import Session

from Localstays.config.settings import Settings, get_settings
from Localstays.database.models import (
    AdModel,
    AdvertisingSlot,
    CommissionTerms,
    HostSubscription,
    SubscriptionStatus,
    SubscriptionTerms,
    fold_terms,
    new_slot_id,
)
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.schemas.entitlements import (
    AvailabilityReason,
    CommissionAvailability,
    ConversionDirection,
    EmptySlotView,
    PublishingOptions,
    SlotsSummary,
    SlotView,
    TokenAvailability,
)
from Localstays.services.entitlements.catalog import CatalogService
from Localstays.services.entitlements.compensation import (
    remaining_compensation,
    review_compensation_days,
)
from Localstays.services.entitlements.expiry import (
    days_remaining,
    new_slot_expiry,
    renewal_expiry,
    slot_display_status,
)
from Localstays.services.entitlements.feature_flags import FeatureFlagProvider, get_feature_flags
from Localstays.services.entitlements.slot_store import SlotStore
from Localstays.services.entitlements.subscription_store import SubscriptionStore
from Localstays.utils.exceptions import ConflictError, NotFoundError, StateError, ValidationError
from Localstays.utils.timeutils import utc_now

logger = get_module_logger(LogModule.ENTITLEMENT)

_STATUS_REASONS = {
    SubscriptionStatus.PAST_DUE.value: AvailabilityReason.SUBSCRIPTION_PAST_DUE,
    SubscriptionStatus.CANCELLED.value: AvailabilityReason.SUBSCRIPTION_CANCELLED,
    SubscriptionStatus.EXPIRED.value: AvailabilityReason.SUBSCRIPTION_EXPIRED,
}


class EntitlementEngine:
    """Orchestration core over the subscription store, the slot store and the calculators."""

    def __init__(
        self,
        db: Session,
        *,
        catalog: Optional[CatalogService] = None,
        flags: Optional[FeatureFlagProvider] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.subscriptions = SubscriptionStore(db)
        self.slots = SlotStore(db)
        self.catalog = catalog or CatalogService(db)
        self.config = (settings or get_settings()).entitlement
        self._flags = flags
        self._clock = clock

    @property
    def flags(self) -> FeatureFlagProvider:
        return self._flags or get_feature_flags()

    def now(self) -> datetime:
        return self._clock()

    # ==================================================================
    # Availability
    # ==================================================================

    def token_availability(self, host_id: str) -> TokenAvailability:
        """Subscription-model availability for ``host_id``.

        ``used`` counts subscription slots currently attached to a listing;
        empty slots do not consume a token.
        """
        subscription = self.subscriptions.get(host_id)
        if subscription is None:
            return TokenAvailability(
                host_id=host_id,
                can_publish=False,
                reason=AvailabilityReason.NO_SUBSCRIPTION,
            )

        total = subscription.total_tokens or 0
        used = self.slots.count_attached_subscription_slots(host_id)
        available = max(0, total - used)

        reason = None
        if not subscription.can_publish_ads:
            reason = _STATUS_REASONS.get(subscription.status, AvailabilityReason.SUBSCRIPTION_INACTIVE)
        elif available <= 0:
            reason = AvailabilityReason.NO_TOKENS_AVAILABLE

        return TokenAvailability(
            host_id=host_id,
            total=total,
            used=used,
            available=available,
            can_publish=reason is None,
            reason=reason,
            status=subscription.status,
        )

    def commission_availability(self, host_id: str) -> CommissionAvailability:
        used = self.slots.count_commission_slots(host_id)
        limit = self.config.max_commission_slots_per_host
        can_publish = used < limit
        return CommissionAvailability(
            used=used,
            limit=limit,
            can_publish=can_publish,
            reason=None if can_publish else AvailabilityReason.COMMISSION_SLOT_LIMIT_REACHED,
        )

    def publishing_options(self, host_id: str) -> PublishingOptions:
        return PublishingOptions(
            host_id=host_id,
            subscription=self.token_availability(host_id),
            commission=self.commission_availability(host_id),
            empty_slots=self.list_empty_slots(host_id),
        )

    # ==================================================================
    # Slot creation
    # ==================================================================

    def _ensure_listing_free(self, listing_id: str) -> None:
        existing = self.slots.get_by_listing(listing_id)
        if existing is not None:
            raise ConflictError(
                f"Listing {listing_id} already holds slot {existing.slot_id}",
                {"listing_id": listing_id, "slot_id": existing.slot_id},
            )

    def _fresh_subscription_terms(
        self, subscription: HostSubscription, now: datetime, compensation_days: int = 0
    ) -> SubscriptionTerms:
        """Trial: expire with the trial, no compensation. Otherwise a full period from ``now``."""
        if subscription.status == SubscriptionStatus.TRIALING.value and subscription.trial_end:
            return SubscriptionTerms(
                expires_at=subscription.trial_end,
                review_compensation_days=0,
                do_not_renew=False,
                is_past_due=False,
                marked_for_immediate_expiry=False,
            )
        period = self.catalog.billing_period_for_price(subscription.price_id)
        return SubscriptionTerms(
            expires_at=new_slot_expiry(now, period, compensation_days),
            review_compensation_days=compensation_days,
            do_not_renew=False,
            is_past_due=False,
            marked_for_immediate_expiry=False,
        )

    def _compensation_for(
        self, listing_created_at: Optional[datetime], first_decision_at: Optional[datetime]
    ) -> int:
        if listing_created_at is None or first_decision_at is None:
            return 0
        if not self.flags.review_compensation_enabled():
            return 0
        return review_compensation_days(
            listing_created_at,
            first_decision_at,
            max_days=self.config.max_review_compensation_days,
        )

    @staticmethod
    def _claim_token(subscription: HostSubscription) -> None:
        """Touch the subscription row so the slot write commits under its version check.

        Two requests that both passed the token check race on this row; the
        later commit fails with StaleDataError and surfaces as ConflictError.
        """
        subscription.token_claims = (subscription.token_claims or 0) + 1

    def create_subscription_slot(
        self,
        host_id: str,
        listing_id: str,
        *,
        plan_id: Optional[str] = None,
        subscription: Optional[HostSubscription] = None,
        listing_created_at: Optional[datetime] = None,
        first_decision_at: Optional[datetime] = None,
    ) -> AdvertisingSlot:
        """Create a subscription-model slot for ``listing_id``.

        Args:
            host_id: Owning host
            listing_id: Listing to attach
            plan_id: Plan recorded on the slot, defaults to the subscription's plan
            subscription: Preloaded subscription record, looked up when omitted
            listing_created_at: Submission time of the listing (for compensation)
            first_decision_at: First moderation decision time (for compensation)

        Raises:
            StateError: if the host has no publishable subscription or no free token
            ConflictError: if the listing already holds a slot
        """
        availability = self.token_availability(host_id)
        if not availability.can_publish:
            raise StateError(
                f"Host {host_id} cannot publish a subscription ad: {availability.reason}",
                {"host_id": host_id, "reason": availability.reason},
            )
        if subscription is None or subscription.host_id != host_id:
            subscription = self.subscriptions.require(host_id)
        self._ensure_listing_free(listing_id)

        now = self.now()
        in_trial = subscription.status == SubscriptionStatus.TRIALING.value and subscription.trial_end is not None
        compensation = 0 if in_trial else self._compensation_for(listing_created_at, first_decision_at)
        terms = self._fresh_subscription_terms(subscription, now, compensation)

        slot = AdvertisingSlot(
            slot_id=new_slot_id(),
            host_id=host_id,
            listing_id=listing_id,
            plan_id_at_creation=plan_id or subscription.plan_id,
            activated_at=now,
            created_at=now,
        )
        slot.apply_terms(terms)
        self._claim_token(subscription)
        self.slots.add(slot)
        logger.info(
            f"Created subscription slot {slot.slot_id} for listing {listing_id} "
            f"(host {host_id}, expires {terms.expires_at}, compensation {compensation}d)"
        )
        return slot

    def create_commission_slot(self, host_id: str, listing_id: str) -> AdvertisingSlot:
        """Create a commission-model slot: no expiry, no token, soft per-host cap.

        Raises:
            StateError: if the host reached the commission slot cap
            ConflictError: if the listing already holds a slot
        """
        availability = self.commission_availability(host_id)
        if not availability.can_publish:
            raise StateError(
                f"Host {host_id} reached the commission slot limit ({availability.limit})",
                {"host_id": host_id, "reason": availability.reason},
            )
        self._ensure_listing_free(listing_id)

        now = self.now()
        slot = AdvertisingSlot(
            slot_id=new_slot_id(),
            host_id=host_id,
            listing_id=listing_id,
            activated_at=now,
            created_at=now,
        )
        slot.apply_terms(CommissionTerms())
        self.slots.add(slot)
        logger.info(f"Created commission slot {slot.slot_id} for listing {listing_id} (host {host_id})")
        return slot

    # ==================================================================
    # Conversion / attach / detach / delete
    # ==================================================================

    def require_host_slot(self, host_id: str, slot_id: str) -> AdvertisingSlot:
        slot = self.slots.get(slot_id)
        if slot is None or slot.host_id != host_id:
            raise NotFoundError(f"Slot {slot_id} not found for host {host_id}", {"slot_id": slot_id})
        return slot

    def convert_slot(
        self, slot: Union[AdvertisingSlot, str], direction: Union[ConversionDirection, str]
    ) -> AdvertisingSlot:
        """Switch a slot between the subscription and commission models.

        To commission: expiry and renewal fields are dropped and the token is freed.
        To subscription: needs a publishable subscription with a free token and
        starts a fresh full period (the trial end while trialing).

        Raises:
            ValidationError: unknown direction
            ConflictError: slot already in the requested model
            StateError: missing / past-due subscription, no token, empty slot, commission cap
        """
        try:
            direction = ConversionDirection(direction)
        except ValueError as e:
            raise ValidationError(f"Unknown conversion direction {direction!r}") from e
        if isinstance(slot, str):
            slot = self.slots.require(slot)

        target = AdModel.COMMISSION if direction == ConversionDirection.TO_COMMISSION else AdModel.SUBSCRIPTION
        if slot.ad_model == target.value:
            raise ConflictError(
                f"Slot {slot.slot_id} is already {target.value}",
                {"slot_id": slot.slot_id, "ad_model": slot.ad_model},
            )

        now = self.now()
        if target == AdModel.COMMISSION:
            if slot.is_empty:
                raise StateError(f"Empty slot {slot.slot_id} cannot become a commission slot")
            commission = self.commission_availability(slot.host_id)
            if not commission.can_publish:
                raise StateError(
                    f"Host {slot.host_id} reached the commission slot limit ({commission.limit})",
                    {"reason": commission.reason},
                )
            new_terms = CommissionTerms()
        else:
            subscription = self.subscriptions.get(slot.host_id)
            availability = self.token_availability(slot.host_id)
            if subscription is None or not availability.can_publish:
                raise StateError(
                    f"Host {slot.host_id} cannot convert slot {slot.slot_id} to subscription: {availability.reason}",
                    {"reason": availability.reason},
                )
            new_terms = self._fresh_subscription_terms(subscription, now)
            slot.plan_id_at_creation = subscription.plan_id
            self._claim_token(subscription)

        previous = slot.ad_model
        slot.apply_terms(new_terms)
        slot.activated_at = now
        self.slots.save(slot)
        logger.info(f"Converted slot {slot.slot_id} from {previous} to {slot.ad_model}")
        return slot

    def attach_listing_to_empty_slot(self, host_id: str, slot_id: str, listing_id: str) -> AdvertisingSlot:
        """Reuse an empty subscription slot. No token check: the slot is the reserved token.

        Raises:
            NotFoundError: unknown slot
            StateError: the slot already expired
            ConflictError: slot not empty, not owned by ``host_id``, not a
                subscription slot, or lost to a concurrent request
        """
        slot = self.slots.require(slot_id)
        if slot.expires_at is not None and slot.expires_at <= self.now():
            raise StateError(f"Slot {slot_id} has expired", {"slot_id": slot_id})
        self._ensure_listing_free(listing_id)

        if not self.slots.attach_listing_if_empty(host_id, slot_id, listing_id):
            raise ConflictError(
                f"Slot {slot_id} is not an empty slot of host {host_id}",
                {"slot_id": slot_id, "host_id": host_id},
            )
        logger.info(f"Attached listing {listing_id} to empty slot {slot_id} (host {host_id})")
        return self.slots.require(slot_id)

    def detach_listing(self, slot: AdvertisingSlot) -> AdvertisingSlot:
        """Leave a subscription slot empty and reusable; expiry is unchanged."""

        def _commission(_terms: CommissionTerms) -> None:
            raise StateError(
                f"Commission slot {slot.slot_id} cannot be detached, delete it with its listing",
                {"slot_id": slot.slot_id},
            )

        fold_terms(slot.terms, subscription=lambda _terms: None, commission=_commission)
        listing_id = slot.listing_id
        slot.listing_id = None
        self.slots.save(slot)
        logger.info(f"Detached listing {listing_id} from slot {slot.slot_id}, slot is now empty")
        return slot

    def delete_slot(self, slot: AdvertisingSlot) -> None:
        slot_id = slot.slot_id
        self.slots.delete(slot)
        logger.info(f"Deleted slot {slot_id}")

    def purge_empty_slots(self, host_id: str) -> int:
        """Hard-remove unclaimed empty slots (run at renewal)."""
        purged = 0
        for slot in self.slots.list_empty(host_id):
            self.slots.delete(slot)
            purged += 1
        if purged:
            logger.info(f"Purged {purged} empty slot(s) for host {host_id}")
        return purged

    # ==================================================================
    # Renewal / plan change
    # ==================================================================

    def _recompute_expiry(self, host_id: str, new_period_end: datetime, *, monotonic: bool) -> int:
        now = self.now()
        updated = 0
        for slot in self.slots.list_by_host(host_id, AdModel.SUBSCRIPTION):
            terms = slot.terms
            if terms.do_not_renew:
                continue
            remaining = remaining_compensation(terms.review_compensation_days, slot.activated_at, now)
            new_expiry = renewal_expiry(new_period_end, remaining)
            if monotonic and terms.expires_at is not None and new_expiry <= terms.expires_at:
                logger.debug(
                    f"Slot {slot.slot_id} keeps expiry {terms.expires_at} (renewal computed {new_expiry})"
                )
                continue
            slot.expires_at = new_expiry
            slot.is_past_due = False
            self.slots.save(slot)
            updated += 1
        return updated

    def extend_slots_at_renewal(self, host_id: str, new_period_end: datetime) -> int:
        """Extend eligible slots to ``new_period_end`` + remaining compensation.

        Only applied when the new expiry is strictly later than the current
        one, so a late or prorated renewal never shortens an expiry set by a
        plan change.
        """
        updated = self._recompute_expiry(host_id, new_period_end, monotonic=True)
        logger.info(f"Renewal for host {host_id}: extended {updated} slot(s) to period end {new_period_end}")
        return updated

    def update_slots_to_new_period(self, host_id: str, new_period_end: datetime) -> int:
        """Plan change: recompute eligible slots unconditionally (may shorten)."""
        updated = self._recompute_expiry(host_id, new_period_end, monotonic=False)
        logger.info(f"Plan change for host {host_id}: moved {updated} slot(s) to period end {new_period_end}")
        return updated

    # ==================================================================
    # Flags
    # ==================================================================

    def mark_past_due(self, host_id: str, is_past_due: bool = True) -> int:
        """Set or clear the past-due flag on all subscription slots of the host.

        Clearing also drops any pending immediate-expiry mark.
        """
        changed = 0
        for slot in self.slots.list_by_host(host_id, AdModel.SUBSCRIPTION):
            if slot.is_past_due == is_past_due and (is_past_due or not slot.marked_for_immediate_expiry):
                continue
            slot.is_past_due = is_past_due
            if not is_past_due:
                slot.marked_for_immediate_expiry = False
            self.slots.save(slot)
            changed += 1
        logger.info(f"Host {host_id}: past_due={is_past_due} on {changed} slot(s)")
        return changed

    def mark_immediate_expiry(self, host_id: str) -> int:
        """Mark past-due subscription slots for removal by the next expiry sweep."""
        marked = 0
        for slot in self.slots.list_by_host(host_id, AdModel.SUBSCRIPTION):
            if not slot.is_past_due or slot.marked_for_immediate_expiry:
                continue
            slot.marked_for_immediate_expiry = True
            self.slots.save(slot)
            marked += 1
        logger.info(f"Host {host_id}: marked {marked} slot(s) for immediate expiry")
        return marked

    def set_slot_do_not_renew(self, host_id: str, slot_id: str, do_not_renew: bool) -> AdvertisingSlot:
        slot = self.require_host_slot(host_id, slot_id)
        if slot.ad_model != AdModel.SUBSCRIPTION.value:
            raise StateError(f"Slot {slot_id} is commission-based and has no renewal", {"slot_id": slot_id})
        if slot.do_not_renew != do_not_renew:
            slot.do_not_renew = do_not_renew
            self.slots.save(slot)
            logger.info(f"Slot {slot_id}: do_not_renew={do_not_renew}")
        return slot

    # ==================================================================
    # Views
    # ==================================================================

    def slot_view(self, slot: AdvertisingSlot, subscription: Optional[HostSubscription] = None) -> SlotView:
        now = self.now()
        cancel_at_period_end = bool(subscription and subscription.cancel_at_period_end)
        status = slot_display_status(
            expires_at=slot.expires_at,
            do_not_renew=bool(slot.do_not_renew),
            is_past_due=bool(slot.is_past_due),
            cancel_at_period_end=cancel_at_period_end,
            now=now,
            expiring_soon_days=self.config.expiring_soon_days,
        )
        return SlotView(
            slot_id=slot.slot_id,
            listing_id=slot.listing_id,
            ad_model=slot.ad_model,
            activated_at=slot.activated_at,
            expires_at=slot.expires_at,
            days_remaining=days_remaining(slot.expires_at, now),
            review_compensation_days=slot.review_compensation_days or 0,
            do_not_renew=bool(slot.do_not_renew),
            is_past_due=bool(slot.is_past_due),
            display_status=status.value,
        )

    def slots_summary(self, host_id: str) -> SlotsSummary:
        subscription = self.subscriptions.get(host_id)
        slots = self.slots.list_by_host(host_id)
        availability = self.token_availability(host_id)
        return SlotsSummary(
            host_id=host_id,
            total_slots=len(slots),
            total_tokens=availability.total,
            available_tokens=availability.available,
            slots=[self.slot_view(slot, subscription) for slot in slots],
        )

    def list_empty_slots(self, host_id: str) -> List[EmptySlotView]:
        """Empty subscription slots, longest remaining time first."""
        now = self.now()
        views = [
            EmptySlotView(
                slot_id=slot.slot_id,
                expires_at=slot.expires_at,
                days_remaining=days_remaining(slot.expires_at, now),
                activated_at=slot.activated_at,
                created_at=slot.created_at,
            )
            for slot in self.slots.list_empty(host_id)
        ]
        views.sort(key=lambda v: v.days_remaining or 0, reverse=True)
        return views


__all__ = ["EntitlementEngine"]
