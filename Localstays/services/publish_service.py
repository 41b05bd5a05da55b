"""
Listing Publish Service - 房源上下线编排

Thin orchestration between listing lifecycle transitions and the entitlement
engine:

- publish: readiness check, then reuse a caller-chosen empty slot or create a
  new slot of the requested model
- unpublish: listing goes offline, its slot stays attached and keeps its token
- delete: commission slots are deleted, subscription slots become empty
- after every slot mutation the listing's slot projection is rewritten
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from Localstays.database.models import AdModel, AdvertisingSlot, Listing, ListingStatus, fold_terms
from Localstays.observability.logging import LogContext, LogModule, get_module_logger
from Localstays.schemas.entitlements import (
    ConversionDirection,
    EmptySlotView,
    ListingProjection,
    PublishRequest,
    PublishResult,
    SlotView,
)
from Localstays.services.entitlements.engine import EntitlementEngine
from Localstays.services.notification_service import NotificationService
from Localstays.utils.exceptions import NotFoundError, StateError, ValidationError
from Localstays.utils.timeutils import utc_now

logger = get_module_logger(LogModule.LISTING)

READY_STATUSES = (ListingStatus.APPROVED.value, ListingStatus.OFFLINE.value)


def default_readiness(listing: Listing) -> bool:
    """Content checks (images, location, pricing) happen upstream; here only the review outcome counts."""
    return listing.status in READY_STATUSES


def apply_projection(listing: Listing, slot: Optional[AdvertisingSlot]) -> bool:
    """Copy slot fields onto the listing. Returns True when anything changed."""
    if slot is None:
        values = (None, None, None, None)
    else:
        values = (slot.slot_id, slot.expires_at, bool(slot.do_not_renew), bool(slot.is_past_due))
    current = (listing.active_slot_id, listing.slot_expires_at, listing.slot_do_not_renew, listing.slot_past_due)
    if current == values:
        return False
    (
        listing.active_slot_id,
        listing.slot_expires_at,
        listing.slot_do_not_renew,
        listing.slot_past_due,
    ) = values
    return True


def to_projection(listing: Listing) -> ListingProjection:
    return ListingProjection(
        listing_id=listing.listing_id,
        status=listing.status,
        active_slot_id=listing.active_slot_id,
        slot_expires_at=listing.slot_expires_at,
        slot_do_not_renew=listing.slot_do_not_renew,
        slot_past_due=listing.slot_past_due,
    )


class ListingPublishService:
    """Publish / unpublish / delete orchestration for listings"""

    def __init__(
        self,
        db: Session,
        *,
        engine: Optional[EntitlementEngine] = None,
        readiness: Optional[Callable[[Listing], bool]] = None,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.engine = engine or EntitlementEngine(db, clock=clock)
        self.readiness = readiness or default_readiness
        self.notifications = notifications or NotificationService()
        self._clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _require_listing(self, host_id: str, listing_id: str) -> Listing:
        listing = self.db.get(Listing, listing_id)
        if listing is None or listing.is_deleted or listing.host_id != host_id:
            raise NotFoundError(f"Listing {listing_id} not found for host {host_id}", {"listing_id": listing_id})
        return listing

    def _notify(self, event_type: str, data: Dict[str, Any], host_id: str) -> None:
        try:
            self.notifications.emit_event(event_type, data, host_id=host_id)
        except Exception as e:
            logger.warning(f"Notification {event_type} for host {host_id} failed: {e}")

    def refresh_projection(self, listing: Listing) -> ListingProjection:
        """Rewrite the listing's slot projection from the slot store."""
        slot = self.engine.slots.get_by_listing(listing.listing_id)
        if apply_projection(listing, slot):
            self.db.commit()
        return to_projection(listing)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def publish(self, host_id: str, listing_id: str, request: Optional[PublishRequest] = None) -> PublishResult:
        """Take a listing online, consuming a token or a commission slot.

        Raises:
            NotFoundError: unknown listing or reuse slot
            ValidationError: unknown ad model, or slot reuse requested for commission
            StateError: listing not ready, no token, commission cap, expired reuse slot
            ConflictError: reuse slot lost to a concurrent publish or not empty
        """
        request = request or PublishRequest()
        with LogContext(host_id=host_id, listing_id=listing_id):
            listing = self._require_listing(host_id, listing_id)
            if listing.status == ListingStatus.ONLINE.value:
                raise StateError(f"Listing {listing_id} is already online", {"listing_id": listing_id})
            if not self.readiness(listing):
                raise StateError(
                    f"Listing {listing_id} is not ready to publish (status {listing.status})",
                    {"listing_id": listing_id, "status": listing.status},
                )
            try:
                ad_model = AdModel(request.ad_model)
            except ValueError as e:
                raise ValidationError(f"Unknown ad model {request.ad_model!r}") from e

            reused = False
            slot = self.engine.slots.get_by_listing(listing_id)
            if slot is not None and (slot.expires_at is None or slot.expires_at > self._clock()):
                # unpublished earlier, the slot stayed attached
                logger.info(f"Republishing listing {listing_id} on its existing slot {slot.slot_id}")
            elif slot is not None:
                raise StateError(
                    f"Slot {slot.slot_id} of listing {listing_id} has expired",
                    {"slot_id": slot.slot_id},
                )
            elif request.reuse_slot_id:
                if ad_model != AdModel.SUBSCRIPTION:
                    raise ValidationError("Only subscription ads can reuse an empty slot")
                slot = self.engine.attach_listing_to_empty_slot(host_id, request.reuse_slot_id, listing_id)
                reused = True
            elif ad_model == AdModel.SUBSCRIPTION:
                slot = self.engine.create_subscription_slot(
                    host_id,
                    listing_id,
                    listing_created_at=listing.submitted_at,
                    first_decision_at=listing.first_review_decision_at,
                )
            else:
                slot = self.engine.create_commission_slot(host_id, listing_id)

            listing.status = ListingStatus.ONLINE.value
            apply_projection(listing, slot)
            self.db.commit()
            logger.info(f"Published listing {listing_id} on {slot.ad_model} slot {slot.slot_id}")

            self._notify(
                "listing.published",
                {"listing_id": listing_id, "slot_id": slot.slot_id, "ad_model": slot.ad_model},
                host_id,
            )
            return PublishResult(
                listing_id=listing_id,
                slot_id=slot.slot_id,
                ad_model=slot.ad_model,
                expires_at=slot.expires_at,
                reused_slot=reused,
                status=listing.status,
            )

    def unpublish(self, host_id: str, listing_id: str) -> ListingProjection:
        """Take a listing offline. Its slot is untouched and still counts against tokens."""
        with LogContext(host_id=host_id, listing_id=listing_id):
            listing = self._require_listing(host_id, listing_id)
            if listing.status != ListingStatus.ONLINE.value:
                raise StateError(
                    f"Listing {listing_id} is not online (status {listing.status})",
                    {"listing_id": listing_id, "status": listing.status},
                )
            listing.status = ListingStatus.OFFLINE.value
            self.db.commit()
            logger.info(f"Unpublished listing {listing_id}")
            self._notify("listing.unpublished", {"listing_id": listing_id}, host_id)
            return self.refresh_projection(listing)

    def delete_listing(self, host_id: str, listing_id: str) -> Dict[str, Any]:
        """Soft-delete a listing and release its slot (delete commission, detach subscription)."""
        with LogContext(host_id=host_id, listing_id=listing_id):
            listing = self._require_listing(host_id, listing_id)
            slot = self.engine.slots.get_by_listing(listing_id)

            slot_id = slot.slot_id if slot is not None else None
            slot_action = None
            if slot is not None:
                slot_action = fold_terms(
                    slot.terms,
                    subscription=lambda _terms: "DETACHED",
                    commission=lambda _terms: "DELETED",
                )
                if slot_action == "DELETED":
                    self.engine.delete_slot(slot)
                else:
                    self.engine.detach_listing(slot)

            listing.is_deleted = True
            listing.deleted_at = self._clock()
            listing.status = ListingStatus.ARCHIVED.value
            apply_projection(listing, None)
            self.db.commit()
            logger.info(f"Deleted listing {listing_id} (slot {slot_id}: {slot_action})")
            return {"listing_id": listing_id, "slot_id": slot_id, "slot_action": slot_action}

    # ------------------------------------------------------------------
    # slot settings
    # ------------------------------------------------------------------

    def convert_slot(
        self, host_id: str, listing_id: str, direction: Union[ConversionDirection, str]
    ) -> SlotView:
        with LogContext(host_id=host_id, listing_id=listing_id):
            listing = self._require_listing(host_id, listing_id)
            slot = self.engine.slots.get_by_listing(listing_id)
            if slot is None:
                raise NotFoundError(f"Listing {listing_id} holds no slot", {"listing_id": listing_id})
            slot = self.engine.convert_slot(slot, direction)
            self.refresh_projection(listing)
            return self.engine.slot_view(slot, self.engine.subscriptions.get(host_id))

    def set_slot_do_not_renew(self, host_id: str, slot_id: str, do_not_renew: bool) -> SlotView:
        with LogContext(host_id=host_id):
            slot = self.engine.set_slot_do_not_renew(host_id, slot_id, do_not_renew)
            if slot.listing_id:
                listing = self.db.get(Listing, slot.listing_id)
                if listing is not None:
                    self.refresh_projection(listing)
            return self.engine.slot_view(slot, self.engine.subscriptions.get(host_id))

    def list_empty_slots(self, host_id: str) -> List[EmptySlotView]:
        return self.engine.list_empty_slots(host_id)


__all__ = [
    "ListingPublishService",
    "READY_STATUSES",
    "apply_projection",
    "default_readiness",
    "to_projection",
]
