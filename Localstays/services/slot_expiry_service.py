"""
Slot Expiry Service - periodic sweeps over advertising slots

- process_expired_slots: enforce expiry (listing offline, slot removed)
- send_expiry_warnings: one notification per host for slots about to expire

Each slot is handled independently; a failing slot is logged, rolled back and
counted, and the sweep moves on.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from Localstays.database.models import AdvertisingSlot, Listing, ListingStatus
from Localstays.observability.logging import LogContext, LogModule, get_module_logger
from Localstays.services.entitlements.engine import EntitlementEngine
from Localstays.services.entitlements.expiry import days_remaining
from Localstays.services.notification_service import NotificationService
from Localstays.services.publish_service import apply_projection
from Localstays.utils.timeutils import utc_now

logger = get_module_logger(LogModule.SCHEDULER)


class SlotExpiryService:
    def __init__(
        self,
        db: Session,
        *,
        engine: Optional[EntitlementEngine] = None,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.engine = engine or EntitlementEngine(db, clock=clock)
        self.notifications = notifications or NotificationService()
        self._clock = clock

    def _notify(self, event_type: str, data: Dict[str, Any], host_id: str) -> None:
        try:
            self.notifications.emit_event(event_type, data, host_id=host_id)
        except Exception as e:
            logger.warning(f"Notification {event_type} for host {host_id} failed: {e}")

    @staticmethod
    def _is_due(slot: AdvertisingSlot) -> bool:
        # past-due slots wait for payment recovery unless cancellation marked them
        if slot.is_past_due and not slot.marked_for_immediate_expiry:
            return False
        return True

    def _expire_slot(self, slot: AdvertisingSlot) -> Optional[str]:
        listing_id = slot.listing_id
        if listing_id:
            listing = self.db.get(Listing, listing_id)
            if listing is not None:
                if listing.status == ListingStatus.ONLINE.value:
                    listing.status = ListingStatus.APPROVED.value
                apply_projection(listing, None)
        self.engine.delete_slot(slot)
        return listing_id

    def process_expired_slots(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Remove every due slot with ``expires_at <= now``.

        Returns:
            {"expired": n, "skipped": n, "failed": n}
        """
        now = now or self._clock()
        expired_by_host: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        stats = {"expired": 0, "skipped": 0, "failed": 0}

        for slot in self.engine.slots.list_expiring_before(now):
            if not self._is_due(slot):
                stats["skipped"] += 1
                continue
            host_id, slot_id = slot.host_id, slot.slot_id
            with LogContext(host_id=host_id, listing_id=slot.listing_id):
                try:
                    listing_id = self._expire_slot(slot)
                except Exception as e:
                    self.db.rollback()
                    stats["failed"] += 1
                    logger.error(f"Failed to expire slot {slot_id}: {e}", exc_info=True)
                    continue
            stats["expired"] += 1
            expired_by_host[host_id].append({"slot_id": slot_id, "listing_id": listing_id})

        for host_id, slots in expired_by_host.items():
            self._notify("slots.expired", {"slots": slots, "count": len(slots)}, host_id)

        logger.info(
            f"Expiry sweep at {now}: {stats['expired']} expired, "
            f"{stats['skipped']} past-due skipped, {stats['failed']} failed"
        )
        return stats

    def send_expiry_warnings(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Notify hosts whose attached slots expire within the warning window.

        Returns:
            {"hosts": n, "slots": n}
        """
        now = now or self._clock()
        window_end = now + timedelta(days=self.engine.config.expiry_warning_days)

        by_host: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for slot in self.engine.slots.list_expiring_between(now, window_end):
            if not slot.listing_id:
                continue
            by_host[slot.host_id].append(
                {
                    "slot_id": slot.slot_id,
                    "listing_id": slot.listing_id,
                    "expires_at": slot.expires_at,
                    "days_remaining": days_remaining(slot.expires_at, now),
                    "do_not_renew": bool(slot.do_not_renew),
                }
            )

        for host_id, slots in by_host.items():
            self._notify("slots.expiring_soon", {"slots": slots, "count": len(slots)}, host_id)

        total = sum(len(slots) for slots in by_host.values())
        logger.info(f"Expiry warnings: {total} slot(s) across {len(by_host)} host(s)")
        return {"hosts": len(by_host), "slots": total}


__all__ = ["SlotExpiryService"]
