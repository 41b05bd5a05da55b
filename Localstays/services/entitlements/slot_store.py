"""
Slot Store - advertising slot records.

Indexed by host (``host_id``), by listing (``listing_id``, unique while
attached) and by expiry (``expires_at``). Every mutation targets one row and
commits on its own; rows carry a version counter so a lost concurrent update
raises ConflictError instead of overwriting.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from Localstays.database.models import AdModel, AdvertisingSlot
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.utils.exceptions import ConflictError, NotFoundError
from Localstays.utils.timeutils import utc_now

logger = get_module_logger(LogModule.ENTITLEMENT)


class SlotStore:
    def __init__(self, db: Session):
        self.db = db

    # -- reads -----------------------------------------------------------

    def get(self, slot_id: str) -> Optional[AdvertisingSlot]:
        return self.db.get(AdvertisingSlot, slot_id)

    def require(self, slot_id: str) -> AdvertisingSlot:
        slot = self.get(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found", {"slot_id": slot_id})
        return slot

    def get_by_listing(self, listing_id: str) -> Optional[AdvertisingSlot]:
        stmt = select(AdvertisingSlot).where(AdvertisingSlot.listing_id == listing_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_host(self, host_id: str, ad_model: Optional[AdModel] = None) -> List[AdvertisingSlot]:
        stmt = select(AdvertisingSlot).where(AdvertisingSlot.host_id == host_id)
        if ad_model is not None:
            stmt = stmt.where(AdvertisingSlot.ad_model == ad_model.value)
        stmt = stmt.order_by(AdvertisingSlot.created_at, AdvertisingSlot.slot_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_empty(self, host_id: str) -> List[AdvertisingSlot]:
        stmt = select(AdvertisingSlot).where(
            AdvertisingSlot.host_id == host_id,
            AdvertisingSlot.ad_model == AdModel.SUBSCRIPTION.value,
            AdvertisingSlot.listing_id.is_(None),
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_attached_subscription_slots(self, host_id: str) -> int:
        stmt = select(func.count()).select_from(AdvertisingSlot).where(
            AdvertisingSlot.host_id == host_id,
            AdvertisingSlot.ad_model == AdModel.SUBSCRIPTION.value,
            AdvertisingSlot.listing_id.is_not(None),
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def count_commission_slots(self, host_id: str) -> int:
        stmt = select(func.count()).select_from(AdvertisingSlot).where(
            AdvertisingSlot.host_id == host_id,
            AdvertisingSlot.ad_model == AdModel.COMMISSION.value,
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def list_expiring_before(self, cutoff: datetime) -> List[AdvertisingSlot]:
        """Subscription slots with ``expires_at <= cutoff``, earliest first."""
        stmt = (
            select(AdvertisingSlot)
            .where(
                AdvertisingSlot.expires_at.is_not(None),
                AdvertisingSlot.expires_at <= cutoff,
            )
            .order_by(AdvertisingSlot.expires_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_expiring_between(self, start: datetime, end: datetime) -> List[AdvertisingSlot]:
        stmt = (
            select(AdvertisingSlot)
            .where(
                AdvertisingSlot.expires_at.is_not(None),
                AdvertisingSlot.expires_at > start,
                AdvertisingSlot.expires_at <= end,
            )
            .order_by(AdvertisingSlot.expires_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_attached(self, host_id: Optional[str] = None) -> List[AdvertisingSlot]:
        stmt = select(AdvertisingSlot).where(AdvertisingSlot.listing_id.is_not(None))
        if host_id is not None:
            stmt = stmt.where(AdvertisingSlot.host_id == host_id)
        return list(self.db.execute(stmt).scalars().all())

    # -- writes ----------------------------------------------------------

    def _commit(self, slot_id: str) -> None:
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            raise ConflictError(
                f"Slot {slot_id} was modified concurrently or conflicts with an existing slot",
                {"slot_id": slot_id},
            ) from e

    def add(self, slot: AdvertisingSlot) -> AdvertisingSlot:
        self.db.add(slot)
        self._commit(slot.slot_id)
        return slot

    def save(self, slot: AdvertisingSlot) -> AdvertisingSlot:
        self._commit(slot.slot_id)
        return slot

    def delete(self, slot: AdvertisingSlot) -> None:
        slot_id = slot.slot_id
        self.db.delete(slot)
        self._commit(slot_id)

    def attach_listing_if_empty(self, host_id: str, slot_id: str, listing_id: str) -> bool:
        """Conditional write: attach only while the slot is an empty subscription slot of ``host_id``.

        Returns:
            True when this call won the slot, False when nothing matched
        """
        stmt = (
            update(AdvertisingSlot)
            .where(
                AdvertisingSlot.slot_id == slot_id,
                AdvertisingSlot.host_id == host_id,
                AdvertisingSlot.ad_model == AdModel.SUBSCRIPTION.value,
                AdvertisingSlot.listing_id.is_(None),
            )
            .values(
                listing_id=listing_id,
                version_id=AdvertisingSlot.version_id + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"Listing {listing_id} is already attached to another slot",
                {"listing_id": listing_id, "slot_id": slot_id},
            ) from e
        return result.rowcount == 1


__all__ = ["SlotStore"]
