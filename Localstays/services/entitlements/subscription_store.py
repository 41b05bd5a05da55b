"""
Subscription Store - one entitlement record per host.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from Localstays.database.models import HostSubscription
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.utils.exceptions import ConflictError, NotFoundError

logger = get_module_logger(LogModule.ENTITLEMENT)


class SubscriptionStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, host_id: str) -> Optional[HostSubscription]:
        stmt = select(HostSubscription).where(HostSubscription.host_id == host_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def require(self, host_id: str) -> HostSubscription:
        subscription = self.get(host_id)
        if subscription is None:
            raise NotFoundError(f"No subscription found for host {host_id}", {"host_id": host_id})
        return subscription

    def get_by_customer_id(self, stripe_customer_id: str) -> Optional[HostSubscription]:
        stmt = select(HostSubscription).where(HostSubscription.stripe_customer_id == stripe_customer_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_stripe_subscription_id(self, stripe_subscription_id: str) -> Optional[HostSubscription]:
        stmt = select(HostSubscription).where(
            HostSubscription.stripe_subscription_id == stripe_subscription_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def linked_customer_ids(self) -> List[str]:
        stmt = select(HostSubscription.stripe_customer_id).where(
            HostSubscription.stripe_customer_id.is_not(None)
        )
        return list(self.db.execute(stmt).scalars().all())

    def save(self, subscription: HostSubscription) -> HostSubscription:
        """Insert or update one record; a concurrent writer surfaces as ConflictError."""
        self.db.add(subscription)
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            raise ConflictError(
                f"Concurrent update of subscription for host {subscription.host_id}",
                {"host_id": subscription.host_id},
            ) from e
        return subscription

    def delete(self, subscription: HostSubscription) -> None:
        host_id = subscription.host_id
        self.db.delete(subscription)
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise ConflictError(f"Subscription for host {host_id} changed during delete") from e
        logger.info(f"Deleted subscription record for host {host_id}")


__all__ = ["SubscriptionStore"]
