"""
Database Models - 数据库模型

统一导出所有 ORM 模型。

导入方式:
    from Localstays.database.models import Base, HostSubscription, AdvertisingSlot, ...
"""

from __future__ import annotations

from .base import Base, SubscriptionStatus, BillingPeriod, AdModel, ListingStatus
from .billing import HostSubscription, CatalogProduct, CatalogPrice, can_publish_ads
from .slots import (
    AdvertisingSlot,
    SubscriptionTerms,
    CommissionTerms,
    SlotTerms,
    fold_terms,
    new_slot_id,
)
from .listings import Listing

__all__ = [
    "Base",
    "SubscriptionStatus",
    "BillingPeriod",
    "AdModel",
    "ListingStatus",
    "HostSubscription",
    "CatalogProduct",
    "CatalogPrice",
    "can_publish_ads",
    "AdvertisingSlot",
    "SubscriptionTerms",
    "CommissionTerms",
    "SlotTerms",
    "fold_terms",
    "new_slot_id",
    "Listing",
]
