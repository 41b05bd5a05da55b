"""
Services - 业务逻辑层

服务分类:
- 权益核心 (Entitlements): EntitlementEngine, SubscriptionStore, SlotStore, CatalogService
- 编排 (Orchestration): ListingPublishService, BillingEventSynchronizer
- 定时任务 (Sweeps): SlotExpiryService, ReconciliationService
- 基础设施 (Infrastructure): StripeClient, NotificationService

导入方式:
    from Localstays.services import EntitlementEngine, BillingEventSynchronizer
"""

from __future__ import annotations

from .entitlements import (
    CatalogService,
    EntitlementEngine,
    FeatureFlagProvider,
    SlotStore,
    SubscriptionStore,
)
from .notification_service import NotificationService
from .stripe_service import StripeClient
from .billing_sync_service import BillingEventSynchronizer
from .publish_service import ListingPublishService
from .slot_expiry_service import SlotExpiryService
from .reconciliation_service import ReconciliationService

__all__ = [
    "CatalogService",
    "EntitlementEngine",
    "FeatureFlagProvider",
    "SlotStore",
    "SubscriptionStore",
    "NotificationService",
    "StripeClient",
    "BillingEventSynchronizer",
    "ListingPublishService",
    "SlotExpiryService",
    "ReconciliationService",
]
