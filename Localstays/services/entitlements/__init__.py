"""
Entitlements - 订阅权益与广告位核算
"""

from .catalog import CatalogService, PlanInfo, stripe_to_billing_period, extract_plan_id
from .engine import EntitlementEngine
from .feature_flags import FeatureFlagProvider, get_feature_flags
from .slot_store import SlotStore
from .subscription_store import SubscriptionStore

__all__ = [
    "CatalogService",
    "PlanInfo",
    "stripe_to_billing_period",
    "extract_plan_id",
    "EntitlementEngine",
    "FeatureFlagProvider",
    "get_feature_flags",
    "SlotStore",
    "SubscriptionStore",
]
