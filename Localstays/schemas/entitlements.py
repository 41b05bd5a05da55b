"""
Entitlement Schemas - 订阅权益 / 广告位相关的 Pydantic 模型
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field, ConfigDict

from Localstays.schemas.common import BaseSchema


class AvailabilityReason(str, Enum):
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    SUBSCRIPTION_PAST_DUE = "SUBSCRIPTION_PAST_DUE"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    NO_TOKENS_AVAILABLE = "NO_TOKENS_AVAILABLE"
    COMMISSION_SLOT_LIMIT_REACHED = "COMMISSION_SLOT_LIMIT_REACHED"


class ConversionDirection(str, Enum):
    TO_COMMISSION = "TO_COMMISSION"
    TO_SUBSCRIPTION = "TO_SUBSCRIPTION"


class TokenAvailability(BaseSchema):
    """订阅广告位可用性"""
    host_id: str
    total: int = Field(0, description="套餐包含的广告位数量")
    used: int = Field(0, description="已挂载房源的订阅广告位数量")
    available: int = Field(0, description="max(0, total - used)")
    can_publish: bool = False
    reason: Optional[AvailabilityReason] = None
    status: Optional[str] = Field(None, description="订阅状态，没有订阅时为空")

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "host_id": "host_123",
                "total": 3,
                "used": 3,
                "available": 0,
                "can_publish": False,
                "reason": "NO_TOKENS_AVAILABLE",
                "status": "ACTIVE",
            }
        },
    )


class CommissionAvailability(BaseSchema):
    """佣金模式广告位可用性（软上限）"""
    used: int
    limit: int
    can_publish: bool
    reason: Optional[AvailabilityReason] = None


class EmptySlotView(BaseSchema):
    """可复用的空闲广告位"""
    slot_id: str
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    activated_at: datetime
    created_at: datetime


class PublishingOptions(BaseSchema):
    host_id: str
    subscription: TokenAvailability
    commission: CommissionAvailability
    empty_slots: List[EmptySlotView] = Field(default_factory=list)


class SlotView(BaseSchema):
    """广告位详情（带展示状态）"""
    slot_id: str
    listing_id: Optional[str] = None
    ad_model: str
    activated_at: datetime
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    review_compensation_days: int = 0
    do_not_renew: bool = False
    is_past_due: bool = False
    display_status: str


class SlotsSummary(BaseSchema):
    host_id: str
    total_slots: int
    total_tokens: int
    available_tokens: int
    slots: List[SlotView] = Field(default_factory=list)


class PublishRequest(BaseSchema):
    """上架请求：指定 ad_model，或指定一个要复用的空闲广告位"""
    ad_model: str = Field("SUBSCRIPTION", description="SUBSCRIPTION 或 COMMISSION")
    reuse_slot_id: Optional[str] = Field(None, description="要复用的空闲广告位 ID")


class PublishResult(BaseSchema):
    listing_id: str
    slot_id: str
    ad_model: str
    expires_at: Optional[datetime] = None
    reused_slot: bool = False
    status: str


class ConvertSlotRequest(BaseSchema):
    direction: ConversionDirection


class DoNotRenewRequest(BaseSchema):
    do_not_renew: bool


class ListingProjection(BaseSchema):
    listing_id: str
    status: str
    active_slot_id: Optional[str] = None
    slot_expires_at: Optional[datetime] = None
    slot_do_not_renew: Optional[bool] = None
    slot_past_due: Optional[bool] = None


__all__ = [
    "AvailabilityReason",
    "ConversionDirection",
    "TokenAvailability",
    "CommissionAvailability",
    "EmptySlotView",
    "PublishingOptions",
    "SlotView",
    "SlotsSummary",
    "PublishRequest",
    "PublishResult",
    "ConvertSlotRequest",
    "DoNotRenewRequest",
    "ListingProjection",
]
