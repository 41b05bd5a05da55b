"""
Base Database Models - 基础数据库模型

包含 Base 类和枚举定义。
"""

from __future__ import annotations

from enum import Enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy 声明式基类"""
    pass


class SubscriptionStatus(str, Enum):
    """房东订阅状态（仅由 Stripe 事件或管理员覆盖驱动）"""
    INCOMPLETE = "INCOMPLETE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class BillingPeriod(str, Enum):
    """计费周期"""
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    YEARLY = "YEARLY"


class AdModel(str, Enum):
    """广告位模式"""
    SUBSCRIPTION = "SUBSCRIPTION"
    COMMISSION = "COMMISSION"


class ListingStatus(str, Enum):
    """房源状态（本模块只关心上架相关的子集）"""
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    LOCKED = "LOCKED"
    ARCHIVED = "ARCHIVED"


__all__ = ["Base", "SubscriptionStatus", "BillingPeriod", "AdModel", "ListingStatus"]
