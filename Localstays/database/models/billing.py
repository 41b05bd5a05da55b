"""
Billing Domain Models - 计费领域模型

包含房东订阅记录，以及从 Stripe 镜像的只读产品 / 价格目录。
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Text, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from Localstays.utils.timeutils import utc_now
from .base import Base, SubscriptionStatus


class HostSubscription(Base):
    """房东订阅表 - 每个房东至多一条记录"""
    __tablename__ = "host_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    host_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    plan_id: Mapped[str] = mapped_column(String(255), default="pending")
    price_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=SubscriptionStatus.INCOMPLETE.value, index=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    trial_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trial_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)
    # 每次占用令牌时递增，使并发发布在同一行上竞争版本号
    token_claims: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def can_publish_ads(self) -> bool:
        return can_publish_ads(self.status)

    @property
    def is_in_grace_period(self) -> bool:
        return self.status == SubscriptionStatus.PAST_DUE.value

    @property
    def effective_period_end(self) -> Optional[datetime]:
        """试用期内返回试用结束时间，否则返回当前计费周期结束时间"""
        if self.status == SubscriptionStatus.TRIALING.value and self.trial_end:
            return self.trial_end
        return self.current_period_end

    def __repr__(self) -> str:
        return f"<HostSubscription host={self.host_id} plan={self.plan_id} status={self.status}>"


def can_publish_ads(status: Optional[str]) -> bool:
    return status in (SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value)


class CatalogProduct(Base):
    """Stripe 产品镜像 - plan → 广告位数量"""
    __tablename__ = "catalog_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    stripe_product_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    plan_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ad_slots: Mapped[int] = mapped_column(Integer, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, default=99)
    features: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON list
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class CatalogPrice(Base):
    """Stripe 价格镜像 - price → 计费周期"""
    __tablename__ = "catalog_prices"

    id: Mapped[int] = mapped_column(primary_key=True)
    stripe_price_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    stripe_product_id: Mapped[str] = mapped_column(String(255), index=True)
    amount: Mapped[int] = mapped_column(Integer, default=0)  # Amount in cents
    currency: Mapped[str] = mapped_column(String(3), default="eur")
    billing_period: Mapped[str] = mapped_column(String(20))
    interval: Mapped[str] = mapped_column(String(10))
    interval_count: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


__all__ = [
    "HostSubscription",
    "CatalogProduct",
    "CatalogPrice",
    "can_publish_ads",
]
