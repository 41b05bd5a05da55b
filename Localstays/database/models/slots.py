"""
Advertising Slot Models - 广告位模型

广告位以房东为键，listing_id 为空表示"空闲、可复用"的订阅广告位。
ad_model 通过 `AdvertisingSlot.terms` 暴露为带标签的变体：
SubscriptionTerms（有到期时间 / 补偿天数 / 续订标志）或 CommissionTerms（无）。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar, Union

from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from Localstays.utils.timeutils import utc_now
from .base import Base, AdModel

R = TypeVar("R")


@dataclass(frozen=True)
class SubscriptionTerms:
    expires_at: datetime
    review_compensation_days: int
    do_not_renew: bool
    is_past_due: bool
    marked_for_immediate_expiry: bool


@dataclass(frozen=True)
class CommissionTerms:
    pass


SlotTerms = Union[SubscriptionTerms, CommissionTerms]


def fold_terms(
    terms: SlotTerms,
    subscription: Callable[[SubscriptionTerms], R],
    commission: Callable[[CommissionTerms], R],
) -> R:
    """Exhaustive dispatch over the ad-model variant."""
    if isinstance(terms, SubscriptionTerms):
        return subscription(terms)
    if isinstance(terms, CommissionTerms):
        return commission(terms)
    raise TypeError(f"Unknown slot terms: {terms!r}")


def new_slot_id() -> str:
    return f"slot_{uuid.uuid4()}"


class AdvertisingSlot(Base):
    """广告位表"""
    __tablename__ = "advertising_slots"

    slot_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_slot_id)
    host_id: Mapped[str] = mapped_column(String(64), index=True)
    listing_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)
    ad_model: Mapped[str] = mapped_column(String(20), index=True)
    plan_id_at_creation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    activated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    review_compensation_days: Mapped[int] = mapped_column(Integer, default=0)
    do_not_renew: Mapped[bool] = mapped_column(Boolean, default=False)
    is_past_due: Mapped[bool] = mapped_column(Boolean, default=False)
    marked_for_immediate_expiry: Mapped[bool] = mapped_column(Boolean, default=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_empty(self) -> bool:
        return self.listing_id is None

    @property
    def terms(self) -> SlotTerms:
        if self.ad_model == AdModel.SUBSCRIPTION.value:
            return SubscriptionTerms(
                expires_at=self.expires_at,
                review_compensation_days=self.review_compensation_days or 0,
                do_not_renew=bool(self.do_not_renew),
                is_past_due=bool(self.is_past_due),
                marked_for_immediate_expiry=bool(self.marked_for_immediate_expiry),
            )
        if self.ad_model == AdModel.COMMISSION.value:
            return CommissionTerms()
        raise ValueError(f"Slot {self.slot_id} has unknown ad model {self.ad_model!r}")

    def apply_terms(self, terms: SlotTerms) -> None:
        """Switch the slot to the given variant, clearing fields the other variant owns."""
        if isinstance(terms, SubscriptionTerms):
            self.ad_model = AdModel.SUBSCRIPTION.value
            self.expires_at = terms.expires_at
            self.review_compensation_days = terms.review_compensation_days
            self.do_not_renew = terms.do_not_renew
            self.is_past_due = terms.is_past_due
            self.marked_for_immediate_expiry = terms.marked_for_immediate_expiry
        elif isinstance(terms, CommissionTerms):
            self.ad_model = AdModel.COMMISSION.value
            self.expires_at = None
            self.review_compensation_days = 0
            self.do_not_renew = False
            self.is_past_due = False
            self.marked_for_immediate_expiry = False
        else:
            raise TypeError(f"Unknown slot terms: {terms!r}")

    def __repr__(self) -> str:
        return f"<AdvertisingSlot {self.slot_id} host={self.host_id} listing={self.listing_id} model={self.ad_model}>"


__all__ = [
    "AdvertisingSlot",
    "SubscriptionTerms",
    "CommissionTerms",
    "SlotTerms",
    "fold_terms",
    "new_slot_id",
]
