"""
Listing Projection Model - 房源投影

房源本身由外部服务管理；这里只保存权益引擎读取的时间戳，
以及在每次广告位变更后回写的冗余字段（投影，不是事实来源）。
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from Localstays.utils.timeutils import utc_now
from .base import Base, ListingStatus


class Listing(Base):
    """房源表（投影字段）"""
    __tablename__ = "listings"

    listing_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    host_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default=ListingStatus.DRAFT.value)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    first_review_decision_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # 来自 advertising_slots 的投影
    active_slot_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    slot_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    slot_do_not_renew: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    slot_past_due: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


__all__ = ["Listing"]
