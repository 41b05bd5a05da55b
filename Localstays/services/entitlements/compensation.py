"""
Review compensation.

Time a listing spends waiting for its first moderation decision is returned
to the host as bonus days on the slot's expiry. The bonus burns down with
wall-clock time after activation and is recomputed from the stored snapshot
on every renewal, never kept as a running balance.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from Localstays.utils.exceptions import ValidationError

MAX_REVIEW_COMPENSATION_DAYS = 60

_DAY = timedelta(days=1)


def review_compensation_days(
    submitted_at: Optional[datetime],
    first_decision_at: Optional[datetime],
    max_days: int = MAX_REVIEW_COMPENSATION_DAYS,
) -> int:
    """Whole days between submission and first decision, clamped to [0, max_days].

    Raises:
        ValidationError: if either timestamp is missing or ``max_days`` is negative
    """
    if submitted_at is None or first_decision_at is None:
        raise ValidationError(
            "Both submission and first decision timestamps are required",
            {"submitted_at": submitted_at, "first_decision_at": first_decision_at},
        )
    if max_days < 0:
        raise ValidationError("max_days must be non-negative", {"max_days": max_days})

    days = math.ceil((first_decision_at - submitted_at) / _DAY)
    return max(0, min(days, max_days))


def remaining_compensation(original_days: int, activated_at: datetime, now: datetime) -> int:
    """``max(0, original_days - days elapsed since activation)``."""
    if not original_days or original_days <= 0:
        return 0
    elapsed = max(0, math.ceil((now - activated_at) / _DAY))
    return max(0, original_days - elapsed)


__all__ = [
    "MAX_REVIEW_COMPENSATION_DAYS",
    "review_compensation_days",
    "remaining_compensation",
]
