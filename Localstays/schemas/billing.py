"""
Billing Schemas - Pydantic v2 models for the Stripe event pipeline

- Queue message / event envelope shapes
- Per-event processing results
- Batch responses with per-message failures for selective redelivery
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from Localstays.schemas.common import BaseSchema


class BillingEventEnvelope(BaseModel):
    """Stripe event as delivered by the queue (``detail`` of the bridge message)"""
    id: Optional[str] = Field(None, description="Stripe event ID (evt_*)")
    type: Optional[str] = Field(None, description="Event type, e.g. invoice.paid")
    data: Dict[str, Any] = Field(default_factory=dict, description="{'object': ..., 'previous_attributes': ...}")

    model_config = ConfigDict(extra="allow")

    @property
    def payload(self) -> Dict[str, Any]:
        return self.data.get("object") or {}

    @property
    def previous_attributes(self) -> Dict[str, Any]:
        return self.data.get("previous_attributes") or {}


class QueueMessage(BaseModel):
    """One record of a queue batch"""
    message_id: str = Field(..., alias="messageId")
    body: str

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class QueueBatch(BaseModel):
    """Records stay raw; each is validated on its own so one bad record cannot reject the batch"""
    records: List[Dict[str, Any]] = Field(default_factory=list, alias="Records")

    model_config = ConfigDict(populate_by_name=True)


class BatchItemFailure(BaseModel):
    item_identifier: str = Field(..., serialization_alias="itemIdentifier")


class BatchResponse(BaseModel):
    batch_item_failures: List[BatchItemFailure] = Field(
        default_factory=list, serialization_alias="batchItemFailures"
    )


class EventResult(BaseModel):
    """Outcome of one handled billing event"""
    success: bool
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class HostSubscriptionResponse(BaseSchema):
    """Host subscription details, maps to HostSubscription"""
    host_id: str
    plan_id: str
    price_id: Optional[str] = None
    total_tokens: int
    status: str
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "host_id": "host_123",
                "plan_id": "pro",
                "price_id": "price_1MonthlyPro",
                "total_tokens": 5,
                "status": "ACTIVE",
                "current_period_start": "2026-01-01T00:00:00",
                "current_period_end": "2026-02-01T00:00:00",
                "cancel_at_period_end": False,
            }
        },
    )


class OrphanSubscription(BaseModel):
    stripe_subscription_id: str
    stripe_customer_id: str
    status: str
    client_reference_id: Optional[str] = None


__all__ = [
    "BillingEventEnvelope",
    "QueueMessage",
    "QueueBatch",
    "BatchItemFailure",
    "BatchResponse",
    "EventResult",
    "HostSubscriptionResponse",
    "OrphanSubscription",
]
