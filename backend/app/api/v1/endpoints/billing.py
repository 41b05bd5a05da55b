"""Billing API Endpoints - Stripe event ingestion and host subscription

SECURITY: webhook payloads are verified with stripe.Webhook.construct_event
before they reach the synchronizer. The queue-batch endpoint is meant for the
internal event-bus consumer only and sits behind the same upstream gateway.

API Layer - Thin orchestration, business logic in BillingEventSynchronizer
"""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, status, Request, Header
from sqlalchemy.orm import Session

from backend.app.security import get_current_host_id, get_db
from Localstays.schemas.billing import BatchResponse, HostSubscriptionResponse, QueueBatch
from Localstays.schemas.common import ErrorResponse
from Localstays.services.billing_sync_service import BillingEventSynchronizer
from Localstays.services.entitlements.subscription_store import SubscriptionStore
from Localstays.services.stripe_service import StripeClient
from Localstays.utils.exceptions import ConfigException, MalformedEventError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_stripe_client() -> StripeClient:
    """Dependency injection for StripeClient"""
    return StripeClient()


def get_synchronizer(
    db: Session = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> BillingEventSynchronizer:
    """Dependency injection for BillingEventSynchronizer"""
    return BillingEventSynchronizer(db, stripe_client=stripe_client)


@router.get(
    "/subscription",
    response_model=HostSubscriptionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get current subscription",
    description="Returns the host's subscription: plan, token allowance, status and billing period",
)
async def get_subscription(
    host_id: str = Depends(get_current_host_id),
    db: Session = Depends(get_db),
):
    """Get the current host's subscription

    Raises:
        404: No subscription found for host
    """
    subscription = SubscriptionStore(db).require(host_id)
    return HostSubscriptionResponse.model_validate(subscription)


@router.post(
    "/webhook",
    status_code=200,
    summary="Stripe webhook handler",
    description=(
        "SECURITY: Handles Stripe webhook events with signature verification.\n\n"
        "Processing errors return 500 so Stripe redelivers the event; every "
        "handler is safe to repeat."
    ),
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    stripe_client: StripeClient = Depends(get_stripe_client),
    synchronizer: BillingEventSynchronizer = Depends(get_synchronizer),
):
    """
    Handle Stripe webhook events with signature verification

    Returns:
        200: Event processed, acknowledged as unhandled, or dropped as malformed
        400: Invalid signature, payload or missing header
        500: Webhook secret not configured, or processing failed (retry)
    """
    if not stripe_signature:
        logger.warning("Webhook request missing stripe-signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header"
        )

    # Raw body is required for signature verification
    payload = await request.body()

    try:
        event = stripe_client.construct_event(payload, stripe_signature)
    except ConfigException as e:
        logger.error(f"Webhook rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured"
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid webhook signature: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )
    except ValueError as e:
        logger.warning(f"Invalid webhook payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload"
        )

    logger.info(
        f"Received verified webhook: {event.get('type')} "
        f"(ID: {event.get('id')}, Livemode: {event.get('livemode', False)})"
    )

    try:
        result = synchronizer.handle_event(event)
    except MalformedEventError as e:
        logger.error(f"Dropping malformed webhook event {event.get('id')}: {e.message}")
        return {"status": "dropped", "event_id": event.get("id")}
    except Exception as e:
        synchronizer.db.rollback()
        logger.error(f"Error processing webhook {event.get('id')}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Event processing failed"
        )

    return {"status": "success", "event_id": event.get("id"), "action": result.action}


@router.post(
    "/events/batch",
    summary="Process a batch of queued billing events",
    description=(
        "Consumes an event-bus queue batch. Only messages listed in "
        "batchItemFailures are redelivered; malformed messages are dropped."
    ),
)
async def process_event_batch(
    batch: QueueBatch,
    synchronizer: BillingEventSynchronizer = Depends(get_synchronizer),
):
    response: BatchResponse = synchronizer.process_batch(batch.records)
    return response.model_dump(by_alias=True)
