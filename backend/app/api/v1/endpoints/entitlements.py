import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.security import get_current_host_id, get_db
from Localstays.schemas.entitlements import PublishingOptions, SlotsSummary, TokenAvailability
from Localstays.services.entitlements.engine import EntitlementEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/entitlements", tags=["Entitlements"])


def get_entitlement_engine(db: Session = Depends(get_db)) -> EntitlementEngine:
    return EntitlementEngine(db)


@router.get("/tokens", response_model=TokenAvailability)
async def token_availability(
    host_id: str = Depends(get_current_host_id),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
) -> TokenAvailability:
    """
    Subscription token accounting for the current host (total / used / available).
    """
    return engine.token_availability(host_id)


@router.get("/publishing-options", response_model=PublishingOptions)
async def publishing_options(
    host_id: str = Depends(get_current_host_id),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
) -> PublishingOptions:
    """
    What the publish dialog can offer: subscription, commission and reusable empty slots.
    """
    return engine.publishing_options(host_id)


@router.get("/slots", response_model=SlotsSummary)
async def slots_summary(
    host_id: str = Depends(get_current_host_id),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
) -> SlotsSummary:
    return engine.slots_summary(host_id)
