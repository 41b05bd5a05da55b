"""Listing API Endpoints - publish / unpublish / delete and slot settings

API Layer - Thin orchestration, business logic in ListingPublishService
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.security import get_current_host_id, get_db
from Localstays.schemas.common import ErrorResponse
from Localstays.schemas.entitlements import (
    ConvertSlotRequest,
    DoNotRenewRequest,
    EmptySlotView,
    ListingProjection,
    PublishRequest,
    PublishResult,
    SlotView,
)
from Localstays.services.publish_service import ListingPublishService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listings", tags=["Listings"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def get_publish_service(db: Session = Depends(get_db)) -> ListingPublishService:
    """Dependency injection for ListingPublishService"""
    return ListingPublishService(db)


@router.get("/slots/empty", response_model=List[EmptySlotView], summary="List reusable empty slots")
async def list_empty_slots(
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.list_empty_slots(host_id)


@router.put(
    "/slots/{slot_id}/do-not-renew",
    response_model=SlotView,
    responses=ERROR_RESPONSES,
    summary="Opt a slot out of (or back into) renewal",
)
async def set_slot_do_not_renew(
    slot_id: str,
    body: DoNotRenewRequest,
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.set_slot_do_not_renew(host_id, slot_id, body.do_not_renew)


@router.post(
    "/{listing_id}/publish",
    response_model=PublishResult,
    responses=ERROR_RESPONSES,
    summary="Publish a listing",
    description=(
        "Consumes a subscription token (new slot, or a reused empty slot via reuse_slot_id) "
        "or a commission slot."
    ),
)
async def publish_listing(
    listing_id: str,
    body: PublishRequest,
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.publish(host_id, listing_id, body)


@router.post(
    "/{listing_id}/unpublish",
    response_model=ListingProjection,
    responses=ERROR_RESPONSES,
    summary="Take a listing offline (the slot is kept)",
)
async def unpublish_listing(
    listing_id: str,
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.unpublish(host_id, listing_id)


@router.delete("/{listing_id}", responses=ERROR_RESPONSES, summary="Delete a listing and release its slot")
async def delete_listing(
    listing_id: str,
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.delete_listing(host_id, listing_id)


@router.post(
    "/{listing_id}/slot/convert",
    response_model=SlotView,
    responses=ERROR_RESPONSES,
    summary="Switch the listing's slot between subscription and commission",
)
async def convert_listing_slot(
    listing_id: str,
    body: ConvertSlotRequest,
    host_id: str = Depends(get_current_host_id),
    service: ListingPublishService = Depends(get_publish_service),
):
    return service.convert_slot(host_id, listing_id, body.direction)
