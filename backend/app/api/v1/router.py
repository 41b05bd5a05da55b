"""API v1 router aggregation.

Endpoint modules declare their own prefix and tags; this module only mounts them.
"""

from fastapi import APIRouter

from backend.app.api.v1.endpoints.billing import router as billing_router
from backend.app.api.v1.endpoints.entitlements import router as entitlements_router
from backend.app.api.v1.endpoints.listings import router as listings_router

router = APIRouter(prefix="/api/v1")

# ============================================
# Billing & Entitlements
# ============================================
router.include_router(billing_router)
router.include_router(entitlements_router)

# ============================================
# Listings
# ============================================
router.include_router(listings_router)
