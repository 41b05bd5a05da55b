"""
Catalog mirror.

A read-only local copy of the Stripe products (plan -> ad slot allowance) and
recurring prices (price -> billing period), refreshed by product/price events
and by a full sync. The entitlement engine only reads from it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from Localstays.config.settings import get_settings
from Localstays.database.models import BillingPeriod, CatalogPrice, CatalogProduct
from Localstays.observability.logging import get_module_logger, LogModule
from Localstays.utils.exceptions import ValidationError
from Localstays.utils.timeutils import utc_now

logger = get_module_logger(LogModule.BILLING)


@dataclass(frozen=True)
class PlanInfo:
    plan_id: str
    stripe_product_id: str
    stripe_price_id: Optional[str]
    name: str
    ad_slots: int
    billing_period: BillingPeriod


def stripe_to_billing_period(interval: Optional[str], interval_count: Optional[int]) -> BillingPeriod:
    count = interval_count or 1
    if interval == "month" and count == 1:
        return BillingPeriod.MONTHLY
    if interval == "month" and count == 3:
        return BillingPeriod.QUARTERLY
    if interval == "month" and count == 6:
        return BillingPeriod.SEMI_ANNUAL
    if interval == "year" and count == 1:
        return BillingPeriod.YEARLY
    logger.warning(f"Unsupported billing interval {interval}/{count}, defaulting to MONTHLY")
    return BillingPeriod.MONTHLY


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _metadata(obj: Any) -> Dict[str, Any]:
    return dict(_get(obj, "metadata") or {})


def extract_plan_id(price: Any) -> Optional[str]:
    """product metadata planId, then price metadata planId, then the price id."""
    if price is None:
        return None
    product = _get(price, "product")
    if product is not None and not isinstance(product, str):
        plan_id = _metadata(product).get("planId")
        if plan_id:
            return plan_id
    plan_id = _metadata(price).get("planId")
    if plan_id:
        return plan_id
    return _get(price, "id")


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_product(self, stripe_product_id: str) -> Optional[CatalogProduct]:
        stmt = select(CatalogProduct).where(CatalogProduct.stripe_product_id == stripe_product_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_product_by_plan(self, plan_id: str) -> Optional[CatalogProduct]:
        stmt = (
            select(CatalogProduct)
            .where(CatalogProduct.plan_id == plan_id)
            .order_by(CatalogProduct.is_active.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_price(self, stripe_price_id: str) -> Optional[CatalogPrice]:
        stmt = select(CatalogPrice).where(CatalogPrice.stripe_price_id == stripe_price_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_plan_info(self, stripe_price_id: Optional[str]) -> Optional[PlanInfo]:
        """price record -> product record; None when either is not mirrored yet."""
        if not stripe_price_id:
            return None
        price = self.get_price(stripe_price_id)
        if price is None:
            logger.warning(f"Price record not found for {stripe_price_id}")
            return None
        product = self.get_product(price.stripe_product_id)
        if product is None:
            logger.warning(f"Product record not found for {price.stripe_product_id}")
            return None
        return PlanInfo(
            plan_id=product.plan_id or product.stripe_product_id,
            stripe_product_id=product.stripe_product_id,
            stripe_price_id=price.stripe_price_id,
            name=product.name,
            ad_slots=product.ad_slots,
            billing_period=BillingPeriod(price.billing_period),
        )

    def resolve_plan(self, *, price_id: Optional[str] = None, plan_id: Optional[str] = None) -> Optional[PlanInfo]:
        """Resolve by price first, then by plan id.

        Raises:
            ValidationError: if neither identifier is given
        """
        if not price_id and not plan_id:
            raise ValidationError("A price id or plan id is required to resolve a plan")
        info = self.get_plan_info(price_id) if price_id else None
        if info is not None:
            return info
        if plan_id:
            product = self.get_product_by_plan(plan_id)
            if product is not None:
                return PlanInfo(
                    plan_id=plan_id,
                    stripe_product_id=product.stripe_product_id,
                    stripe_price_id=price_id,
                    name=product.name,
                    ad_slots=product.ad_slots,
                    billing_period=self.billing_period_for_price(price_id),
                )
        return None

    def billing_period_for_price(self, stripe_price_id: Optional[str]) -> BillingPeriod:
        if not stripe_price_id:
            return BillingPeriod.MONTHLY
        price = self.get_price(stripe_price_id)
        if price is None:
            return BillingPeriod.MONTHLY
        return BillingPeriod(price.billing_period)

    def list_active_plans(self) -> List[Tuple[CatalogProduct, List[CatalogPrice]]]:
        products = self.db.execute(
            select(CatalogProduct)
            .where(CatalogProduct.is_active.is_(True))
            .order_by(CatalogProduct.sort_order, CatalogProduct.name)
        ).scalars().all()
        plans = []
        for product in products:
            prices = self.db.execute(
                select(CatalogPrice).where(
                    CatalogPrice.stripe_product_id == product.stripe_product_id,
                    CatalogPrice.is_active.is_(True),
                )
            ).scalars().all()
            plans.append((product, list(prices)))
        return plans

    # ------------------------------------------------------------------
    # Writes (catalog events / sync)
    # ------------------------------------------------------------------

    def upsert_product(self, product_obj: Dict[str, Any]) -> Optional[CatalogProduct]:
        """Mirror a Stripe product; products without an adSlots allowance are skipped."""
        metadata = _metadata(product_obj)
        try:
            ad_slots = int(metadata.get("adSlots") or 0)
        except (TypeError, ValueError):
            ad_slots = 0
        if ad_slots <= 0:
            logger.info(f"Skipping product {product_obj.get('id')}: missing adSlots metadata")
            return None

        features = None
        raw_features = metadata.get("features")
        if raw_features:
            try:
                features = json.dumps(json.loads(raw_features))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed features metadata on product {product_obj.get('id')}")

        try:
            sort_order = int(metadata.get("sortOrder"))
        except (TypeError, ValueError):
            sort_order = get_settings().billing.default_sort_order

        record = self.get_product(product_obj["id"])
        if record is None:
            record = CatalogProduct(stripe_product_id=product_obj["id"])
            self.db.add(record)

        record.plan_id = metadata.get("planId") or product_obj["id"]
        record.name = product_obj.get("name") or product_obj["id"]
        record.description = product_obj.get("description")
        record.ad_slots = ad_slots
        record.sort_order = sort_order
        record.features = features
        record.is_active = bool(product_obj.get("active", True))
        record.synced_at = utc_now()
        self.db.commit()
        logger.info(f"Synced product {record.stripe_product_id} ({record.name}, {ad_slots} ad slots)")
        return record

    def upsert_price(self, price_obj: Dict[str, Any]) -> Optional[CatalogPrice]:
        """Mirror a recurring Stripe price; one-off prices are skipped."""
        recurring = price_obj.get("recurring")
        if not recurring:
            logger.info(f"Skipping non-recurring price {price_obj.get('id')}")
            return None

        product = price_obj.get("product")
        product_id = product if isinstance(product, str) else _get(product, "id")

        record = self.get_price(price_obj["id"])
        if record is None:
            record = CatalogPrice(stripe_price_id=price_obj["id"])
            self.db.add(record)

        record.stripe_product_id = product_id
        record.amount = int(price_obj.get("unit_amount") or 0)
        record.currency = price_obj.get("currency") or "eur"
        record.interval = recurring.get("interval") or "month"
        record.interval_count = int(recurring.get("interval_count") or 1)
        record.billing_period = stripe_to_billing_period(record.interval, record.interval_count).value
        record.is_active = bool(price_obj.get("active", True))
        record.synced_at = utc_now()
        self.db.commit()
        logger.info(f"Synced price {record.stripe_price_id} ({record.billing_period})")
        return record

    def deactivate_product(self, stripe_product_id: str) -> bool:
        record = self.get_product(stripe_product_id)
        if record is None:
            return False
        record.is_active = False
        record.synced_at = utc_now()
        self.db.commit()
        logger.info(f"Deactivated product {stripe_product_id}")
        return True

    def deactivate_price(self, stripe_price_id: str) -> bool:
        record = self.get_price(stripe_price_id)
        if record is None:
            return False
        record.is_active = False
        record.synced_at = utc_now()
        self.db.commit()
        logger.info(f"Deactivated price {stripe_price_id}")
        return True

    def sync_from_provider(self, stripe_client) -> Dict[str, int]:
        """Full catalog refresh from Stripe (active products and their prices)."""
        products = 0
        prices = 0
        for product_obj in stripe_client.list_products():
            if self.upsert_product(product_obj) is not None:
                products += 1
        for price_obj in stripe_client.list_prices():
            if self.upsert_price(price_obj) is not None:
                prices += 1
        logger.info(f"Catalog sync finished: {products} products, {prices} prices")
        return {"products": products, "prices": prices}


__all__ = [
    "PlanInfo",
    "CatalogService",
    "stripe_to_billing_period",
    "extract_plan_id",
]
