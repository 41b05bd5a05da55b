"""Shared fixtures: SQLite database, fake clock, fake Stripe client, flag source, notifications."""

import copy
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from Localstays.config.settings import Settings, reset_settings, set_settings
from Localstays.database.models import (
    Base,
    CatalogPrice,
    CatalogProduct,
    HostSubscription,
    Listing,
    ListingStatus,
    SubscriptionStatus,
)
from Localstays.services.entitlements.engine import EntitlementEngine
from Localstays.services.entitlements.feature_flags import (
    REVIEW_COMPENSATION_FLAG,
    FeatureFlagProvider,
    set_feature_flags,
)
from Localstays.utils.exceptions import APIException


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a settable naive-UTC "now"."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticFlagSource:
    """In-memory flag source counting fetches; can be switched to fail."""

    def __init__(self, flags=None):
        self.flags = dict(flags or {})
        self.error = None
        self.calls = 0

    def get_flag(self, name):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.flags.get(name)


class RecordingNotifications:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    def emit_event(self, event_type, data, host_id=None):
        if self.fail:
            raise RuntimeError("webhook down")
        self.events.append((event_type, data, host_id))

    @property
    def types(self):
        return [event[0] for event in self.events]


class FakeStripeClient:
    """Dict-backed stand-in for StripeClient."""

    def __init__(self):
        self.subscriptions = {}
        self.products = []
        self.prices = []
        self.checkout_refs = {}
        self.fail_retrieve = False
        self.retrieved = []
        self.events = {}

    def retrieve_subscription(self, subscription_id):
        self.retrieved.append(subscription_id)
        if self.fail_retrieve or subscription_id not in self.subscriptions:
            raise APIException(f"No such subscription: {subscription_id}")
        return copy.deepcopy(self.subscriptions[subscription_id])

    def list_subscriptions(self, status="all"):
        return iter([copy.deepcopy(s) for s in self.subscriptions.values()])

    def find_checkout_reference(self, subscription_id):
        return self.checkout_refs.get(subscription_id)

    def list_products(self):
        return iter(self.products)

    def list_prices(self):
        return iter(self.prices)

    def construct_event(self, payload, sig_header):
        if sig_header != "valid":
            import stripe

            raise stripe.SignatureVerificationError("bad signature", sig_header)
        return copy.deepcopy(self.events[payload.decode("utf-8")])


# ---------------------------------------------------------------------------
# Settings / database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(monkeypatch):
    for name in (
        "LS_ENTITLEMENT_MAX_COMMISSION_SLOTS",
        "LS_ENTITLEMENT_MAX_COMPENSATION_DAYS",
        "LS_ENTITLEMENT_EXPIRY_WARNING_DAYS",
        "LS_ENTITLEMENT_EXPIRING_SOON_DAYS",
        "SYSTEM_WEBHOOK_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    test_settings = Settings()
    test_settings.entitlement.max_commission_slots_per_host = 2
    set_settings(test_settings)
    yield test_settings
    reset_settings()
    set_feature_flags(None)


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'localstays.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return sessionmaker(bind=sql_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 12, 15, 10, 0, 0))


@pytest.fixture
def flag_source():
    return StaticFlagSource({REVIEW_COMPENSATION_FLAG: False})


@pytest.fixture
def flags(flag_source):
    return FeatureFlagProvider(flag_source, ttl_seconds=300, clock=lambda: 0.0)


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def stripe_client():
    return FakeStripeClient()


@pytest.fixture
def engine(db, settings, flags, clock):
    return EntitlementEngine(db, flags=flags, settings=settings, clock=clock)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def seed_catalog(db):
    """pro: 3 slots (monthly + yearly price), basic: 1 slot (monthly)."""

    def _seed():
        db.add_all(
            [
                CatalogProduct(stripe_product_id="prod_pro", plan_id="pro", name="Pro", ad_slots=3, sort_order=2),
                CatalogProduct(stripe_product_id="prod_basic", plan_id="basic", name="Basic", ad_slots=1, sort_order=1),
                CatalogPrice(
                    stripe_price_id="price_pro_monthly",
                    stripe_product_id="prod_pro",
                    amount=2900,
                    billing_period="MONTHLY",
                    interval="month",
                    interval_count=1,
                ),
                CatalogPrice(
                    stripe_price_id="price_pro_yearly",
                    stripe_product_id="prod_pro",
                    amount=29000,
                    billing_period="YEARLY",
                    interval="year",
                    interval_count=1,
                ),
                CatalogPrice(
                    stripe_price_id="price_basic_monthly",
                    stripe_product_id="prod_basic",
                    amount=900,
                    billing_period="MONTHLY",
                    interval="month",
                    interval_count=1,
                ),
            ]
        )
        db.commit()

    return _seed


@pytest.fixture
def make_subscription(db):
    def _make(
        host_id="host_1",
        tokens=3,
        status=SubscriptionStatus.ACTIVE,
        plan_id="pro",
        price_id="price_pro_monthly",
        period_start=datetime(2025, 12, 1),
        period_end=datetime(2025, 12, 31),
        customer_id="cus_1",
        subscription_id="sub_1",
        trial_end=None,
    ):
        record = HostSubscription(
            host_id=host_id,
            plan_id=plan_id,
            price_id=price_id,
            total_tokens=tokens,
            status=status.value if isinstance(status, SubscriptionStatus) else status,
            current_period_start=period_start,
            current_period_end=period_end,
            trial_end=trial_end,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
        )
        db.add(record)
        db.commit()
        return record

    return _make


@pytest.fixture
def make_listing(db):
    def _make(
        listing_id="listing_1",
        host_id="host_1",
        status=ListingStatus.APPROVED,
        submitted_at=None,
        first_review_decision_at=None,
    ):
        listing = Listing(
            listing_id=listing_id,
            host_id=host_id,
            status=status.value if isinstance(status, ListingStatus) else status,
            submitted_at=submitted_at,
            first_review_decision_at=first_review_decision_at,
        )
        db.add(listing)
        db.commit()
        return listing

    return _make
