"""Operator repairs: projection rebuild, orphaned subscriptions, relinking."""

import pytest

from Localstays.database.models import Listing
from Localstays.services.billing_sync_service import BillingEventSynchronizer
from Localstays.services.publish_service import ListingPublishService
from Localstays.services.reconciliation_service import ReconciliationService
from Localstays.utils.exceptions import APIException, ConflictError, ValidationError
from tests.stripe_payloads import stripe_subscription


@pytest.fixture
def reconciler(db, stripe_client, engine, notifications, clock):
    synchronizer = BillingEventSynchronizer(
        db, stripe_client=stripe_client, engine=engine, notifications=notifications, clock=clock
    )
    return ReconciliationService(db, stripe_client=stripe_client, synchronizer=synchronizer)


@pytest.fixture
def publisher(db, engine, notifications, clock):
    return ListingPublishService(db, engine=engine, notifications=notifications, clock=clock)


class TestProjectionRebuild:
    def test_restores_drifted_projection(self, reconciler, publisher, db, make_subscription, make_listing):
        make_subscription()
        make_listing("listing_1")
        make_listing("listing_2")
        published = publisher.publish("host_1", "listing_1")

        listing = db.get(Listing, "listing_1")
        listing.active_slot_id = None
        listing.slot_expires_at = None
        stale = db.get(Listing, "listing_2")
        stale.active_slot_id = "slot_gone"
        db.commit()

        assert reconciler.rebuild_listing_projection() == 2
        assert db.get(Listing, "listing_1").active_slot_id == published.slot_id
        assert db.get(Listing, "listing_2").active_slot_id is None
        assert reconciler.rebuild_listing_projection() == 0

    def test_host_filter(self, reconciler, db, make_listing):
        make_listing("listing_1", host_id="host_1")
        other = make_listing("listing_2", host_id="host_2")
        other.active_slot_id = "slot_gone"
        db.commit()

        assert reconciler.rebuild_listing_projection(host_id="host_1") == 0
        assert reconciler.rebuild_listing_projection(host_id="host_2") == 1


class TestOrphans:
    @pytest.fixture
    def provider_state(self, stripe_client, make_subscription):
        make_subscription(host_id="host_1", customer_id="cus_1", subscription_id="sub_1")
        stripe_client.subscriptions = {
            "sub_1": stripe_subscription(sub_id="sub_1", customer="cus_1"),
            "sub_2": stripe_subscription(sub_id="sub_2", customer="cus_2", status="trialing"),
            "sub_3": stripe_subscription(sub_id="sub_3", customer="cus_3", status="canceled"),
        }
        stripe_client.checkout_refs = {"sub_2": "host_2"}
        return stripe_client

    def test_finds_unlinked_live_subscriptions(self, reconciler, provider_state):
        orphans = reconciler.find_orphan_subscriptions()
        assert [(o.stripe_subscription_id, o.client_reference_id) for o in orphans] == [("sub_2", "host_2")]

    def test_checkout_lookup_failure_keeps_orphan(self, reconciler, provider_state, monkeypatch):
        def _fail(subscription_id):
            raise APIException("rate limited")

        monkeypatch.setattr(provider_state, "find_checkout_reference", _fail)
        orphans = reconciler.find_orphan_subscriptions()
        assert len(orphans) == 1
        assert orphans[0].client_reference_id is None

    def test_relink(self, reconciler, provider_state, seed_catalog):
        seed_catalog()
        result = reconciler.relink_orphan("host_2", "sub_2")

        assert result.action == "SUBSCRIPTION_CREATED"
        record = reconciler.subscriptions.require("host_2")
        assert record.stripe_customer_id == "cus_2"
        assert record.status == "TRIALING"
        assert reconciler.find_orphan_subscriptions() == []

    def test_relink_customer_of_another_host(self, reconciler, provider_state):
        with pytest.raises(ConflictError):
            reconciler.relink_orphan("host_9", "sub_1")

    def test_relink_without_customer(self, reconciler, provider_state):
        provider_state.subscriptions["sub_4"] = stripe_subscription(sub_id="sub_4", customer=None)
        with pytest.raises(ValidationError):
            reconciler.relink_orphan("host_4", "sub_4")
