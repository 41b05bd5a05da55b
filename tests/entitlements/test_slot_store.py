"""Tests for the slot / subscription stores: conditional attach and optimistic concurrency."""

from datetime import datetime

import pytest

from Localstays.database.models import AdModel, AdvertisingSlot, CommissionTerms, SubscriptionTerms
from Localstays.services.entitlements.engine import EntitlementEngine
from Localstays.services.entitlements.slot_store import SlotStore
from Localstays.services.entitlements.subscription_store import SubscriptionStore
from Localstays.utils.exceptions import ConflictError, NotFoundError


def _subscription_slot(slot_id, host_id="host_1", listing_id=None, expires_at=datetime(2026, 1, 15)):
    slot = AdvertisingSlot(slot_id=slot_id, host_id=host_id, listing_id=listing_id, activated_at=datetime(2025, 12, 15))
    slot.apply_terms(
        SubscriptionTerms(
            expires_at=expires_at,
            review_compensation_days=0,
            do_not_renew=False,
            is_past_due=False,
            marked_for_immediate_expiry=False,
        )
    )
    return slot


def _commission_slot(slot_id, host_id="host_1", listing_id=None):
    slot = AdvertisingSlot(slot_id=slot_id, host_id=host_id, listing_id=listing_id, activated_at=datetime(2025, 12, 15))
    slot.apply_terms(CommissionTerms())
    return slot


class TestSlotQueries:
    def test_counts_only_attached_subscription_slots(self, db):
        store = SlotStore(db)
        store.add(_subscription_slot("slot_a", listing_id="l1"))
        store.add(_subscription_slot("slot_b"))
        store.add(_commission_slot("slot_c", listing_id="l2"))
        store.add(_subscription_slot("slot_d", host_id="host_2", listing_id="l3"))

        assert store.count_attached_subscription_slots("host_1") == 1
        assert store.count_commission_slots("host_1") == 1
        assert [s.slot_id for s in store.list_empty("host_1")] == ["slot_b"]
        assert {s.slot_id for s in store.list_by_host("host_1", AdModel.SUBSCRIPTION)} == {"slot_a", "slot_b"}

    def test_expiry_windows_skip_commission_slots(self, db):
        store = SlotStore(db)
        store.add(_subscription_slot("early", listing_id="l1", expires_at=datetime(2025, 12, 20)))
        store.add(_subscription_slot("late", listing_id="l2", expires_at=datetime(2026, 2, 1)))
        store.add(_commission_slot("comm", listing_id="l3"))

        assert [s.slot_id for s in store.list_expiring_before(datetime(2026, 1, 1))] == ["early"]
        assert [s.slot_id for s in store.list_expiring_between(datetime(2025, 12, 20), datetime(2026, 2, 1))] == ["late"]

    def test_require_unknown_slot(self, db):
        with pytest.raises(NotFoundError):
            SlotStore(db).require("slot_missing")


class TestAttachListingIfEmpty:
    def test_attaches_empty_slot(self, db):
        store = SlotStore(db)
        store.add(_subscription_slot("slot_a"))

        assert store.attach_listing_if_empty("host_1", "slot_a", "l1") is True
        assert store.require("slot_a").listing_id == "l1"

    @pytest.mark.parametrize(
        "slot_factory, host_id",
        [
            (lambda: _subscription_slot("slot_a", listing_id="l0"), "host_1"),
            (lambda: _subscription_slot("slot_a"), "host_2"),
            (lambda: _commission_slot("slot_a"), "host_1"),
        ],
        ids=["already-attached", "other-host", "commission"],
    )
    def test_refuses_non_matching_slot(self, db, slot_factory, host_id):
        store = SlotStore(db)
        store.add(slot_factory())
        assert store.attach_listing_if_empty(host_id, "slot_a", "l1") is False

    def test_concurrent_reuse_has_one_winner(self, session_factory, settings, flags, clock, make_subscription):
        make_subscription(tokens=3)
        setup = session_factory()
        SlotStore(setup).add(_subscription_slot("slot_empty", expires_at=datetime(2026, 1, 15)))
        setup.close()

        session_a, session_b = session_factory(), session_factory()
        engine_a = EntitlementEngine(session_a, flags=flags, settings=settings, clock=clock)
        engine_b = EntitlementEngine(session_b, flags=flags, settings=settings, clock=clock)
        # both requests see the slot as empty
        assert engine_a.slots.require("slot_empty").listing_id is None
        assert engine_b.slots.require("slot_empty").listing_id is None

        engine_a.attach_listing_to_empty_slot("host_1", "slot_empty", "listing_a")
        with pytest.raises(ConflictError):
            engine_b.attach_listing_to_empty_slot("host_1", "slot_empty", "listing_b")

        check = session_factory()
        slot = SlotStore(check).require("slot_empty")
        assert slot.listing_id == "listing_a"
        assert SlotStore(check).get_by_listing("listing_b") is None
        for session in (session_a, session_b, check):
            session.close()

    def test_concurrent_creates_cannot_exceed_allowance(
        self, session_factory, settings, flags, clock, make_subscription, seed_catalog, monkeypatch
    ):
        seed_catalog()
        make_subscription(tokens=1)

        session_a, session_b = session_factory(), session_factory()
        engine_a = EntitlementEngine(session_a, flags=flags, settings=settings, clock=clock)
        engine_b = EntitlementEngine(session_b, flags=flags, settings=settings, clock=clock)

        # B publishes between A's token check and A's insert
        ensure_free = engine_a._ensure_listing_free

        def interleaved(listing_id):
            ensure_free(listing_id)
            engine_b.create_subscription_slot("host_1", "listing_b")

        monkeypatch.setattr(engine_a, "_ensure_listing_free", interleaved)
        with pytest.raises(ConflictError):
            engine_a.create_subscription_slot("host_1", "listing_a")

        check = session_factory()
        store = SlotStore(check)
        assert store.count_attached_subscription_slots("host_1") == 1
        assert store.get_by_listing("listing_b") is not None
        assert store.get_by_listing("listing_a") is None
        for session in (session_a, session_b, check):
            session.close()

    def test_sequential_creates_bump_the_subscription(self, engine, make_subscription, seed_catalog):
        seed_catalog()
        subscription = make_subscription(tokens=2)
        engine.create_subscription_slot("host_1", "listing_a")
        engine.create_subscription_slot("host_1", "listing_b")
        assert subscription.token_claims == 2


class TestOptimisticConcurrency:
    def test_stale_slot_write_is_a_conflict(self, session_factory):
        setup = session_factory()
        SlotStore(setup).add(_subscription_slot("slot_a", listing_id="l1"))
        setup.close()

        session_a, session_b = session_factory(), session_factory()
        slot_a = SlotStore(session_a).require("slot_a")
        slot_b = SlotStore(session_b).require("slot_a")

        slot_a.do_not_renew = True
        SlotStore(session_a).save(slot_a)

        slot_b.is_past_due = True
        with pytest.raises(ConflictError):
            SlotStore(session_b).save(slot_b)

        session_a.close()
        session_b.close()

    def test_stale_subscription_write_is_a_conflict(self, session_factory, make_subscription):
        make_subscription()
        session_a, session_b = session_factory(), session_factory()
        sub_a = SubscriptionStore(session_a).require("host_1")
        sub_b = SubscriptionStore(session_b).require("host_1")

        sub_a.total_tokens = 5
        SubscriptionStore(session_a).save(sub_a)
        sub_b.total_tokens = 1
        with pytest.raises(ConflictError):
            SubscriptionStore(session_b).save(sub_b)

        session_a.close()
        session_b.close()


class TestSubscriptionStore:
    def test_lookups(self, db, make_subscription):
        make_subscription(host_id="host_1", customer_id="cus_1", subscription_id="sub_1")
        make_subscription(host_id="host_2", customer_id=None, subscription_id=None)
        store = SubscriptionStore(db)

        assert store.get_by_customer_id("cus_1").host_id == "host_1"
        assert store.get_by_stripe_subscription_id("sub_1").host_id == "host_1"
        assert store.linked_customer_ids() == ["cus_1"]
        with pytest.raises(NotFoundError):
            store.require("host_3")
