"""Periodic expiry sweep and expiry warnings."""

from datetime import datetime

import pytest

from Localstays.database.models import Listing, ListingStatus
from Localstays.schemas.entitlements import PublishRequest
from Localstays.services.publish_service import ListingPublishService
from Localstays.services.slot_expiry_service import SlotExpiryService


@pytest.fixture
def publisher(db, engine, notifications, clock):
    return ListingPublishService(db, engine=engine, notifications=notifications, clock=clock)


@pytest.fixture
def sweeper(db, engine, notifications, clock):
    return SlotExpiryService(db, engine=engine, notifications=notifications, clock=clock)


@pytest.fixture
def online_listing(publisher, make_subscription, make_listing):
    make_subscription()
    make_listing()
    return publisher.publish("host_1", "listing_1")


class TestExpirySweep:
    def test_expired_slot_takes_listing_offline(self, sweeper, db, engine, online_listing, notifications):
        stats = sweeper.process_expired_slots(now=datetime(2026, 1, 16))

        assert stats == {"expired": 1, "skipped": 0, "failed": 0}
        assert engine.slots.get(online_listing.slot_id) is None
        listing = db.get(Listing, "listing_1")
        assert listing.status == ListingStatus.APPROVED.value
        assert listing.active_slot_id is None
        assert listing.slot_expires_at is None
        assert notifications.events[-1] == (
            "slots.expired",
            {"slots": [{"slot_id": online_listing.slot_id, "listing_id": "listing_1"}], "count": 1},
            "host_1",
        )

    def test_slot_not_yet_expired(self, sweeper, engine, online_listing):
        stats = sweeper.process_expired_slots(now=datetime(2026, 1, 15, 12, 0))
        assert stats["expired"] == 0
        assert engine.slots.get(online_listing.slot_id) is not None

    def test_uses_clock_by_default(self, sweeper, engine, online_listing, clock):
        clock.advance(days=32)
        assert sweeper.process_expired_slots()["expired"] == 1

    def test_past_due_slot_waits_for_payment(self, sweeper, engine, online_listing):
        engine.mark_past_due("host_1", True)
        assert sweeper.process_expired_slots(now=datetime(2026, 1, 16))["skipped"] == 1
        assert engine.slots.get(online_listing.slot_id) is not None

        engine.mark_immediate_expiry("host_1")
        assert sweeper.process_expired_slots(now=datetime(2026, 1, 16))["expired"] == 1

    def test_empty_and_commission_slots(self, sweeper, publisher, engine, make_subscription, make_listing):
        make_subscription()
        make_listing("listing_1")
        make_listing("listing_2")
        subscription = publisher.publish("host_1", "listing_1")
        commission = publisher.publish("host_1", "listing_2", PublishRequest(ad_model="COMMISSION"))
        publisher.delete_listing("host_1", "listing_1")

        stats = sweeper.process_expired_slots(now=datetime(2027, 1, 1))
        assert stats["expired"] == 1
        assert engine.slots.get(subscription.slot_id) is None
        assert engine.slots.get(commission.slot_id) is not None

    def test_failing_slot_is_counted(self, sweeper, online_listing, monkeypatch, notifications):
        def _boom(slot):
            raise RuntimeError("database went away")

        monkeypatch.setattr(sweeper.engine, "delete_slot", _boom)
        stats = sweeper.process_expired_slots(now=datetime(2026, 1, 16))

        assert stats == {"expired": 0, "skipped": 0, "failed": 1}
        assert "slots.expired" not in notifications.types


class TestExpiryWarnings:
    def test_warns_once_per_host(self, sweeper, publisher, make_subscription, make_listing, notifications):
        make_subscription()
        make_listing("listing_1")
        make_listing("listing_2")
        publisher.publish("host_1", "listing_1")
        publisher.publish("host_1", "listing_2")

        result = sweeper.send_expiry_warnings(now=datetime(2026, 1, 10, 10, 0))
        assert result == {"hosts": 1, "slots": 2}

        event_type, data, host_id = notifications.events[-1]
        assert (event_type, host_id, data["count"]) == ("slots.expiring_soon", "host_1", 2)
        assert {s["days_remaining"] for s in data["slots"]} == {6}

    def test_outside_window(self, sweeper, online_listing):
        assert sweeper.send_expiry_warnings(now=datetime(2025, 12, 20)) == {"hosts": 0, "slots": 0}

    def test_empty_slots_are_not_warned(self, sweeper, publisher, online_listing):
        publisher.delete_listing("host_1", "listing_1")
        assert sweeper.send_expiry_warnings(now=datetime(2026, 1, 10)) == {"hosts": 0, "slots": 0}
