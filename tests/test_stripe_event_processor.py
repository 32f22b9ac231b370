import datetime

import pytest

from vendor_billing_svc import stripe_event_processor
from vendor_billing_svc.models.vendor import Vendor
from vendor_billing_svc.plan_catalog import PlanEntry, PlanNotFoundError, StaticPlanCatalog
from vendor_billing_svc.vendor_subscription import as_utc

UTC = datetime.timezone.utc
PERIOD_END = 1735689600  # 2025-01-01T00:00:00Z


class FakeStripeIntegration:
    def __init__(self, subscriptions):
        self.subscriptions = subscriptions
        self.retrieved = []

    def retrieve_subscription(self, subscription_id):
        self.retrieved.append(subscription_id)
        return self.subscriptions[subscription_id]


@pytest.fixture
def catalog():
    return StaticPlanCatalog({
        "price_elite_year": PlanEntry(plan_type="elite", billing_interval="year"),
        "price_essential_month": PlanEntry(plan_type="essential", billing_interval="month"),
    })


def checkout_event(user_id="u1", subscription_id="sub_123", event_id="evt_1"):
    metadata = {"userId": user_id} if user_id else {}
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "created": 1735000000,
        "data": {"object": {"id": "cs_1", "subscription": subscription_id, "metadata": metadata}},
    }


def subscription_event(event_type, user_id="u1", period_end=PERIOD_END, created=1735000000):
    metadata = {"userId": user_id} if user_id else {}
    return {
        "id": "evt_sub",
        "type": event_type,
        "created": created,
        "data": {"object": {"id": "sub_123", "current_period_end": period_end, "metadata": metadata}},
    }


def load_vendor(db, user_id):
    db.expire_all()
    return db.query(Vendor).filter(Vendor.user_id == user_id).one()


def test_checkout_completed_sets_plan_and_end_date(db_session, make_vendor, catalog, subscription_factory):
    make_vendor("u1")
    stripe_integration = FakeStripeIntegration({"sub_123": subscription_factory("price_elite_year", PERIOD_END)})

    stripe_event_processor.process_event(checkout_event(), db_session, catalog, stripe_integration)

    vendor = load_vendor(db_session, "u1")
    assert vendor.subscription_plan == "elite"
    assert as_utc(vendor.subscription_end_date) == datetime.datetime(2025, 1, 1, tzinfo=UTC)
    assert stripe_integration.retrieved == ["sub_123"]


def test_checkout_completed_replay_is_idempotent(db_session, make_vendor, catalog, subscription_factory):
    make_vendor("u1")
    stripe_integration = FakeStripeIntegration({"sub_123": subscription_factory("price_elite_year", PERIOD_END)})

    stripe_event_processor.process_event(checkout_event(), db_session, catalog, stripe_integration)
    first = load_vendor(db_session, "u1")
    first_state = (first.subscription_plan, first.subscription_end_date)

    stripe_event_processor.process_event(checkout_event(), db_session, catalog, stripe_integration)
    second = load_vendor(db_session, "u1")
    assert (second.subscription_plan, second.subscription_end_date) == first_state


def test_checkout_completed_only_touches_matching_vendor(db_session, make_vendor, catalog, subscription_factory):
    make_vendor("u1")
    make_vendor("u2", plan="essential", end_date=datetime.datetime(2024, 6, 1, tzinfo=UTC))
    stripe_integration = FakeStripeIntegration({"sub_123": subscription_factory("price_elite_year", PERIOD_END)})

    stripe_event_processor.process_event(checkout_event(), db_session, catalog, stripe_integration)

    other = load_vendor(db_session, "u2")
    assert other.subscription_plan == "essential"
    assert as_utc(other.subscription_end_date) == datetime.datetime(2024, 6, 1, tzinfo=UTC)


def test_checkout_completed_without_user_id_raises(db_session, make_vendor, catalog):
    make_vendor("u1")
    stripe_integration = FakeStripeIntegration({})

    with pytest.raises(stripe_event_processor.MissingUserIdError):
        stripe_event_processor.process_event(checkout_event(user_id=None), db_session, catalog, stripe_integration)
    assert stripe_integration.retrieved == []
    assert load_vendor(db_session, "u1").subscription_plan is None


def test_checkout_completed_catalog_miss_leaves_vendor_untouched(db_session, make_vendor, catalog, subscription_factory):
    make_vendor("u1", plan="essential", end_date=datetime.datetime(2024, 6, 1, tzinfo=UTC))
    stripe_integration = FakeStripeIntegration({"sub_123": subscription_factory("price_unknown", PERIOD_END)})

    with pytest.raises(PlanNotFoundError):
        stripe_event_processor.process_event(checkout_event(), db_session, catalog, stripe_integration)

    vendor = load_vendor(db_session, "u1")
    assert vendor.subscription_plan == "essential"
    assert as_utc(vendor.subscription_end_date) == datetime.datetime(2024, 6, 1, tzinfo=UTC)
    assert vendor.subscription_synced_at is None


def test_subscription_updated_moves_end_date_only(db_session, make_vendor, catalog):
    make_vendor("u1", plan="essential", end_date=datetime.datetime(2024, 6, 1, tzinfo=UTC))

    event = subscription_event("customer.subscription.updated", period_end=PERIOD_END)
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    vendor = load_vendor(db_session, "u1")
    assert vendor.subscription_plan == "essential"
    assert as_utc(vendor.subscription_end_date) == datetime.datetime(2025, 1, 1, tzinfo=UTC)


def test_subscription_updated_ignores_vendor_without_plan(db_session, make_vendor, catalog):
    make_vendor("u1")

    event = subscription_event("customer.subscription.updated")
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    vendor = load_vendor(db_session, "u1")
    assert vendor.subscription_plan is None
    assert vendor.subscription_end_date is None


def test_subscription_updated_without_user_id_is_skipped(db_session, make_vendor, catalog, caplog):
    make_vendor("u1", plan="essential", end_date=datetime.datetime(2024, 6, 1, tzinfo=UTC))

    event = subscription_event("customer.subscription.updated", user_id=None)
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    assert as_utc(load_vendor(db_session, "u1").subscription_end_date) == datetime.datetime(2024, 6, 1, tzinfo=UTC)
    assert any("without userId" in record.message for record in caplog.records)


def test_subscription_deleted_clears_plan(db_session, make_vendor, catalog):
    make_vendor("u1", plan="elite", end_date=datetime.datetime(2025, 1, 1, tzinfo=UTC))

    event = subscription_event("customer.subscription.deleted")
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    vendor = load_vendor(db_session, "u1")
    assert vendor.subscription_plan is None
    assert vendor.subscription_end_date is None


def test_subscription_deleted_without_user_id_touches_nothing(db_session, make_vendor, catalog):
    make_vendor("u1", plan="elite", end_date=datetime.datetime(2025, 1, 1, tzinfo=UTC))
    make_vendor("u2", plan="essential", end_date=datetime.datetime(2025, 2, 1, tzinfo=UTC))

    event = subscription_event("customer.subscription.deleted", user_id=None)
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    assert load_vendor(db_session, "u1").subscription_plan == "elite"
    assert load_vendor(db_session, "u2").subscription_plan == "essential"


def test_stale_deletion_does_not_overwrite_newer_sync(db_session, make_vendor, catalog):
    make_vendor(
        "u1",
        plan="elite",
        end_date=datetime.datetime(2025, 1, 1, tzinfo=UTC),
        synced_at=datetime.datetime(2024, 12, 31, tzinfo=UTC),
    )

    # Event created well before the vendor was last synced
    event = subscription_event("customer.subscription.deleted", created=1700000000)
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))

    assert load_vendor(db_session, "u1").subscription_plan == "elite"


def test_event_missing_type(db_session, catalog):
    event = {"id": "evt_3", "data": {"object": {}}}
    with pytest.raises(ValueError) as excinfo:
        stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))
    assert "Missing 'type'" in str(excinfo.value)


def test_unhandled_event_type(db_session, catalog, caplog):
    event = {
        "id": "evt_4",
        "type": "invoice.payment_succeeded",
        "data": {"object": {}},
        "created": 1234567890,
    }
    stripe_event_processor.process_event(event, db_session, catalog, FakeStripeIntegration({}))
    assert any("Unhandled event type" in record.message for record in caplog.records)


def test_commit_failure_event(db_session, make_vendor, catalog, monkeypatch):
    make_vendor("u1", plan="elite", end_date=datetime.datetime(2025, 1, 1, tzinfo=UTC))

    def failing_commit():
        raise Exception("Commit failed")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(Exception, match="Commit failed"):
        stripe_event_processor.process_event(
            subscription_event("customer.subscription.deleted"), db_session, catalog, FakeStripeIntegration({})
        )
    monkeypatch.undo()

    assert load_vendor(db_session, "u1").subscription_plan == "elite"
