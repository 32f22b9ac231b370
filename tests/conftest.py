import os
os.environ.setdefault('STRIPE_API_KEY', 'sk_test_dummy')
os.environ.setdefault('STRIPE_ENDPOINT_SECRET', 'whsec_test_dummy')
os.environ.setdefault('DATABASE_URL', 'sqlite://')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vendor_billing_svc.app import app
from vendor_billing_svc.models.base import Base, get_db
from vendor_billing_svc.models.subscription_plan import SubscriptionPlan
from vendor_billing_svc.models.vendor import Vendor


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_vendor(db_session):
    def _make_vendor(user_id, plan=None, end_date=None, synced_at=None):
        vendor = Vendor(
            user_id=user_id,
            subscription_plan=plan,
            subscription_end_date=end_date,
            subscription_synced_at=synced_at,
        )
        db_session.add(vendor)
        db_session.commit()
        return vendor.id
    return _make_vendor


@pytest.fixture
def make_plan(db_session):
    def _make_plan(price_id, plan_type, billing_interval='month'):
        plan = SubscriptionPlan(stripe_price_id=price_id, plan_type=plan_type, billing_interval=billing_interval)
        db_session.add(plan)
        db_session.commit()
        return plan
    return _make_plan


def make_subscription(price_id, period_end, subscription_id='sub_123'):
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": "active",
        "current_period_end": period_end,
        "items": {"data": [{"price": {"id": price_id}}]},
    }


@pytest.fixture
def subscription_factory():
    return make_subscription
