import itertools
import json
import os
from datetime import timedelta

# Settings are read at import time
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_dummy"
os.environ["ENVIRONMENT"] = "test"
os.environ["EXPIRY_SWEEP_INTERVAL_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from core.database import engine, get_session
from core.errors import SignatureVerificationError, UpstreamBillingError
from core.security import create_token_for_user, hash_password
from main import app
from models.models import (
    BillingCycle,
    Organization,
    Plan,
    SubscriptionStatus,
    User,
    UserRole,
    utcnow,
)
from services.billing_gateway import get_billing_gateway
from services.subscription_service import apply_plan_snapshot

VALID_SIGNATURE = "t=1,v1=valid"
DEFAULT_PASSWORD = "secret123"


class FakeGateway:
    """In-memory stand-in for StripeGateway that records every call."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.subscriptions = {}
        self._ids = itertools.count(1)

    def _record(self, call, **kwargs):
        self.calls.append((call, kwargs))
        if self.fail_with:
            raise UpstreamBillingError(self.fail_with)

    def names(self):
        return [name for name, _ in self.calls]

    def create_customer(self, email, organization_id):
        self._record("create_customer", email=email, organization_id=organization_id)
        return f"cus_{next(self._ids)}"

    def retrieve_customer(self, customer_id):
        self._record("retrieve_customer", customer_id=customer_id)
        return customer_id

    def create_price(self, name, price, billing_cycle, max_users, storage):
        self._record("create_price", name=name, price=price, billing_cycle=billing_cycle)
        return f"price_{next(self._ids)}"

    def deactivate_price(self, price_id):
        self._record("deactivate_price", price_id=price_id)

    def create_checkout_session(self, customer_id, price_id, metadata, mode="subscription"):
        self._record("create_checkout_session", customer_id=customer_id, price_id=price_id,
                     metadata=metadata, mode=mode)
        session_id = f"cs_{next(self._ids)}"
        return {"id": session_id, "url": f"https://checkout.test/{session_id}"}

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id=subscription_id)
        return self.subscriptions.get(subscription_id, {"id": subscription_id, "status": "active"})

    def verify_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise SignatureVerificationError("Webhook Error: bad signature")
        return json.loads(payload)


# ----------------------------------------------------------------------
# Core fixtures
# ----------------------------------------------------------------------
@pytest.fixture
def session():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session, gateway):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_billing_gateway] = lambda: gateway
    # Not used as a context manager so the lifespan hook never runs
    yield TestClient(app)
    app.dependency_overrides.clear()


# ----------------------------------------------------------------------
# Factories
# ----------------------------------------------------------------------
@pytest.fixture
def make_plan(session):
    counter = itertools.count(1)

    def factory(name="Basic", max_users=1, price=0.0, billing_cycle=BillingCycle.TRIAL.value,
                features=None, is_active=True, stripe_price_id=None):
        plan = Plan(
            name=name,
            price=price,
            billing_cycle=billing_cycle,
            trial_days=14 if billing_cycle == BillingCycle.TRIAL.value else 0,
            features=features or ["Feature A"],
            max_users=max_users,
            storage=5,
            stripe_price_id=stripe_price_id or f"price_seed_{next(counter)}",
            is_active=is_active,
        )
        session.add(plan)
        session.commit()
        session.refresh(plan)
        return plan

    return factory


@pytest.fixture
def make_org(session):
    counter = itertools.count(1)

    def factory(plan, status=SubscriptionStatus.TRIALING.value, days_left=14, is_active=True,
                stripe_customer_id=None, stripe_subscription_id=None, name=None):
        n = next(counter)
        now = utcnow()
        organization = Organization(
            name=name or f"Org {n}",
            email=f"org{n}@example.com",
            subscription_status=status,
            subscription_start_date=now,
            subscription_end_date=now + timedelta(days=days_left),
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            is_active=is_active,
        )
        apply_plan_snapshot(organization, plan)
        session.add(organization)
        session.commit()
        session.refresh(organization)
        return organization

    return factory


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def factory(organization, role=UserRole.USER.value, email=None, is_active=True,
                deactivation_reason=None, password=DEFAULT_PASSWORD):
        n = next(counter)
        user = User(
            email=email or f"{role}{n}@example.com",
            password_hash=hash_password(password),
            first_name="Test",
            last_name=f"User{n}",
            role=role,
            is_active=is_active,
            deactivation_reason=deactivation_reason,
            organization_id=organization.id,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return factory


def auth(user):
    return {"Authorization": f"Bearer {create_token_for_user(user)}"}


@pytest.fixture
def admin_setup(make_plan, make_org, make_user):
    """Basic plan with one seat, a trialing org and its admin."""
    plan = make_plan(max_users=1)
    organization = make_org(plan)
    admin = make_user(organization, role=UserRole.ADMIN.value, email="admin@acme.com")
    return plan, organization, admin


@pytest.fixture
def superadmin(make_plan, make_org, make_user):
    platform_plan = make_plan(name="Plus", max_users=100, price=999.0,
                              billing_cycle=BillingCycle.YEARLY.value)
    platform = make_org(platform_plan, status=SubscriptionStatus.ACTIVE.value, name="Platform")
    return make_user(platform, role=UserRole.SUPER_ADMIN.value, email="root@platform.dev")
