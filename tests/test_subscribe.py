from conftest import auth
from models.models import UserRole


def test_subscribe_provisions_customer_once(client, session, make_plan, make_org, make_user, gateway):
    basic = make_plan(name="Basic")
    plus = make_plan(name="Plus", max_users=25, price=4999.0, billing_cycle="Yearly")
    organization = make_org(basic)
    admin = make_user(organization, role=UserRole.ADMIN.value, email="owner@acme.com")

    first = client.post("/stripe/subscribe", headers=auth(admin), json={"planId": plus.id})

    assert first.status_code == 200
    assert first.json()["url"].startswith("https://checkout.test/")
    session.refresh(organization)
    customer_id = organization.stripe_customer_id
    assert customer_id

    second = client.post("/stripe/subscribe", headers=auth(admin), json={"planId": plus.id})

    assert second.status_code == 200
    assert gateway.names().count("create_customer") == 1
    assert gateway.names().count("retrieve_customer") == 1
    session.refresh(organization)
    assert organization.stripe_customer_id == customer_id


def test_checkout_carries_correlation_metadata(client, make_plan, make_org, make_user, gateway):
    basic = make_plan(name="Basic")
    plus = make_plan(name="Plus", billing_cycle="Monthly")
    organization = make_org(basic)
    admin = make_user(organization, role=UserRole.ADMIN.value)

    client.post("/stripe/subscribe", headers=auth(admin), json={"planId": plus.id})

    _, checkout = [call for call in gateway.calls if call[0] == "create_checkout_session"][0]
    assert checkout["metadata"] == {"organizationId": str(organization.id), "planId": str(plus.id)}
    assert checkout["price_id"] == plus.stripe_price_id
    assert checkout["mode"] == "subscription"


def test_trial_plan_checks_out_as_one_time_payment(client, make_plan, make_org, make_user, gateway):
    basic = make_plan(name="Basic", billing_cycle="Trial")
    organization = make_org(basic)
    admin = make_user(organization, role=UserRole.ADMIN.value)

    client.post("/stripe/subscribe", headers=auth(admin), json={"planId": basic.id})

    _, checkout = [call for call in gateway.calls if call[0] == "create_checkout_session"][0]
    assert checkout["mode"] == "payment"


def test_subscribe_does_not_change_status(client, session, admin_setup):
    plan, organization, admin = admin_setup

    client.post("/stripe/subscribe", headers=auth(admin), json={"planId": plan.id})

    session.refresh(organization)
    assert organization.subscription_status == "trialing"


def test_subscribe_unknown_plan(client, admin_setup):
    _, _, admin = admin_setup
    response = client.post("/stripe/subscribe", headers=auth(admin), json={"planId": 31337})
    assert response.status_code == 404


def test_subscribe_to_retired_plan(client, make_plan, admin_setup):
    _, _, admin = admin_setup
    retired = make_plan(name="Standard", is_active=False)
    response = client.post("/stripe/subscribe", headers=auth(admin), json={"planId": retired.id})
    assert response.status_code == 400


def test_provider_failure_surfaces_and_stores_nothing(client, session, admin_setup, gateway):
    plan, organization, admin = admin_setup
    gateway.fail_with = "Your card was declined."

    response = client.post("/stripe/subscribe", headers=auth(admin), json={"planId": plan.id})

    assert response.status_code == 502
    assert response.json()["message"] == "Your card was declined."
    session.refresh(organization)
    assert organization.stripe_customer_id is None


def test_subscribe_requires_login(client, admin_setup):
    plan, _, _ = admin_setup
    assert client.post("/stripe/subscribe", json={"planId": plan.id}).status_code == 401


def test_get_subscription_includes_provider_object(client, session, admin_setup, gateway):
    plan, organization, admin = admin_setup
    organization.stripe_subscription_id = "sub_live"
    session.add(organization)
    session.commit()
    gateway.subscriptions["sub_live"] = {"id": "sub_live", "status": "active", "cancel_at_period_end": False}

    response = client.get("/stripe/subscription", headers=auth(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["organization"]["id"] == organization.id
    assert body["organization"]["activePlan"]["maxUsers"] == 1
    assert body["plan"]["id"] == plan.id
    assert body["subscription"]["status"] == "trialing"
    assert body["subscription"]["maxUsers"] == 1
    assert body["subscription"]["stripeSubscription"]["id"] == "sub_live"


def test_get_subscription_survives_provider_outage(client, session, admin_setup, gateway):
    _, organization, admin = admin_setup
    organization.stripe_subscription_id = "sub_live"
    session.add(organization)
    session.commit()
    gateway.fail_with = "Stripe is down"

    response = client.get("/stripe/subscription", headers=auth(admin))

    assert response.status_code == 200
    assert response.json()["subscription"]["stripeSubscription"] is None
