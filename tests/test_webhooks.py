import json
from datetime import datetime

import pytest
from sqlmodel import select

from conftest import VALID_SIGNATURE
from models.models import Organization, SubscriptionStatus, WebhookEvent
from services import subscription_service

CREATED = 1767225600  # 2026-01-01T00:00:00Z
PERIOD_END = 1798761600  # 2027-01-01T00:00:00Z


def post_event(client, event, signature=VALID_SIGNATURE):
    return client.post(
        "/stripe/webhook",
        content=json.dumps(event),
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def checkout_completed(event_id, organization_id, plan_id, subscription="sub_123"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "created": CREATED,
        "data": {"object": {
            "id": "cs_test",
            "subscription": subscription,
            "metadata": {"organizationId": str(organization_id), "planId": str(plan_id)},
        }},
    }


def subscription_event(event_id, event_type, subscription_id, status="active", price_id=None,
                       period_end=PERIOD_END, period_on_item=False):
    item = {"price": {"id": price_id}}
    subscription = {"id": subscription_id, "status": status, "items": {"data": [item]}}
    if period_on_item:
        item["current_period_end"] = period_end
    else:
        subscription["current_period_end"] = period_end
    return {"id": event_id, "type": event_type, "created": CREATED, "data": {"object": subscription}}


def org_state(organization):
    return (
        organization.plan_id,
        organization.active_plan,
        organization.subscription_status,
        organization.subscription_start_date,
        organization.subscription_end_date,
        organization.stripe_subscription_id,
    )


@pytest.fixture
def billing(make_plan, make_org):
    basic = make_plan(name="Basic", max_users=1, stripe_price_id="price_basic")
    plus = make_plan(name="Plus", max_users=25, price=4999.0, billing_cycle="Yearly", stripe_price_id="price_plus")
    organization = make_org(basic)
    return basic, plus, organization


# ----------------------------------------------------------------------
# Authenticity
# ----------------------------------------------------------------------
def test_bad_signature_is_rejected_without_mutation(client, session, billing):
    _, plus, organization = billing
    before = org_state(organization)

    response = post_event(client, checkout_completed("evt_1", organization.id, plus.id), signature="forged")

    assert response.status_code == 400
    session.refresh(organization)
    assert org_state(organization) == before
    assert session.exec(select(WebhookEvent)).all() == []


def test_missing_signature_is_rejected(client, billing):
    _, plus, organization = billing
    response = client.post("/stripe/webhook", content=json.dumps(checkout_completed("evt_1", organization.id, plus.id)))
    assert response.status_code == 400


# ----------------------------------------------------------------------
# Checkout completed
# ----------------------------------------------------------------------
def test_checkout_completed_activates_organization(client, session, billing):
    _, plus, organization = billing

    response = post_event(client, checkout_completed("evt_1", organization.id, plus.id))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    session.refresh(organization)
    assert organization.plan_id == plus.id
    assert organization.subscription_status == "active"
    assert organization.stripe_subscription_id == "sub_123"
    assert organization.active_plan["name"] == "Plus"
    assert organization.active_plan["maxUsers"] == 25
    assert organization.subscription_start_date == datetime(2026, 1, 1)
    assert organization.subscription_end_date == datetime(2027, 1, 1)


def test_checkout_completed_twice_is_idempotent(client, session, billing):
    _, plus, organization = billing

    post_event(client, checkout_completed("evt_1", organization.id, plus.id))
    session.refresh(organization)
    once = org_state(organization)

    # Same payload under a new event id, so the ledger does not short-circuit it
    post_event(client, checkout_completed("evt_2", organization.id, plus.id))
    session.refresh(organization)
    assert org_state(organization) == once


def test_redelivered_event_is_acknowledged_once(client, session, billing):
    _, plus, organization = billing
    event = checkout_completed("evt_dup", organization.id, plus.id)

    assert post_event(client, event).status_code == 200
    assert post_event(client, event).status_code == 200

    ledger = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_dup")).all()
    assert len(ledger) == 1


def test_checkout_for_missing_organization_is_not_found(client, session, billing):
    basic, plus, organization = billing
    before = org_state(organization)

    response = post_event(client, checkout_completed("evt_ghost", 987654, plus.id))

    assert response.status_code == 404
    session.refresh(organization)
    assert org_state(organization) == before
    assert session.exec(select(WebhookEvent)).all() == []


def test_checkout_for_missing_plan_is_not_found(client, billing):
    _, _, organization = billing
    response = post_event(client, checkout_completed("evt_noplan", organization.id, 987654))
    assert response.status_code == 404


# ----------------------------------------------------------------------
# Subscription updated / deleted
# ----------------------------------------------------------------------
@pytest.fixture
def subscribed(session, billing):
    basic, plus, organization = billing
    organization.stripe_subscription_id = "sub_live"
    organization.subscription_status = SubscriptionStatus.ACTIVE.value
    session.add(organization)
    session.commit()
    return basic, plus, organization


def test_subscription_updated_overwrites_plan_and_period(client, session, subscribed):
    _, plus, organization = subscribed

    event = subscription_event("evt_u1", "customer.subscription.updated", "sub_live",
                               status="past_due", price_id="price_plus")
    assert post_event(client, event).status_code == 200

    session.refresh(organization)
    assert organization.subscription_status == "past_due"
    assert organization.plan_id == plus.id
    assert organization.active_plan["maxUsers"] == 25
    assert organization.subscription_end_date == datetime(2027, 1, 1)


@pytest.mark.parametrize("provider_status", ["canceled", "unpaid"])
def test_canceled_and_unpaid_normalize_to_expired(client, session, subscribed, provider_status):
    event = subscription_event(f"evt_{provider_status}", "customer.subscription.updated", "sub_live",
                               status=provider_status, price_id="price_plus")
    post_event(client, event)

    _, _, organization = subscribed
    session.refresh(organization)
    assert organization.subscription_status == "expired"


def test_period_end_read_from_subscription_item(client, session, subscribed):
    event = subscription_event("evt_item", "customer.subscription.updated", "sub_live",
                               price_id="price_plus", period_on_item=True)
    post_event(client, event)

    _, _, organization = subscribed
    session.refresh(organization)
    assert organization.subscription_end_date == datetime(2027, 1, 1)


def test_update_for_unknown_subscription_is_acknowledged(client, session, subscribed):
    _, _, organization = subscribed
    before = org_state(organization)

    event = subscription_event("evt_orphan", "customer.subscription.updated", "sub_unknown", price_id="price_plus")
    response = post_event(client, event)

    assert response.status_code == 200
    session.refresh(organization)
    assert org_state(organization) == before
    ledger = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_orphan")).one()
    assert ledger.note == "organization not found"


def test_update_with_unknown_price_is_acknowledged(client, session, subscribed):
    _, _, organization = subscribed
    before = org_state(organization)

    event = subscription_event("evt_price", "customer.subscription.updated", "sub_live", price_id="price_gone")
    assert post_event(client, event).status_code == 200

    session.refresh(organization)
    assert org_state(organization) == before


def test_subscription_deleted_reverts_to_basic(client, session, subscribed):
    basic, plus, organization = subscribed
    post_event(client, subscription_event("evt_u", "customer.subscription.updated", "sub_live", price_id="price_plus"))

    response = post_event(client, subscription_event("evt_d", "customer.subscription.deleted", "sub_live",
                                                     status="canceled", price_id="price_plus"))

    assert response.status_code == 200
    session.refresh(organization)
    assert organization.plan_id == basic.id
    assert organization.active_plan["name"] == "Basic"
    assert organization.subscription_status == "expired"


def test_subscription_deleted_without_basic_plan_is_noop(client, session, make_plan, make_org):
    plus = make_plan(name="Plus", max_users=25, stripe_price_id="price_plus")
    organization = make_org(plus, status="active", stripe_subscription_id="sub_plus")
    before = org_state(organization)

    response = post_event(client, subscription_event("evt_d", "customer.subscription.deleted", "sub_plus"))

    assert response.status_code == 200
    session.refresh(organization)
    assert org_state(organization) == before


def test_unknown_event_type_is_acknowledged(client, session, billing):
    response = post_event(client, {"id": "evt_misc", "type": "invoice.paid", "data": {"object": {}}})

    assert response.status_code == 200
    ledger = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_misc")).one()
    assert ledger.event_type == "invoice.paid"


# ----------------------------------------------------------------------
# Pure transitions
# ----------------------------------------------------------------------
def test_normalize_provider_status():
    assert subscription_service.normalize_provider_status("canceled") == "expired"
    assert subscription_service.normalize_provider_status("unpaid") == "expired"
    assert subscription_service.normalize_provider_status("active") == "active"
    assert subscription_service.normalize_provider_status("trialing") == "trialing"


def test_apply_subscription_updated_keeps_end_date_without_period(billing):
    _, plus, organization = billing
    end = organization.subscription_end_date

    subscription_service.apply_subscription_updated(organization, plus, "active", None)

    assert organization.subscription_end_date == end
    assert organization.plan_id == plus.id


def test_process_event_reports_outcome(session, billing):
    _, plus, organization = billing
    event = checkout_completed("evt_outcome", organization.id, plus.id)

    assert subscription_service.process_event(session, event) == "processed"
    assert subscription_service.process_event(session, event) == "duplicate"
    assert subscription_service.process_event(session, {"id": "evt_x", "type": "ping"}) == "ignored"
    assert session.get(Organization, organization.id).subscription_status == "active"
