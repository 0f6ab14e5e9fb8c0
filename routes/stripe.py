# routes/stripe.py
from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from core.database import get_session
from core.errors import NotFound
from core.security import get_current_user
from models.models import User, Organization
from schemas.organization_schema import (
    SubscribeRequest, CheckoutSessionResponse, SubscriptionResponse, WebhookAck,
)
from services import subscription_service
from services.billing_gateway import StripeGateway, get_billing_gateway

import logging
logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stripe"])


def _caller_organization(session: Session, user: User) -> Organization:
    organization = session.get(Organization, user.organization_id)
    if not organization:
        raise NotFound("Organization not found.")
    return organization


# -------------------------
# Create checkout session
# -------------------------
@router.post("/subscribe", response_model=CheckoutSessionResponse)
def subscribe(
    data: SubscribeRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    """Start a Stripe checkout for the caller's organization"""
    organization = _caller_organization(session, current_user)
    checkout = subscription_service.create_checkout(
        session, gateway, organization, data.plan_id, current_user.email
    )
    return CheckoutSessionResponse(**checkout)


# -------------------------
# Stripe webhook
# -------------------------
@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    # Signature is computed over the exact bytes Stripe sent
    payload = await request.body()
    event = gateway.verify_event(payload, request.headers.get("stripe-signature"))
    subscription_service.process_event(session, event)
    return WebhookAck()


# -------------------------
# Current subscription
# -------------------------
@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    organization = _caller_organization(session, current_user)
    return subscription_service.get_subscription_details(session, gateway, organization)
