# ================================================================
# services/billing_gateway.py: Stripe adapter (customers, prices, checkout, webhooks)
# ================================================================
import json
import logging
from typing import Any, Dict, Optional

import stripe

from core.config import settings
from core.errors import Misconfiguration, SignatureVerificationError, UpstreamBillingError
from models.models import BillingCycle

logger = logging.getLogger(__name__)

CHECKOUT_MODE_SUBSCRIPTION = "subscription"
CHECKOUT_MODE_PAYMENT = "payment"


def checkout_mode_for(billing_cycle: str) -> str:
    """Trial plans are sold as one-time prices, everything else recurs."""
    return CHECKOUT_MODE_PAYMENT if billing_cycle == BillingCycle.TRIAL.value else CHECKOUT_MODE_SUBSCRIPTION


class StripeGateway:
    """
    Thin wrapper around the Stripe SDK.

    Every provider failure is re-raised as ``UpstreamBillingError`` carrying the
    provider's message, so callers never see SDK exception types.
    """

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str], currency: str = "inr"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        if secret_key:
            stripe.api_key = secret_key

    def _require_key(self) -> None:
        if not self.secret_key:
            raise Misconfiguration("Billing provider is not configured.")

    def _call(self, action: str, fn, *args, **kwargs):
        self._require_key()
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error("Stripe %s failed: %s", action, message)
            raise UpstreamBillingError(message)

    # ------------------------
    # Customers
    # ------------------------
    def create_customer(self, email: str, organization_id: int) -> str:
        customer = self._call(
            "customer create",
            stripe.Customer.create,
            email=email,
            metadata={"organizationId": str(organization_id)},
        )
        logger.info("Created Stripe customer %s for org %s", customer.id, organization_id)
        return customer.id

    def retrieve_customer(self, customer_id: str) -> str:
        customer = self._call("customer retrieve", stripe.Customer.retrieve, customer_id)
        return customer.id

    # ------------------------
    # Products & prices
    # ------------------------
    def create_price(self, name: str, price: float, billing_cycle: str, max_users: int, storage: int) -> str:
        """Create a product and its price; return the new price id."""
        product = self._call(
            "product create",
            stripe.Product.create,
            name=f"{name} Plan",
            description=f"{name} Plan with {max_users} users and {storage}GB storage",
        )
        params: Dict[str, Any] = {
            "product": product.id,
            "unit_amount": int(round(price * 100)),  # smallest currency unit
            "currency": self.currency,
        }
        if billing_cycle != BillingCycle.TRIAL.value:
            interval = "month" if billing_cycle == BillingCycle.MONTHLY.value else "year"
            params["recurring"] = {"interval": interval}

        stripe_price = self._call("price create", stripe.Price.create, **params)
        if not getattr(stripe_price, "id", None):
            raise UpstreamBillingError("Failed to create Stripe price - no price ID returned")
        logger.info("Created Stripe price %s for %s plan", stripe_price.id, name)
        return stripe_price.id

    def deactivate_price(self, price_id: str) -> None:
        # Prices are immutable at the provider; retire the old one instead
        self._call("price deactivate", stripe.Price.modify, price_id, active=False)
        logger.info("Deactivated Stripe price %s", price_id)

    # ------------------------
    # Checkout & subscriptions
    # ------------------------
    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        mode: str = CHECKOUT_MODE_SUBSCRIPTION,
    ) -> Dict[str, Optional[str]]:
        checkout_session = self._call(
            "checkout session create",
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            mode=mode,
            success_url=settings.STRIPE_SUCCESS_URL,
            cancel_url=settings.STRIPE_CANCEL_URL,
            metadata=metadata,
        )
        return {"id": checkout_session.id, "url": getattr(checkout_session, "url", None)}

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = self._call("subscription retrieve", stripe.Subscription.retrieve, subscription_id)
        return json.loads(str(subscription))

    # ------------------------
    # Webhooks
    # ------------------------
    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Check the signature header against the raw body, then parse the event."""
        if not self.webhook_secret:
            raise Misconfiguration("Webhook secret not configured.")
        if not signature:
            raise SignatureVerificationError("Missing stripe-signature header.")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise SignatureVerificationError(f"Webhook Error: {e}")
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("Webhook payload could not be parsed: %s", e)
            raise SignatureVerificationError(f"Webhook Error: invalid payload ({e})")

        if not isinstance(event, dict) or "type" not in event:
            raise SignatureVerificationError("Webhook Error: invalid payload")
        return event


# ------------------------
# FastAPI dependency
# ------------------------
def get_billing_gateway() -> StripeGateway:
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        currency=settings.STRIPE_CURRENCY,
    )
