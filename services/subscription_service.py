# ================================================================
# services/subscription_service.py: Subscription lifecycle
#
# Every transition that grants or changes entitlement goes through
# apply_plan_snapshot(); webhook transitions overwrite whole field sets
# from the event payload so redelivery converges on the same state.
# ================================================================
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.config import settings
from core.security import hash_password
from core.errors import (
    CannotModifySelf,
    DuplicateEmail,
    Misconfiguration,
    NotFound,
    PlanNotConfigured,
    ReferenceNotFound,
    UpstreamBillingError,
    ValidationError,
)
from models.models import (
    DeactivationReason,
    Organization,
    Plan,
    SubscriptionStatus,
    User,
    UserRole,
    WebhookEvent,
    utcnow,
)
from services.billing_gateway import StripeGateway, checkout_mode_for
from services.plan_service import get_basic_plan
from services.seat_service import email_in_use, resolve_seat_limit, sync_active_users

logger = logging.getLogger(__name__)

# Provider statuses that end entitlement locally
EXPIRING_PROVIDER_STATUSES = {"canceled", "unpaid"}

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


# ============================================================
# ✅ Entitlement snapshot
# ============================================================
def plan_snapshot(plan: Plan) -> Dict[str, Any]:
    return {
        "name": plan.name,
        "maxUsers": plan.max_users,
        "features": list(plan.features or []),
        "price": plan.price,
        "billingCycle": plan.billing_cycle,
        "storage": plan.storage,
    }


def apply_plan_snapshot(organization: Organization, plan: Plan) -> Organization:
    """Point the organization at ``plan`` and copy its current terms."""
    organization.plan_id = plan.id
    organization.active_plan = plan_snapshot(plan)
    return organization


# ============================================================
# ✅ Pure transitions (state, payload) -> state
# ============================================================
def normalize_provider_status(provider_status: str) -> str:
    if provider_status in EXPIRING_PROVIDER_STATUSES:
        return SubscriptionStatus.EXPIRED.value
    return provider_status


def apply_checkout_completed(
    organization: Organization, plan: Plan, subscription_ref: Optional[str], now: datetime
) -> Organization:
    apply_plan_snapshot(organization, plan)
    organization.stripe_subscription_id = subscription_ref
    organization.subscription_status = SubscriptionStatus.ACTIVE.value
    organization.subscription_start_date = now
    organization.subscription_end_date = now + timedelta(days=settings.SUBSCRIPTION_DAYS)
    return organization


def apply_subscription_updated(
    organization: Organization, plan: Plan, provider_status: str, period_end: Optional[datetime]
) -> Organization:
    apply_plan_snapshot(organization, plan)
    organization.subscription_status = normalize_provider_status(provider_status)
    if period_end is not None:
        organization.subscription_end_date = period_end
    return organization


def apply_subscription_deleted(organization: Organization, basic_plan: Plan) -> Organization:
    apply_plan_snapshot(organization, basic_plan)
    organization.subscription_status = SubscriptionStatus.EXPIRED.value
    return organization


# ============================================================
# ✅ Payload helpers
# ============================================================
def from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_price_ref(subscription: Dict[str, Any]) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


def subscription_period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions moved the period onto subscription items
    value = subscription.get("current_period_end") or _first_item(subscription).get("current_period_end")
    return from_timestamp(value)


def _organization_by_subscription(session: Session, subscription_ref: Optional[str]) -> Optional[Organization]:
    if not subscription_ref:
        return None
    return session.exec(
        select(Organization).where(Organization.stripe_subscription_id == subscription_ref)
    ).first()


# ============================================================
# ✅ 1. Self-registration
# ============================================================
def register_organization(session: Session, data, now: Optional[datetime] = None) -> Tuple[Organization, User]:
    """Create a trialing organization on the Basic plan together with its admin."""
    if email_in_use(session, data.email):
        raise DuplicateEmail()

    basic_plan = get_basic_plan(session)
    if not basic_plan:
        logger.error("Registration refused: no Basic plan configured")
        raise PlanNotConfigured()

    now = now or utcnow()
    organization = Organization(
        name=data.organization_name,
        email=data.email,
        subscription_status=SubscriptionStatus.TRIALING.value,
        subscription_start_date=now,
        subscription_end_date=now + timedelta(days=settings.TRIAL_DAYS),
        is_active=True,
    )
    apply_plan_snapshot(organization, basic_plan)
    session.add(organization)
    session.flush()

    admin = User(
        email=data.email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role=UserRole.ADMIN.value,
        organization_id=organization.id,
        is_active=True,
    )
    session.add(admin)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicateEmail()

    session.refresh(organization)
    session.refresh(admin)
    logger.info("Registered org %s (%s) with admin %s, trial ends %s",
                organization.id, organization.name, admin.id, organization.subscription_end_date)
    return organization, admin


# ============================================================
# ✅ 2. Checkout session
# ============================================================
def create_checkout(
    session: Session, gateway: StripeGateway, organization: Organization, plan_id: int, email: str
) -> Dict[str, Optional[str]]:
    """Open a provider checkout for ``plan_id``; status only changes when the completion event arrives."""
    plan = session.get(Plan, plan_id)
    if not plan:
        raise NotFound("Plan not found.")
    if not plan.stripe_price_id:
        logger.error("Plan %s has no Stripe price", plan.id)
        raise ValidationError("Invalid plan configuration.")
    if not plan.is_active:
        raise ValidationError("This plan is no longer available.")

    if organization.stripe_customer_id:
        customer_id = gateway.retrieve_customer(organization.stripe_customer_id)
    else:
        customer_id = gateway.create_customer(email, organization.id)
        organization.stripe_customer_id = customer_id
        organization.updated_at = utcnow()
        session.add(organization)
        session.commit()
        session.refresh(organization)

    checkout = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=plan.stripe_price_id,
        metadata={"organizationId": str(organization.id), "planId": str(plan.id)},
        mode=checkout_mode_for(plan.billing_cycle),
    )
    logger.info("Checkout %s opened for org %s on plan %s", checkout["id"], organization.id, plan.name)
    return checkout


# ============================================================
# ✅ 3–5. Webhook transitions
# ============================================================
def handle_checkout_completed(
    session: Session, checkout: Dict[str, Any], now: Optional[datetime] = None
) -> Tuple[Optional[int], Optional[str]]:
    metadata = checkout.get("metadata") or {}
    organization_id = _as_int(metadata.get("organizationId"))
    plan_id = _as_int(metadata.get("planId"))

    organization = session.get(Organization, organization_id) if organization_id else None
    plan = session.get(Plan, plan_id) if plan_id else None
    if not organization or not plan:
        logger.error(
            "Checkout %s references missing records: organization=%s (found=%s) plan=%s (found=%s)",
            checkout.get("id"), organization_id, bool(organization), plan_id, bool(plan),
        )
        raise ReferenceNotFound()

    apply_checkout_completed(organization, plan, checkout.get("subscription"), now or utcnow())
    organization.updated_at = utcnow()
    session.add(organization)
    logger.info("Org %s activated on %s until %s",
                organization.id, plan.name, organization.subscription_end_date)
    return organization.id, None


def handle_subscription_updated(
    session: Session, subscription: Dict[str, Any]
) -> Tuple[Optional[int], Optional[str]]:
    organization = _organization_by_subscription(session, subscription.get("id"))
    if not organization:
        logger.warning("Subscription %s updated but no organization holds it", subscription.get("id"))
        return None, "organization not found"

    price_ref = subscription_price_ref(subscription)
    plan = session.exec(select(Plan).where(Plan.stripe_price_id == price_ref)).first() if price_ref else None
    if not plan:
        logger.warning("Subscription %s updated with unknown price %s", subscription.get("id"), price_ref)
        return organization.id, "plan not found"

    apply_subscription_updated(
        organization, plan, subscription.get("status") or "", subscription_period_end(subscription)
    )
    organization.updated_at = utcnow()
    session.add(organization)
    logger.info("Org %s subscription now %s on %s", organization.id, organization.subscription_status, plan.name)
    return organization.id, None


def handle_subscription_deleted(
    session: Session, subscription: Dict[str, Any]
) -> Tuple[Optional[int], Optional[str]]:
    organization = _organization_by_subscription(session, subscription.get("id"))
    if not organization:
        logger.warning("Subscription %s deleted but no organization holds it", subscription.get("id"))
        return None, "organization not found"

    basic_plan = get_basic_plan(session)
    if not basic_plan:
        # Best-effort downgrade
        logger.warning("Subscription %s deleted but no Basic plan to fall back to", subscription.get("id"))
        return organization.id, "basic plan not found"

    apply_subscription_deleted(organization, basic_plan)
    organization.updated_at = utcnow()
    session.add(organization)
    logger.info("Org %s downgraded to %s, subscription expired", organization.id, basic_plan.name)
    return organization.id, None


def process_event(session: Session, event: Dict[str, Any]) -> str:
    """
    Apply a verified provider event.

    Returns ``"processed"``, ``"duplicate"`` or ``"ignored"``. A checkout
    completion that names missing records raises ``ReferenceNotFound`` and
    leaves the store untouched.
    """
    event_id = event.get("id")
    event_type = event.get("type")
    data_object = (event.get("data") or {}).get("object") or {}
    logger.info("Webhook received: %s (%s)", event_type, event_id)

    if event_id and session.exec(
        select(WebhookEvent.id).where(WebhookEvent.stripe_event_id == event_id)
    ).first():
        logger.info("Webhook %s already processed, skipping", event_id)
        return "duplicate"

    outcome = "processed"
    try:
        if event_type == CHECKOUT_COMPLETED:
            organization_id, note = handle_checkout_completed(
                session, data_object, from_timestamp(event.get("created"))
            )
        elif event_type == SUBSCRIPTION_UPDATED:
            organization_id, note = handle_subscription_updated(session, data_object)
        elif event_type == SUBSCRIPTION_DELETED:
            organization_id, note = handle_subscription_deleted(session, data_object)
        else:
            logger.info("Unhandled event type: %s", event_type)
            organization_id, note, outcome = None, "unhandled event type", "ignored"
    except ReferenceNotFound:
        session.rollback()
        raise

    if event_id:
        session.add(WebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type or "",
            organization_id=organization_id,
            note=note,
        ))
    try:
        session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event won the ledger insert
        session.rollback()
        logger.info("Webhook %s recorded by a concurrent delivery", event_id)
        return "duplicate"
    return outcome


# ============================================================
# ✅ 6. Superadmin overrides
# ============================================================
def create_organization(session: Session, data, now: Optional[datetime] = None) -> Organization:
    plan = session.get(Plan, data.plan_id)
    if not plan:
        raise NotFound("Plan not found.")

    now = now or utcnow()
    organization = Organization(
        name=data.name,
        email=data.email,
        subscription_status=SubscriptionStatus.ACTIVE.value,
        subscription_start_date=now,
        subscription_end_date=now + timedelta(days=settings.SUBSCRIPTION_DAYS),
        active_users=0,
        is_active=True,
    )
    apply_plan_snapshot(organization, plan)
    session.add(organization)
    session.commit()
    session.refresh(organization)
    logger.info("Superadmin created org %s on %s", organization.id, plan.name)
    return organization


def get_organization(session: Session, organization_id: int) -> Organization:
    organization = session.get(Organization, organization_id)
    if not organization:
        raise NotFound("Organization not found.")
    return organization


def update_organization(session: Session, organization_id: int, data) -> Organization:
    organization = get_organization(session, organization_id)
    updates = data.model_dump(exclude_unset=True)

    plan_id = updates.pop("plan_id", None)
    if plan_id is not None:
        plan = session.get(Plan, plan_id)
        if not plan:
            raise NotFound("Plan not found.")
        apply_plan_snapshot(organization, plan)

    for field, value in updates.items():
        if value is None:
            continue
        setattr(organization, field, value.value if hasattr(value, "value") else value)
    organization.updated_at = utcnow()

    session.add(organization)
    session.commit()
    session.refresh(organization)
    return organization


def _guard_own_organization(actor: User, organization: Organization) -> None:
    if organization.id == actor.organization_id:
        raise CannotModifySelf("You cannot change the organization you belong to.")


def _cascade_deactivate(session: Session, organization_id: int) -> int:
    result = session.exec(
        update(User)
        .where(User.organization_id == organization_id, User.is_active == True)  # noqa: E712
        .values(
            is_active=False,
            deactivation_reason=DeactivationReason.ORGANIZATION_DEACTIVATED.value,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def _cascade_reactivate(session: Session, organization_id: int) -> int:
    # Members an admin removed stay removed
    result = session.exec(
        update(User)
        .where(
            User.organization_id == organization_id,
            User.is_active == False,  # noqa: E712
            User.deactivation_reason == DeactivationReason.ORGANIZATION_DEACTIVATED.value,
        )
        .values(is_active=True, deactivation_reason=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def set_organization_active(session: Session, actor: User, organization_id: int, active: bool) -> Organization:
    organization = get_organization(session, organization_id)
    _guard_own_organization(actor, organization)

    organization.is_active = active
    organization.updated_at = utcnow()
    session.add(organization)
    touched = _cascade_reactivate(session, organization.id) if active else _cascade_deactivate(session, organization.id)
    count = sync_active_users(session, organization.id)
    session.commit()
    session.refresh(organization)

    logger.info("Org %s %s, %s members updated",
                organization.id, "activated" if active else "deactivated", touched)
    if active:
        # Restored members are kept even when the plan shrank while the org was off
        max_users, plan_name = resolve_seat_limit(session, organization)
        if count > max_users:
            logger.warning("Org %s reactivated over its seat limit: %s/%s on %s",
                           organization.id, count, max_users, plan_name)
    return organization


def deactivate_organization(session: Session, actor: User, organization_id: int) -> Organization:
    return set_organization_active(session, actor, organization_id, False)


def toggle_organization_status(session: Session, actor: User, organization_id: int) -> Organization:
    organization = get_organization(session, organization_id)
    return set_organization_active(session, actor, organization_id, not organization.is_active)


def delete_organization_permanently(session: Session, actor: User, organization_id: int) -> None:
    organization = get_organization(session, organization_id)
    _guard_own_organization(actor, organization)

    result = session.exec(
        delete(User)
        .where(User.organization_id == organization.id)
        .execution_options(synchronize_session=False)
    )
    session.delete(organization)
    session.commit()
    logger.info("Org %s permanently deleted with %s members", organization_id, result.rowcount)


# ============================================================
# ✅ Lapsed subscriptions
# ============================================================
def expire_lapsed_subscriptions(session: Session, now: Optional[datetime] = None) -> int:
    """
    Expire trials and superadmin grants whose window has passed.

    Provider-managed subscriptions are left to the billing provider's events.
    """
    now = now or utcnow()
    lapsed = session.exec(
        select(Organization).where(
            Organization.subscription_status.in_(
                [SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value]
            ),
            Organization.subscription_end_date < now,
            Organization.stripe_subscription_id == None,  # noqa: E711
        )
    ).all()

    for organization in lapsed:
        organization.subscription_status = SubscriptionStatus.EXPIRED.value
        organization.updated_at = now
        session.add(organization)
        logger.info("Org %s subscription lapsed on %s", organization.id, organization.subscription_end_date)

    if lapsed:
        session.commit()
    return len(lapsed)


# ============================================================
# ✅ Subscription details
# ============================================================
def get_subscription_details(session: Session, gateway: StripeGateway, organization: Organization) -> Dict[str, Any]:
    plan = session.get(Plan, organization.plan_id)

    stripe_subscription = None
    if organization.stripe_subscription_id:
        try:
            stripe_subscription = gateway.retrieve_subscription(organization.stripe_subscription_id)
        except (UpstreamBillingError, Misconfiguration) as e:
            # Display-only; local state is still returned
            logger.error("Could not fetch Stripe subscription %s: %s", organization.stripe_subscription_id, e)

    snapshot = organization.active_plan or {}
    return {
        "organization": organization,
        "plan": plan,
        "subscription": {
            "status": organization.subscription_status,
            "max_users": snapshot.get("maxUsers") or (plan.max_users if plan else None),
            "end_date": organization.subscription_end_date,
            "stripe_subscription": stripe_subscription,
        },
    }
