# ================================================================
# services/plan_service.py: Plan catalog (creation, price rotation, soft delete)
# ================================================================
import logging
from typing import List, Optional

from sqlmodel import Session, select

from core.errors import NotFound
from models.models import Plan, PlanName, utcnow
from services.billing_gateway import StripeGateway

logger = logging.getLogger(__name__)

# Changing either of these needs a new provider price
PRICE_AFFECTING_FIELDS = ("price", "billing_cycle")


def _value(v):
    return v.value if hasattr(v, "value") else v


def list_plans(session: Session, active_only: bool = False) -> List[Plan]:
    statement = select(Plan).order_by(Plan.price)
    if active_only:
        statement = statement.where(Plan.is_active == True)  # noqa: E712
    return list(session.exec(statement).all())


def get_plan(session: Session, plan_id: int) -> Plan:
    plan = session.get(Plan, plan_id)
    if not plan:
        raise NotFound("Plan not found.")
    return plan


def get_basic_plan(session: Session) -> Optional[Plan]:
    """The plan new trials start on; an active one wins over a retired one."""
    return session.exec(
        select(Plan)
        .where(Plan.name == PlanName.BASIC.value)
        .order_by(Plan.is_active.desc(), Plan.id)
    ).first()


def create_plan(session: Session, gateway: StripeGateway, data) -> Plan:
    """Mint the provider price first; nothing is stored if that fails."""
    name = _value(data.name)
    billing_cycle = _value(data.billing_cycle)

    price_id = gateway.create_price(
        name=name,
        price=data.price,
        billing_cycle=billing_cycle,
        max_users=data.max_users,
        storage=data.storage,
    )

    plan = Plan(
        name=name,
        price=data.price,
        billing_cycle=billing_cycle,
        trial_days=data.trial_days,
        features=list(data.features),
        max_users=data.max_users,
        storage=data.storage,
        stripe_price_id=price_id,
        is_active=True,
    )
    session.add(plan)
    session.commit()
    session.refresh(plan)
    logger.info("Plan %s (%s) created with price %s", plan.id, plan.name, price_id)
    return plan


def update_plan(session: Session, gateway: StripeGateway, plan_id: int, data) -> Plan:
    """
    Patch a plan in place.

    A price or billing-cycle change mints a new provider price and retires the
    old one. Organizations keep their entitlement snapshot until their next
    subscription transition.
    """
    plan = get_plan(session, plan_id)
    updates = {
        k: _value(v) for k, v in data.model_dump(exclude_unset=True).items() if v is not None
    }

    if any(field in updates for field in PRICE_AFFECTING_FIELDS):
        new_price_id = gateway.create_price(
            name=updates.get("name", plan.name),
            price=updates.get("price", plan.price),
            billing_cycle=updates.get("billing_cycle", plan.billing_cycle),
            max_users=updates.get("max_users", plan.max_users),
            storage=updates.get("storage", plan.storage),
        )
        old_price_id = plan.stripe_price_id
        if old_price_id:
            gateway.deactivate_price(old_price_id)
        updates["stripe_price_id"] = new_price_id
        logger.info("Plan %s price rotated %s -> %s", plan.id, old_price_id, new_price_id)

    for field, value in updates.items():
        if field == "features":
            value = list(value)
        setattr(plan, field, value)
    plan.updated_at = utcnow()

    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan


def deactivate_plan(session: Session, plan_id: int) -> Plan:
    plan = get_plan(session, plan_id)
    plan.is_active = False
    plan.updated_at = utcnow()
    session.add(plan)
    session.commit()
    session.refresh(plan)
    logger.info("Plan %s deactivated", plan.id)
    return plan
