# routes/plans.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List

from core.database import get_session
from core.security import get_current_user, get_current_super_admin
from models.models import User
from schemas.plan_schema import PlanCreate, PlanRead, PlanUpdate
from schemas.user_schema import MessageResponse
from services import plan_service
from services.billing_gateway import StripeGateway, get_billing_gateway

router = APIRouter(tags=["Plans"])


# ==================================================================
#  ✅ CATALOG
# ==================================================================
@router.get("/public", response_model=List[PlanRead])
def list_public_plans(session: Session = Depends(get_session)):
    """Active plans for the pricing page; no login needed"""
    return plan_service.list_plans(session, active_only=True)


@router.get("/", response_model=List[PlanRead])
def list_plans(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return plan_service.list_plans(session)


@router.get("/{plan_id}", response_model=PlanRead)
def get_plan(
    plan_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return plan_service.get_plan(session, plan_id)


# ==================================================================
#  ✅ MANAGEMENT (superadmin)
# ==================================================================
@router.post("/", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    data: PlanCreate,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    """Create a plan together with its Stripe product and price"""
    return plan_service.create_plan(session, gateway, data)


@router.put("/{plan_id}", response_model=PlanRead)
def update_plan(
    plan_id: int,
    data: PlanUpdate,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_billing_gateway),
):
    return plan_service.update_plan(session, gateway, plan_id, data)


@router.delete("/{plan_id}", response_model=MessageResponse)
def delete_plan(
    plan_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """Plans are never hard-deleted; this hides them from the catalog"""
    plan_service.deactivate_plan(session, plan_id)
    return MessageResponse(message="Plan deactivated successfully.")
