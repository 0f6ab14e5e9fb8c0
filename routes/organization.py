# routes/organization.py
from fastapi import APIRouter, Depends, status
from sqlalchemy import func
from sqlmodel import Session, select
from typing import List

from core.database import get_session
from core.security import get_current_super_admin
from models.models import User, Organization, Plan
from schemas.organization_schema import (
    OrganizationRead, OrganizationCreate, OrganizationUpdate, OrganizationWithStats, ToggleStatusResponse,
)
from schemas.plan_schema import PlanRead
from schemas.user_schema import UserRead, MessageResponse
from services import subscription_service

router = APIRouter(tags=["Organizations"])


def _with_stats(session: Session, organization: Organization) -> OrganizationWithStats:
    member_count = session.exec(
        select(func.count()).select_from(User).where(User.organization_id == organization.id)
    ).one()
    plan = session.get(Plan, organization.plan_id)
    result = OrganizationWithStats.model_validate(organization)
    result.plan = PlanRead.model_validate(plan) if plan else None
    result.member_count = member_count
    return result


# ==================================================================
#  ✅ GET ALL ORGANIZATIONS
# ==================================================================
@router.get("/", response_model=List[OrganizationWithStats])
def get_all_organizations(
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """Get all organizations with their plan and member count"""
    organizations = session.exec(select(Organization).order_by(Organization.created_at.desc())).all()
    return [_with_stats(session, organization) for organization in organizations]


# ==================================================================
#  ✅ CREATE ORGANIZATION
# ==================================================================
@router.post("/", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(
    data: OrganizationCreate,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """Create an active organization on any plan, without billing"""
    return subscription_service.create_organization(session, data)


# ==================================================================
#  ✅ GET ORGANIZATION
# ==================================================================
@router.get("/{organization_id}", response_model=OrganizationWithStats)
def get_organization(
    organization_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    organization = subscription_service.get_organization(session, organization_id)
    return _with_stats(session, organization)


# ==================================================================
#  ✅ UPDATE ORGANIZATION
# ==================================================================
@router.put("/{organization_id}", response_model=OrganizationRead)
def update_organization(
    organization_id: int,
    organization_update: OrganizationUpdate,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    return subscription_service.update_organization(session, organization_id, organization_update)


# ==================================================================
#  ✅ DEACTIVATE / TOGGLE / DELETE
# ==================================================================
@router.delete("/{organization_id}", response_model=MessageResponse)
def deactivate_organization(
    organization_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """Soft-deactivate the organization and all of its members"""
    subscription_service.deactivate_organization(session, current_user, organization_id)
    return MessageResponse(message="Organization deactivated successfully.")


@router.post("/{organization_id}/toggle-status", response_model=ToggleStatusResponse)
def toggle_organization_status(
    organization_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    organization = subscription_service.toggle_organization_status(session, current_user, organization_id)
    state = "activated" if organization.is_active else "deactivated"
    return ToggleStatusResponse(message=f"Organization {state} successfully.", is_active=organization.is_active)


@router.delete("/{organization_id}/permanent", response_model=MessageResponse)
def delete_organization_permanently(
    organization_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    """Delete the organization and every member. Cannot be undone."""
    subscription_service.delete_organization_permanently(session, current_user, organization_id)
    return MessageResponse(message="Organization and its users permanently deleted.")


# ==================================================================
#  ✅ ORGANIZATION MEMBERS
# ==================================================================
@router.get("/{organization_id}/users", response_model=List[UserRead])
def get_organization_users(
    organization_id: int,
    current_user: User = Depends(get_current_super_admin),
    session: Session = Depends(get_session),
):
    organization = subscription_service.get_organization(session, organization_id)
    return session.exec(
        select(User).where(User.organization_id == organization.id).order_by(User.id)
    ).all()
