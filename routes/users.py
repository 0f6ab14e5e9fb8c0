# routes/users.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select
from typing import List

from models.models import User
from schemas.user_schema import UserCreate, UserRead, UserUpdate, SeatUsage, UserCreatedResponse, MessageResponse
from core.database import get_session
from core.security import get_current_user, get_current_admin
from services import seat_service

import logging
logger = logging.getLogger(__name__)


router = APIRouter(tags=["Users"])


# ----------------------------------------------------------------------
# ✅ Own profile
# ----------------------------------------------------------------------
@router.get("/profile", response_model=UserRead)
def get_profile(current_user: User = Depends(get_current_user)):
    """Return current user info (decoded from JWT)."""
    return current_user


@router.put("/profile", response_model=UserRead)
def update_profile(
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Let a user change their own name, email or password."""
    return seat_service.update_user(session, current_user, user_update)


# ----------------------------------------------------------------------
# ✅ Organization members (admin)
# ----------------------------------------------------------------------
@router.get("/organization", response_model=List[UserRead])
def list_organization_users(
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """List the active members of the admin's organization, newest first."""
    users = session.exec(
        select(User)
        .where(User.organization_id == current_user.organization_id, User.is_active == True)  # noqa: E712
        .order_by(User.created_at.desc(), User.id.desc())
    ).all()
    return users


@router.post("/organization", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
def add_organization_user(
    data: UserCreate,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    user, seats = seat_service.admit_user(session, current_user.organization_id, data)
    return UserCreatedResponse(
        message="User created successfully.",
        user=UserRead.model_validate(user),
        organization=SeatUsage(current_users=seats.current, max_users=seats.max_users, plan_name=seats.plan_name),
    )


@router.put("/organization/{user_id}", response_model=UserRead)
def update_organization_user(
    user_id: int,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """Update a member's details. Role changes are not accepted here."""
    user = seat_service.get_member(session, current_user, user_id)
    return seat_service.update_user(session, user, user_update)


@router.delete("/organization/{user_id}", response_model=MessageResponse)
def deactivate_organization_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    seat_service.deactivate_user(session, current_user, user_id)
    return MessageResponse(message="User deactivated successfully.")


@router.delete("/organization/{user_id}/permanent", response_model=MessageResponse)
def remove_organization_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    seat_service.remove_user(session, current_user, user_id)
    return MessageResponse(message="User permanently deleted.")
