from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select
from sqlalchemy.exc import SQLAlchemyError
import logging

from models.models import User, Organization, SubscriptionStatus
from schemas.user_schema import (
    RegisterRequest, UserCreate, UserLogin, UserRead,
    AuthResponse, OrganizationSummary, SeatUsage, UserCreatedResponse, MessageResponse,
)
from core.database import get_session
from core.errors import AppError, Unauthenticated
from core.security import verify_password, create_token_for_user, get_current_user, get_current_admin
from services import seat_service, subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


def _summary(organization: Organization) -> OrganizationSummary:
    return OrganizationSummary(
        id=organization.id,
        name=organization.name,
        subscription_status=organization.subscription_status,
        # Fresh trial that has never been through checkout
        is_new_organization=(
            organization.subscription_status == SubscriptionStatus.TRIALING.value
            and not organization.stripe_customer_id
        ),
    )


# ==========================================================
# ✅ Public Register: creates organization + admin user
# ==========================================================
@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, session: Session = Depends(get_session)):
    """Creates a trialing organization on the Basic plan and its admin"""
    try:
        organization, admin = subscription_service.register_organization(session, data)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Database error during registration: %s", e)
        raise AppError("Something went wrong while creating your account. Please try again later.")

    return AuthResponse(
        message="Organization registered successfully.",
        token=create_token_for_user(admin),
        user=UserRead.model_validate(admin),
        organization=_summary(organization),
    )


# ==========================================================
# ✅ Admin adds a user to their organization (seat-gated)
# ==========================================================
@router.post("/register-user", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
def register_user(
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


# ==========================================================
# ✅ Login
# ==========================================================
@router.post("/login", response_model=AuthResponse)
def login(credentials: UserLogin, session: Session = Depends(get_session)):
    """Authenticate by email and password"""
    db_user = session.exec(select(User).where(User.email == credentials.email)).first()

    # Same answer for unknown email and wrong password
    if not db_user or not verify_password(credentials.password, db_user.password_hash):
        logger.info("Failed login for %s", credentials.email)
        raise Unauthenticated("Invalid credentials.")

    if not db_user.is_active:
        raise Unauthenticated("Your account is inactive. Contact your admin.")

    organization = session.get(Organization, db_user.organization_id)
    logger.info("Login successful for user %s", db_user.id)
    return AuthResponse(
        message="Login successful.",
        token=create_token_for_user(db_user),
        user=UserRead.model_validate(db_user),
        organization=_summary(organization) if organization else None,
    )


# ==========================================================
# ✅ Get Current Authenticated User
# ==========================================================
@router.get("/me", response_model=UserRead)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's information"""
    return current_user


# ==========================================================
# ✅ Admin deactivates a member
# ==========================================================
@router.delete("/users/{user_id}", response_model=MessageResponse)
def deactivate_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    seat_service.deactivate_user(session, current_user, user_id)
    return MessageResponse(message="User deactivated successfully.")
