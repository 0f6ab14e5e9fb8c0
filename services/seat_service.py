# ================================================================
# services/seat_service.py: Seat entitlement (capacity checks, admission, removal)
# ================================================================
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.errors import (
    CannotModifySelf,
    DuplicateEmail,
    NotFound,
    SeatContention,
    SubscriptionNotActive,
    UserLimitReached,
    UserNotFound,
)
from core.security import hash_password
from models.models import (
    DeactivationReason,
    Organization,
    Plan,
    SEAT_GRANTING_STATUSES,
    User,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

# Attempts at the conditional counter write before giving up
MAX_ADMISSION_ATTEMPTS = 3


@dataclass
class SeatCheck:
    allowed: bool
    current: int
    max_users: int
    plan_name: Optional[str]


# ----------------------------------------------------------------------
# Counting
# ----------------------------------------------------------------------
def count_active_users(session: Session, organization_id: int, role: UserRole = UserRole.USER) -> int:
    """Active members holding ``role``; the org admin and superadmins never take a seat."""
    statement = select(func.count()).select_from(User).where(
        User.organization_id == organization_id,
        User.is_active == True,  # noqa: E712
        User.role == role.value,
    )
    return session.exec(statement).one()


def email_in_use(session: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
    statement = select(User.id).where(User.email == email)
    if exclude_user_id is not None:
        statement = statement.where(User.id != exclude_user_id)
    return session.exec(statement).first() is not None


def resolve_seat_limit(session: Session, organization: Organization) -> Tuple[int, Optional[str]]:
    """Seat ceiling from the entitlement snapshot, or the live plan for orgs created before snapshots."""
    snapshot = organization.active_plan or {}
    if snapshot.get("maxUsers"):
        return int(snapshot["maxUsers"]), snapshot.get("name")

    plan = session.get(Plan, organization.plan_id)
    if not plan:
        raise NotFound("Plan not found for organization.")
    return plan.max_users, plan.name


def check_capacity(session: Session, organization: Organization) -> SeatCheck:
    current = count_active_users(session, organization.id)
    max_users, plan_name = resolve_seat_limit(session, organization)
    return SeatCheck(allowed=current < max_users, current=current, max_users=max_users, plan_name=plan_name)


def ensure_subscription_active(organization: Organization) -> None:
    if organization.subscription_status not in SEAT_GRANTING_STATUSES:
        raise SubscriptionNotActive()


# ----------------------------------------------------------------------
# Counter writes
# ----------------------------------------------------------------------
def claim_seat(session: Session, organization_id: int, expected_counter: int, new_count: int) -> bool:
    """
    Conditionally move the seat counter from ``expected_counter`` to ``new_count``.

    Returns False when another writer changed the counter since it was read.
    """
    result = session.exec(
        update(Organization)
        .where(Organization.id == organization_id, Organization.active_users == expected_counter)
        .values(active_users=new_count, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def sync_active_users(session: Session, organization_id: int) -> int:
    """Rewrite the counter from a live count. Caller commits."""
    count = count_active_users(session, organization_id)
    session.exec(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(active_users=count, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return count


# ----------------------------------------------------------------------
# Admission
# ----------------------------------------------------------------------
def admit_user(session: Session, organization_id: int, data) -> Tuple[User, SeatCheck]:
    """
    Add a ``user``-role member to an organization if a seat is free.

    The live count, the conditional counter write and the insert share one
    transaction; two admissions racing for the last seat cannot both commit.
    """
    if email_in_use(session, data.email):
        raise DuplicateEmail()

    # Hash outside the seat transaction
    password_hash = hash_password(data.password)

    for attempt in range(1, MAX_ADMISSION_ATTEMPTS + 1):
        organization = session.get(Organization, organization_id, populate_existing=True)
        if not organization:
            raise NotFound("Organization not found.")

        ensure_subscription_active(organization)

        seats = check_capacity(session, organization)
        if not seats.allowed:
            logger.info(
                "Seat denied for org %s: %s/%s on %s",
                organization.id, seats.current, seats.max_users, seats.plan_name,
            )
            raise UserLimitReached(seats.current, seats.max_users, seats.plan_name)

        if not claim_seat(session, organization.id, organization.active_users, seats.current + 1):
            logger.warning("Seat counter moved for org %s, retrying (attempt %s)", organization.id, attempt)
            session.rollback()
            continue

        user = User(
            email=data.email,
            password_hash=password_hash,
            first_name=data.first_name,
            last_name=data.last_name,
            role=UserRole.USER.value,
            organization_id=organization.id,
            is_active=True,
        )
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            # Lost a race on the global email constraint
            session.rollback()
            raise DuplicateEmail()
        session.refresh(user)

        admitted = SeatCheck(
            allowed=True, current=seats.current + 1, max_users=seats.max_users, plan_name=seats.plan_name
        )
        logger.info(
            "User %s admitted to org %s (%s/%s)", user.id, organization.id, admitted.current, admitted.max_users
        )
        return user, admitted

    raise SeatContention()


# ----------------------------------------------------------------------
# Removal
# ----------------------------------------------------------------------
def _member_for_actor(session: Session, actor: User, user_id: int) -> User:
    if user_id == actor.id:
        raise CannotModifySelf("Cannot deactivate yourself.")
    return get_member(session, actor, user_id)


def deactivate_user(session: Session, actor: User, user_id: int) -> User:
    """Soft-remove a member of the actor's organization."""
    user = _member_for_actor(session, actor, user_id)

    user.is_active = False
    user.deactivation_reason = DeactivationReason.REMOVED_BY_ADMIN.value
    user.updated_at = utcnow()
    session.add(user)
    session.flush()
    count = sync_active_users(session, actor.organization_id)
    session.commit()
    session.refresh(user)

    logger.info("User %s deactivated by %s, org %s now at %s seats", user.id, actor.id, actor.organization_id, count)
    return user


def remove_user(session: Session, actor: User, user_id: int) -> None:
    """Hard-delete a member of the actor's organization."""
    user = _member_for_actor(session, actor, user_id)

    session.delete(user)
    session.flush()
    count = sync_active_users(session, actor.organization_id)
    session.commit()

    logger.info("User %s removed by %s, org %s now at %s seats", user_id, actor.id, actor.organization_id, count)


# ----------------------------------------------------------------------
# Profile changes
# ----------------------------------------------------------------------
def get_member(session: Session, actor: User, user_id: int) -> User:
    user = session.exec(
        select(User).where(User.id == user_id, User.organization_id == actor.organization_id)
    ).first()
    if not user:
        raise UserNotFound()
    return user


def update_user(session: Session, user: User, data) -> User:
    """Patch name, email or password. Role and organization are never touched here."""
    updates = data.model_dump(exclude_unset=True)

    email = updates.get("email")
    if email and email != user.email:
        if email_in_use(session, email, exclude_user_id=user.id):
            raise DuplicateEmail("Email already in use.")
        user.email = email

    if updates.get("password"):
        user.password_hash = hash_password(updates["password"])
    for field in ("first_name", "last_name"):
        if updates.get(field) is not None:
            setattr(user, field, updates[field])
    user.updated_at = utcnow()

    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicateEmail("Email already in use.")
    session.refresh(user)
    return user
