# scripts/seed.py

import os
import sys
import argparse
from datetime import timedelta
from types import SimpleNamespace

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ✅ Load environment variables before settings are read
load_dotenv()

from core.config import settings
from core.database import engine, create_db_and_tables
from core.errors import AppError
from core.security import hash_password
from models.models import User, UserRole, Organization, Plan, PlanName, BillingCycle, SubscriptionStatus, utcnow
from services.billing_gateway import get_billing_gateway
from services.plan_service import create_plan, get_basic_plan
from services.subscription_service import apply_plan_snapshot

PLATFORM_ORGANIZATION = "Seatflow Platform"


def seed_basic_plan(session: Session, price: float, max_users: int, storage: int) -> Plan:
    """Create the Basic plan (and its Stripe price) unless one already exists."""
    plan = get_basic_plan(session)
    if plan:
        print(f"ℹ️  Basic plan already exists (id={plan.id})")
        return plan

    data = SimpleNamespace(
        name=PlanName.BASIC,
        price=price,
        billing_cycle=BillingCycle.TRIAL,
        trial_days=settings.TRIAL_DAYS,
        features=["Team members", "Email support"],
        max_users=max_users,
        storage=storage,
    )
    plan = create_plan(session, get_billing_gateway(), data)
    print(f"✅ Created Basic plan (id={plan.id}, price={plan.stripe_price_id})")
    return plan


def seed_superadmin(session: Session, email: str, password: str) -> User:
    """Create the platform organization and its superadmin."""
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        print(f"ℹ️  User {email} already exists (role={existing.role})")
        return existing

    plan = get_basic_plan(session) or session.exec(select(Plan).order_by(Plan.id)).first()
    if not plan:
        raise SystemExit("❌ No plan exists. Run again with --create-basic-plan.")

    org = session.exec(
        select(Organization).where(Organization.name == PLATFORM_ORGANIZATION)
    ).first()
    if not org:
        now = utcnow()
        org = Organization(
            name=PLATFORM_ORGANIZATION,
            email=email,
            subscription_status=SubscriptionStatus.ACTIVE.value,
            subscription_start_date=now,
            subscription_end_date=now + timedelta(days=settings.SUBSCRIPTION_DAYS),
        )
        apply_plan_snapshot(org, plan)
        session.add(org)
        session.commit()
        session.refresh(org)
        print(f"✅ Created {PLATFORM_ORGANIZATION}")

    superadmin = User(
        email=email,
        password_hash=hash_password(password),
        first_name="Super",
        last_name="Admin",
        role=UserRole.SUPER_ADMIN.value,
        is_active=True,
        organization_id=org.id,
    )
    session.add(superadmin)
    session.commit()
    session.refresh(superadmin)
    print(f"✅ Created superadmin {email}")
    return superadmin


def main():
    parser = argparse.ArgumentParser(description="Seed the Seatflow database")
    parser.add_argument("--email", default="superadmin@seatflow.dev", help="Superadmin email")
    parser.add_argument("--password", default="superadmin", help="Superadmin password")
    parser.add_argument("--create-basic-plan", action="store_true", help="Create the Basic plan through Stripe")
    parser.add_argument("--basic-price", type=float, default=0.0)
    parser.add_argument("--basic-max-users", type=int, default=5)
    parser.add_argument("--basic-storage", type=int, default=5)
    args = parser.parse_args()

    print("🌱 Seeding database...")
    create_db_and_tables()
    with Session(engine) as session:
        try:
            if args.create_basic_plan:
                seed_basic_plan(session, args.basic_price, args.basic_max_users, args.basic_storage)
            seed_superadmin(session, args.email.strip().lower(), args.password)
        except AppError as e:
            raise SystemExit(f"❌ Seeding failed: {e.message}")
    print("🌱 Done.")


if __name__ == "__main__":
    main()
