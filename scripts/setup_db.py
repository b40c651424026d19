"""
Database setup script: create tables and load a small demo dataset

    python -m scripts.setup_db            # tables + demo data
    python -m scripts.setup_db --schema   # tables only
"""
import asyncio
import sys
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from backoffice.config import get_settings
from backoffice.database import AsyncSessionLocal, create_tables
from backoffice.models import Product, Profile, Role, User
from backoffice.api.auth import get_password_hash
from backoffice.services.settings_provider import SettingsProvider

settings = get_settings()

DEMO_PASSWORD = "demo12345"

DEMO_PRODUCTS = [
    ("Starter Plan", Decimal("29.00"), "Entry level subscription"),
    ("Pro Plan", Decimal("79.00"), "Full feature subscription"),
    ("Onboarding Session", Decimal("50.00"), "One hour guided setup"),
]


async def _add_account(session, email, role, full_name, referred_by=None, **fields):
    user = User(email=email, hashed_password=get_password_hash(DEMO_PASSWORD))
    session.add(user)
    await session.flush()
    profile = Profile(user_id=user.id, full_name=full_name, role=role, referred_by=referred_by, **fields)
    session.add(profile)
    await session.flush()
    return profile


async def setup_database(schema_only: bool = False):
    """Create tables and seed demo data"""
    print("Creating database tables...")
    await create_tables()
    print("Tables created")
    if schema_only:
        return

    async with AsyncSessionLocal() as session:
        existing = await session.execute(select(Product))
        if existing.scalars().first():
            print("Demo data already present, skipping")
            return

        provider = SettingsProvider(session)
        await provider.ensure_defaults()
        await provider.set_default_commission(Decimal("12.00"))

        admin = await _add_account(session, settings.DEFAULT_ADMIN_EMAIL, Role.ADMIN.value, "Administrator")
        reseller = await _add_account(
            session, "reseller@example.com", Role.RESELLER.value, "Demo Reseller",
            referred_by=admin.user_id,
        )
        await _add_account(
            session, "consumer@example.com", Role.CONSUMER.value, "Demo Consumer",
            referred_by=reseller.user_id,
            trial_expiry=datetime.utcnow() + timedelta(days=settings.DEFAULT_TRIAL_DAYS),
        )
        session.add_all([Product(name=n, price=p, description=d) for n, p, d in DEMO_PRODUCTS])

        await session.commit()
        print("Seed data created")

    print("\nDatabase setup complete!")
    print(f"\nDemo logins (password for all: {DEMO_PASSWORD}):")
    print(f"  Admin:    {settings.DEFAULT_ADMIN_EMAIL}")
    print("  Reseller: reseller@example.com")
    print("  Consumer: consumer@example.com")


if __name__ == "__main__":
    asyncio.run(setup_database(schema_only="--schema" in sys.argv))
