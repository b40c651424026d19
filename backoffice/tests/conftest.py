"""
Test fixtures - in-memory SQLite database, seeded accounts and HTTP clients
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from backoffice.database import Base, get_db
from backoffice.main import app
from backoffice.api.auth import get_password_hash, create_access_token
from backoffice.models.product import Product
from backoffice.models.user import Profile, Role, User
from backoffice.services import cache_service
from backoffice.services.email_service import get_email_service
from backoffice.services.settings_provider import SettingsProvider

PASSWORD = "testpass123"


class FakeEmailService:
    """Records every send instead of talking to SMTP"""

    def __init__(self):
        self.sent = []

    def _record(self, kind, **kwargs):
        self.sent.append((kind, kwargs))
        return True

    def send_welcome_email(self, **kwargs):
        return self._record("welcome", **kwargs)

    def send_password_reset_email(self, **kwargs):
        return self._record("password_reset", **kwargs)

    def send_trial_change_email(self, **kwargs):
        return self._record("trial_change", **kwargs)

    def send_trial_extension_email(self, **kwargs):
        return self._record("trial_extension", **kwargs)

    def send_invite_email(self, **kwargs):
        return self._record("invite", **kwargs)

    def send_invoice_created_email(self, **kwargs):
        return self._record("invoice_created", **kwargs)

    def of_kind(self, kind):
        return [params for k, params in self.sent if k == kind]


@pytest.fixture(autouse=True)
def reset_cache():
    """Each test starts with an empty in-process cache"""
    cache_service._cache = None
    yield
    cache_service._cache = None


@pytest_asyncio.fixture()
async def db_session():
    """Create a fresh in-memory SQLite database for each test"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


async def make_account(session, email, role, full_name, referred_by=None, **fields):
    user = User(email=email, hashed_password=get_password_hash(PASSWORD))
    session.add(user)
    await session.flush()
    profile = Profile(user_id=user.id, full_name=full_name, role=role, referred_by=referred_by, **fields)
    profile.user = user
    session.add(profile)
    await session.flush()
    return profile


@pytest_asyncio.fixture()
async def seed_data(db_session):
    """
    Admin, two resellers, consumers (one without email, one without
    referrer), two products and a 12% default commission
    """
    admin = await make_account(db_session, "admin@test.com", Role.ADMIN.value, "Test Admin")
    reseller = await make_account(
        db_session, "reseller@test.com", Role.RESELLER.value, "Rita Reseller", referred_by=admin.user_id
    )
    other_reseller = await make_account(
        db_session, "other@test.com", Role.RESELLER.value, "Oscar Other", referred_by=admin.user_id
    )
    trial = datetime.utcnow() + timedelta(days=3)
    consumer = await make_account(
        db_session, "consumer@test.com", Role.CONSUMER.value, "Carl Consumer",
        referred_by=reseller.user_id, trial_expiry=trial,
    )
    no_email = await make_account(
        db_session, None, Role.CONSUMER.value, "Nora NoEmail",
        referred_by=reseller.user_id, trial_expiry=trial,
    )
    other_consumer = await make_account(
        db_session, "otherconsumer@test.com", Role.CONSUMER.value, "Olga Consumer",
        referred_by=other_reseller.user_id, trial_expiry=trial,
    )
    orphan = await make_account(
        db_session, "orphan@test.com", Role.CONSUMER.value, "Otto Orphan", trial_expiry=trial,
    )

    widget = Product(name="Widget", price=Decimal("50.00"), description="Catalog $50")
    gadget = Product(name="Gadget", price=Decimal("30.00"), description="Catalog $30")
    db_session.add_all([widget, gadget])

    provider = SettingsProvider(db_session)
    await provider.ensure_defaults()
    await provider.set_default_commission(Decimal("12.00"))

    await db_session.commit()

    return {
        "admin": admin,
        "reseller": reseller,
        "other_reseller": other_reseller,
        "consumer": consumer,
        "no_email": no_email,
        "other_consumer": other_consumer,
        "orphan": orphan,
        "widget": widget,
        "gadget": gadget,
    }


@pytest.fixture()
def outbox():
    fake = FakeEmailService()
    app.dependency_overrides[get_email_service] = lambda: fake
    return fake


def _override_db(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db


def _client_for(profile=None):
    transport = ASGITransport(app=app)
    ac = AsyncClient(transport=transport, base_url="http://test", follow_redirects=True)
    if profile is not None:
        token = create_access_token(data={"sub": profile.user_id})
        ac.headers["Authorization"] = f"Bearer {token}"
    return ac


@pytest_asyncio.fixture()
async def client(db_session, seed_data, outbox):
    """Authenticated admin httpx AsyncClient bound to the FastAPI app"""
    _override_db(db_session)
    async with _client_for(seed_data["admin"]) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def reseller_client(db_session, seed_data, outbox):
    """Authenticated reseller client"""
    _override_db(db_session)
    async with _client_for(seed_data["reseller"]) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauth_client(db_session, outbox):
    """Unauthenticated httpx AsyncClient"""
    _override_db(db_session)
    async with _client_for() as ac:
        yield ac
    app.dependency_overrides.clear()
