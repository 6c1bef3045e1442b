import os
# Override DATABASE_URL before any app imports so the module-level engine
# never needs a PostgreSQL driver; tests use their own per-test databases.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["SENTRY_DSN"] = ""
os.environ["AUTO_SETTLE_ON_CLAIM"] = "false"

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from carbonex.database import get_db
from carbonex.main import app
from carbonex.models.base import Base
from carbonex.models.organisation import Organisation
from carbonex.models.user import User, UserRole
from carbonex.models.trip import Trip
from carbonex.models.credit import CreditTransaction
from carbonex.models.registration import PendingRegistration
from carbonex.services.jwt_service import JWTService


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factory helpers - create test entities quickly and consistently
# ---------------------------------------------------------------------------

def _unique_id() -> str:
    return uuid.uuid4().hex[:8]


async def make_org(
    db,
    name: str | None = None,
    domain: str | None = None,
    earned=0,
    tradable=0,
    cash=0,
    approved: bool = True,
) -> Organisation:
    """Insert an organisation with the given balances."""
    suffix = _unique_id()
    org = Organisation(
        name=name or f"Org {suffix}",
        domain=domain or f"org-{suffix}.com",
        earned_credits=Decimal(str(earned)),
        tradable_credits=Decimal(str(tradable)),
        cash_balance=Decimal(str(cash)),
        approved=approved,
    )
    db.add(org)
    await db.commit()
    return org


async def make_user(
    db,
    domain: str,
    role: UserRole = UserRole.EMPLOYEE,
    organisation_id: str | None = None,
    approved: bool = True,
    active: bool = True,
) -> User:
    suffix = _unique_id()
    user = User(
        email=f"{role.value}-{suffix}@{domain}",
        name=f"{role.value.title()} {suffix}",
        domain=domain,
        role=role,
        organisation_id=organisation_id,
        approved=approved,
        active=active,
        earned_credits=Decimal("0"),
    )
    db.add(user)
    await db.commit()
    return user


async def add_trip(db, user: User, credits, rejected: bool = False, mode: str = "bicycle") -> Trip:
    trip = Trip(
        user_id=user.id,
        transport_mode=mode,
        distance_km=Decimal("12.50"),
        carbon_credits=Decimal(str(credits)),
        rejected=rejected,
        trip_date=datetime.now(timezone.utc),
    )
    db.add(trip)
    await db.commit()
    return trip


async def make_org_with_trips(db, credits, cash=0, name: str | None = None) -> Organisation:
    """An organisation whose earned and tradable credits are backed by one employee trip."""
    org = await make_org(db, name=name, earned=credits, tradable=credits, cash=cash)
    if Decimal(str(credits)) > 0:
        employee = await make_user(db, org.domain, organisation_id=org.id)
        await add_trip(db, employee, credits)
    return org


async def reload(session_factory, model, record_id):
    """Read a row through a fresh session, bypassing the caller's identity map."""
    async with session_factory() as fresh:
        return await fresh.get(model, record_id)


def auth_headers(user: User) -> dict:
    token = JWTService().create_token(
        user_id=user.id,
        role=user.role.value,
        email=user.email,
        org_id=user.organisation_id,
    )
    return {"Authorization": f"Bearer {token}"}


def principal_headers(user_id: str, email: str, role: str = "employee") -> dict:
    """Token for a principal that has no approved user record yet."""
    token = JWTService().create_token(user_id=user_id, role=role, email=email)
    return {"Authorization": f"Bearer {token}"}
