"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("ABSENCE_BACKFILL_ENABLED", "false")

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from timekeeper.auth.dependencies import hash_token
from timekeeper.common.clock import at_org_time
from timekeeper.common.constants import CompanyStatus, UserRole
from timekeeper.config import settings
from timekeeper.database import Base, get_db
from timekeeper.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import timekeeper.attendance.models  # noqa: F401
import timekeeper.auth.models  # noqa: F401
import timekeeper.common.audit  # noqa: F401
import timekeeper.core_hr.models  # noqa: F401
import timekeeper.leave.models  # noqa: F401
import timekeeper.regularization.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TOKEN_TTL = timedelta(hours=1)

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from timekeeper.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Time helpers ────────────────────────────────────────────────────

# Week of 2030-01-07 (Monday); Saturday 2030-01-12 is the weekly off day
MONDAY = date(2030, 1, 7)
WEDNESDAY = date(2030, 1, 9)
SATURDAY = date(2030, 1, 12)


def org_instant(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware UTC instant of an organisation wall-clock time."""
    return at_org_time(day, time(hour, minute)).astimezone(timezone.utc)


# ── Model factories ─────────────────────────────────────────────────

async def make_company(db, *, name: str = "Himalayan Traders", suspended: bool = False):
    from timekeeper.core_hr.models import Company

    company = Company(
        name=name,
        status=CompanyStatus.suspended if suspended else CompanyStatus.active,
    )
    db.add(company)
    await db.flush()
    return company


async def make_shift(
    db,
    company,
    *,
    name: str = "General",
    start: time = time(9, 0),
    end: time = time(18, 0),
):
    from timekeeper.core_hr.models import WorkShift

    shift = WorkShift(company_id=company.id, name=name, start_time=start, end_time=end)
    db.add(shift)
    await db.flush()
    return shift


async def make_user(db, company, *, role: UserRole = UserRole.employee, email: Optional[str] = None):
    from timekeeper.auth.models import User

    user = User(
        email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
        full_name="Test User",
        role=role,
        company_id=company.id if company is not None else None,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    return user


async def make_employee(
    db,
    company,
    *,
    user=None,
    shift=None,
    code: Optional[str] = None,
    first_name: str = "Sita",
    last_name: str = "Sharma",
):
    from timekeeper.core_hr.models import Employee

    employee = Employee(
        company_id=company.id,
        user_id=user.id if user is not None else None,
        employee_code=code or f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        work_shift_id=shift.id if shift is not None else None,
        is_active=True,
    )
    db.add(employee)
    await db.flush()
    # Load company / work_shift / user for service-level calls
    await db.refresh(employee, ["company", "work_shift", "user"])
    return employee


def create_access_token(user_id: uuid.UUID, role: UserRole) -> str:
    """Sign an access token the way the identity service does."""
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def bearer_headers(db, user) -> dict[str, str]:
    """Issue a token for *user* and persist its session."""
    from timekeeper.auth.models import UserSession

    token = create_access_token(user.id, user.role)
    db.add(UserSession(
        user_id=user.id,
        token_hash=hash_token(token),
        expires_at=datetime.now(timezone.utc) + TOKEN_TTL,
        is_revoked=False,
    ))
    await db.flush()
    return {"Authorization": f"Bearer {token}"}


# ── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture
async def company(db):
    company = await make_company(db)
    await db.commit()
    return company


@pytest.fixture
async def day_shift(db, company):
    shift = await make_shift(db, company)
    await db.commit()
    return shift


@pytest.fixture
async def night_shift(db, company):
    shift = await make_shift(db, company, name="Night", start=time(22, 0), end=time(6, 0))
    await db.commit()
    return shift


@pytest.fixture
async def employee_user(db, company):
    user = await make_user(db, company, role=UserRole.employee)
    await db.commit()
    return user


@pytest.fixture
async def employee(db, company, day_shift, employee_user):
    emp = await make_employee(db, company, user=employee_user, shift=day_shift, code="EMP-001")
    await db.commit()
    return emp


@pytest.fixture
async def admin_user(db, company):
    user = await make_user(db, company, role=UserRole.company_admin)
    await db.commit()
    return user


@pytest.fixture
async def manager_user(db, company):
    user = await make_user(db, company, role=UserRole.manager)
    await db.commit()
    return user


@pytest.fixture
async def employee_headers(db, employee, employee_user) -> dict[str, str]:
    headers = await bearer_headers(db, employee_user)
    await db.commit()
    return headers


@pytest.fixture
async def admin_headers(db, admin_user) -> dict[str, str]:
    headers = await bearer_headers(db, admin_user)
    await db.commit()
    return headers


@pytest.fixture
async def manager_headers(db, manager_user) -> dict[str, str]:
    headers = await bearer_headers(db, manager_user)
    await db.commit()
    return headers
