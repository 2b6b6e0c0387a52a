"""
Shared test fixtures for the attendance test suite.

Every test gets its own in-memory SQLite database (aiosqlite + StaticPool),
a controllable clock and a private broadcaster.
"""

import os
import sys
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["TIMEZONE_OFFSET"] = "+00:00"
os.environ["DEDUPLICATE_VIOLATIONS"] = "false"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.deps import get_broadcaster, get_clock, get_db
from app.api.v1.endpoints.auth import limiter
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app as fastapi_app
from app.models.attendance_policy import AttendancePolicy
from app.models.employee import Employee, EmployeeHierarchy
from app.models.user import (ROLE_EMPLOYEE, ROLE_HR_ADMIN, ROLE_MANAGER,
                             ROLE_SUPER_ADMIN, User, UserRole)
from app.services.attendance import AttendanceService
from app.services.broadcaster import EventBroadcaster

# Monday, 2026-03-02; policy work hours below are 09:00–17:00 UTC
DAY = datetime(2026, 3, 2, tzinfo=timezone.utc).date()


def at(hour: int, minute: int = 0, second: int = 0, day=DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, second: int = 0, day=DAY) -> None:
        self.now = at(hour, minute, second, day)


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Raw database session for seeding and direct queries."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at(9, 0))


@pytest.fixture
def events() -> EventBroadcaster:
    return EventBroadcaster(maxsize=100, redis_enabled=False)


@pytest.fixture
def service(db_session, events, clock) -> AttendanceService:
    return AttendanceService(db_session, broadcaster=events, clock=clock)


@pytest.fixture
def test_app(session_factory, clock, events):
    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_clock] = lambda: clock
    fastapi_app.dependency_overrides[get_broadcaster] = lambda: events
    limiter.reset()

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def async_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


# ── Seed data ───────────────────────────────────────────────────────
async def _user(db: AsyncSession, email: str, *roles: str) -> User:
    user = User(email=email, hashed_password="not-a-real-hash", full_name=email.split("@")[0])
    for role in roles:
        user.roles.append(UserRole(role_name=role))
    db.add(user)
    await db.flush()
    return user


async def _employee(db: AsyncSession, name: str, user: User | None, department: str) -> Employee:
    employee = Employee(
        full_name=name,
        user_id=user.id if user else None,
        employee_number=f"E-{name.upper()}",
        department=department,
    )
    db.add(employee)
    await db.flush()
    return employee


@pytest.fixture
async def people(db_session: AsyncSession) -> SimpleNamespace:
    """
    admin    super-admin, no employee record
    hr       hr-admin
    manager  manager + employee, manages alice
    alice    employee (reports to manager)
    bob      employee (nobody's report)
    nobody   active user without any role
    """
    admin = await _user(db_session, "admin@test.com", ROLE_SUPER_ADMIN)
    hr = await _user(db_session, "hr@test.com", ROLE_HR_ADMIN)
    manager = await _user(db_session, "manager@test.com", ROLE_MANAGER, ROLE_EMPLOYEE)
    alice = await _user(db_session, "alice@test.com", ROLE_EMPLOYEE)
    bob = await _user(db_session, "bob@test.com", ROLE_EMPLOYEE)
    nobody = await _user(db_session, "nobody@test.com")

    manager_emp = await _employee(db_session, "manager", manager, "engineering")
    alice_emp = await _employee(db_session, "alice", alice, "engineering")
    bob_emp = await _employee(db_session, "bob", bob, "sales")
    db_session.add(EmployeeHierarchy(employee_id=alice_emp.id, manager_id=manager_emp.id))
    await db_session.commit()

    return SimpleNamespace(
        admin=admin,
        hr=hr,
        manager=manager,
        alice=alice,
        bob=bob,
        nobody=nobody,
        manager_emp=manager_emp,
        alice_emp=alice_emp,
        bob_emp=bob_emp,
    )


@pytest.fixture
async def policy(db_session: AsyncSession) -> AttendancePolicy:
    """Default policy: 09:00–17:00, 15 minutes grace."""
    policy = AttendancePolicy(
        name="Standard",
        work_hours_start="09:00",
        work_hours_end="17:00",
        late_arrival_threshold_minutes=15,
        is_default=True,
        is_active=True,
        created_at=at(0, 0),
        updated_at=at(0, 0),
    )
    db_session.add(policy)
    await db_session.commit()
    return policy
