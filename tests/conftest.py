"""Shared test fixtures — async DB, client, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_engine.common.constants import LeaveDuration, LeaveStatus, LeaveType
from leave_engine.config import LeavePolicy
from leave_engine.database import Base, get_db
from leave_engine.dependencies import get_leave_policy
from leave_engine.leave.service import LeaveService
from leave_engine.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import leave_engine.common.audit  # noqa: F401
import leave_engine.core_hr.models  # noqa: F401
import leave_engine.leave.models  # noqa: F401

from leave_engine.core_hr.models import Employee
from leave_engine.leave.models import Holiday, LeaveBalance, LeaveRequest

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


def install_sqlite_hooks(sync_engine, begin_sql: str = "BEGIN") -> None:
    """PG-compatible functions plus explicit BEGIN so SAVEPOINTs work on pysqlite."""

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.create_function(
            "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
        )
        dbapi_conn.create_function(
            "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
        )
        dbapi_conn.create_function(
            "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
        )
        # Let SQLAlchemy, not the driver, emit BEGIN
        dbapi_conn.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin_sql)


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
install_sqlite_hooks(engine.sync_engine)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Monday 2024-06-10; every service call in the suite passes it explicitly
TODAY = date(2024, 6, 10)
YEAR = TODAY.year


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
    from leave_engine.common.rate_limit import limiter

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


# ── Policy / service ────────────────────────────────────────────────

@pytest.fixture
def policy() -> LeavePolicy:
    return LeavePolicy()


@pytest.fixture
def service(policy) -> LeaveService:
    return LeaveService(policy)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(policy):
    """Create a fresh app instance with DB and policy dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_leave_policy] = lambda: policy
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


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    code: str,
    *,
    manager_id: Optional[uuid.UUID] = None,
    department: Optional[str] = "Engineering",
    is_hr: bool = False,
    joining_date: date = date(2020, 1, 1),
    is_active: bool = True,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_code=code,
        name=f"Employee {code}",
        email=f"{code.lower()}@example.com",
        department=department,
        position="Staff",
        joining_date=joining_date,
        manager_id=manager_id,
        is_hr=is_hr,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def make_employee(db):
    async def _create(code: str, **kwargs) -> Employee:
        emp = Employee(**_make_employee(code, **kwargs))
        db.add(emp)
        await db.flush()
        return emp

    return _create


@pytest.fixture
def make_balance(db):
    async def _create(
        employee_id: uuid.UUID,
        leave_type: LeaveType = LeaveType.vacation,
        total: str = "20",
        used: str = "0",
        year: int = YEAR,
    ) -> LeaveBalance:
        balance = LeaveBalance(
            id=uuid.uuid4(),
            employee_id=employee_id,
            leave_type=leave_type,
            year=year,
            total_days=Decimal(total),
            used_days=Decimal(used),
        )
        db.add(balance)
        await db.flush()
        return balance

    return _create


@pytest.fixture
def make_leave(db):
    """Insert a request row directly, bypassing the service."""

    async def _create(
        employee_id: uuid.UUID,
        start: date,
        end: date,
        *,
        status: LeaveStatus = LeaveStatus.approved,
        leave_type: LeaveType = LeaveType.vacation,
        total_days: str = "1",
        charged_days: Optional[str] = None,
        is_backdated: bool = False,
    ) -> LeaveRequest:
        if charged_days is None:
            charged_days = total_days if status.is_approved else "0"
        leave_req = LeaveRequest(
            id=uuid.uuid4(),
            request_code=f"LR-{uuid.uuid4().hex[:8].upper()}",
            employee_id=employee_id,
            leave_type=leave_type,
            start_date=start,
            end_date=end,
            duration=LeaveDuration.full_day,
            total_days=Decimal(total_days),
            charged_days=Decimal(charged_days),
            status=status,
            is_backdated=is_backdated,
            version=0,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        db.add(leave_req)
        await db.flush()
        return leave_req

    return _create


@pytest.fixture
def make_holiday(db):
    async def _create(day: date, name: str = "Public Holiday") -> Holiday:
        holiday = Holiday(id=uuid.uuid4(), holiday_date=day, name=name)
        db.add(holiday)
        await db.flush()
        return holiday

    return _create


@pytest.fixture
async def org(make_employee) -> dict[str, Employee]:
    """A small hierarchy.

    CEO (top level)
    ├── HR (is_hr)
    ├── M1 (Engineering, 2 reports)
    │   ├── E1
    │   └── E2
    └── M2 (Engineering, 1 report)
        └── E3
    """
    ceo = await make_employee("CEO", department="Executive")
    hr = await make_employee("HR", manager_id=ceo.id, department="People", is_hr=True)
    m1 = await make_employee("M1", manager_id=ceo.id)
    m2 = await make_employee("M2", manager_id=ceo.id)
    e1 = await make_employee("E1", manager_id=m1.id)
    e2 = await make_employee("E2", manager_id=m1.id)
    e3 = await make_employee("E3", manager_id=m2.id)
    return {"CEO": ceo, "HR": hr, "M1": m1, "M2": m2, "E1": e1, "E2": e2, "E3": e3}
