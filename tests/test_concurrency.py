"""Racing transitions: exactly one decision wins and the ledger is charged once.

The race tests use a file-backed SQLite database with two independent
connections; ``BEGIN IMMEDIATE`` serializes the writers the way row locks
would on PostgreSQL.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from leave_engine.common.constants import LeaveStatus, LeaveType
from leave_engine.common.exceptions import (
    AppException,
    LedgerConflictException,
    StateConflictException,
    ValidationException,
)
from leave_engine.config import LeavePolicy
from leave_engine.core_hr.models import Employee
from leave_engine.database import Base
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import LeaveBalance, LeaveRequest
from leave_engine.leave.schemas import LeaveRequestCreate
from leave_engine.leave.service import LeaveService
from tests.conftest import TODAY, YEAR, _make_employee, install_sqlite_hooks


@pytest.fixture
async def file_sessions(tmp_path):
    """Session factory over a file database shared by independent connections."""
    race_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    install_sqlite_hooks(race_engine.sync_engine, "BEGIN IMMEDIATE")
    async with race_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(race_engine, class_=AsyncSession, expire_on_commit=False)

    await race_engine.dispose()


async def _seed(factory, *, total: str) -> dict[str, uuid.UUID]:
    async with factory() as session:
        ceo = Employee(**_make_employee("CEO"))
        mgr = Employee(**_make_employee("MGR", manager_id=ceo.id))
        emp = Employee(**_make_employee("EMP", manager_id=mgr.id))
        session.add(ceo)
        await session.flush()
        session.add_all([mgr, emp])
        await session.flush()
        session.add(
            LeaveBalance(
                id=uuid.uuid4(),
                employee_id=emp.id,
                leave_type=LeaveType.vacation,
                year=YEAR,
                total_days=Decimal(total),
                used_days=Decimal("0"),
            )
        )
        await session.commit()
        return {"CEO": ceo.id, "MGR": mgr.id, "EMP": emp.id}


async def _apply(factory, service, employee_id, start, end) -> uuid.UUID:
    async with factory() as session:
        out = await service.apply_leave(
            session,
            employee_id,
            LeaveRequestCreate(leave_type=LeaveType.vacation, start_date=start, end_date=end),
            today=TODAY,
        )
        await session.commit()
        return out.id


async def _decide(factory, coro_factory):
    """Run one decision in its own session; return the result or the raised error."""
    async with factory() as session:
        try:
            result = await coro_factory(session)
            await session.commit()
            return result
        except AppException as exc:
            await session.rollback()
            return exc


async def _used_days(factory, employee_id) -> Decimal:
    async with factory() as session:
        balance = await BalanceLedger.find(session, employee_id, LeaveType.vacation, YEAR)
        return balance.used_days


class TestRacingDecisions:
    async def test_concurrent_approvals_single_winner(self, file_sessions):
        service = LeaveService(LeavePolicy())
        ids = await _seed(file_sessions, total="10")
        req_id = await _apply(
            file_sessions, service, ids["EMP"], date(2024, 6, 17), date(2024, 6, 19),
        )

        outcomes = await asyncio.gather(
            _decide(file_sessions, lambda s: service.approve_leave(
                s, req_id, ids["MGR"], today=TODAY)),
            _decide(file_sessions, lambda s: service.approve_leave(
                s, req_id, ids["CEO"], today=TODAY)),
        )

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], StateConflictException)
        assert await _used_days(file_sessions, ids["EMP"]) == Decimal("3")

    async def test_approve_races_cancel(self, file_sessions):
        service = LeaveService(LeavePolicy())
        ids = await _seed(file_sessions, total="10")
        req_id = await _apply(
            file_sessions, service, ids["EMP"], date(2024, 6, 17), date(2024, 6, 17),
        )

        approve, cancel = await asyncio.gather(
            _decide(file_sessions, lambda s: service.approve_leave(
                s, req_id, ids["MGR"], today=TODAY)),
            _decide(file_sessions, lambda s: service.cancel_leave(s, req_id, ids["EMP"])),
        )

        outcomes = [approve, cancel]
        assert sum(isinstance(o, StateConflictException) for o in outcomes) == 1
        expected_used = Decimal("0") if isinstance(approve, Exception) else Decimal("1")
        assert await _used_days(file_sessions, ids["EMP"]) == expected_used

    async def test_concurrent_approvals_never_overdraw(self, file_sessions):
        """Two requests that each fit but not together: one approval hits the ledger guard."""
        service = LeaveService(LeavePolicy())
        ids = await _seed(file_sessions, total="5")
        first = await _apply(
            file_sessions, service, ids["EMP"], date(2024, 6, 17), date(2024, 6, 19),
        )
        second = await _apply(
            file_sessions, service, ids["EMP"], date(2024, 6, 24), date(2024, 6, 26),
        )

        outcomes = await asyncio.gather(
            _decide(file_sessions, lambda s: service.approve_leave(
                s, first, ids["MGR"], today=TODAY)),
            _decide(file_sessions, lambda s: service.approve_leave(
                s, second, ids["MGR"], today=TODAY)),
        )

        assert sum(isinstance(o, LedgerConflictException) for o in outcomes) == 1
        assert await _used_days(file_sessions, ids["EMP"]) == Decimal("3")

    async def test_approve_races_reject(self, file_sessions):
        service = LeaveService(LeavePolicy())
        ids = await _seed(file_sessions, total="10")
        req_id = await _apply(
            file_sessions, service, ids["EMP"], date(2024, 6, 17), date(2024, 6, 19),
        )

        approve, reject = await asyncio.gather(
            _decide(file_sessions, lambda s: service.approve_leave(
                s, req_id, ids["MGR"], today=TODAY)),
            _decide(file_sessions, lambda s: service.reject_leave(
                s, req_id, ids["CEO"], "Team offsite that week", today=TODAY)),
        )

        assert sum(isinstance(o, StateConflictException) for o in (approve, reject)) == 1
        async with file_sessions() as session:
            final = await session.get(LeaveRequest, req_id)
        if isinstance(approve, Exception):
            assert final.status == LeaveStatus.rejected
            assert await _used_days(file_sessions, ids["EMP"]) == Decimal("0")
        else:
            assert final.status == LeaveStatus.approved
            assert await _used_days(file_sessions, ids["EMP"]) == Decimal("3")


class TestStaleSnapshot:
    async def test_transition_on_stale_version_is_refused(self, db, service, org,
                                                          make_balance):
        """A writer that read version 0 loses once someone else has moved the row on."""
        await make_balance(org["E1"].id)
        created = await service.apply_leave(
            db,
            org["E1"].id,
            LeaveRequestCreate(
                leave_type=LeaveType.vacation,
                start_date=date(2024, 6, 17),
                end_date=date(2024, 6, 17),
            ),
            today=TODAY,
        )
        stale = await service._get_request(db, created.id)

        # Another writer approves behind this session's back
        await db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == created.id)
            .values(status=LeaveStatus.approved, version=1)
            .execution_options(synchronize_session=False)
        )

        assert stale.version == 0
        with pytest.raises(StateConflictException) as exc_info:
            await LeaveService._transition(
                db,
                stale,
                expected=LeaveStatus.pending,
                target=LeaveStatus.rejected,
                action="reject",
                actor_id=org["M1"].id,
                values={"rejection_reason": "late"},
            )
        assert exc_info.value.current == "approved"


class TestInterleavedOverlap:
    """An overlapping request approved between the first overlap read and the
    guarded write must still block the second approval."""

    @staticmethod
    def _interleave(monkeypatch, on_first_read):
        original = LeaveService._approved_overlapping
        reads = []

        async def interleaved(db, employee_id, start, end, exclude_request_id=None):
            found = await original(db, employee_id, start, end, exclude_request_id)
            if not reads:
                reads.append(start)
                await on_first_read()
            return found

        monkeypatch.setattr(LeaveService, "_approved_overlapping", staticmethod(interleaved))

    async def test_overlapping_approval_blocked_at_write_time(
        self, db, service, org, make_balance, make_leave, monkeypatch,
    ):
        e1 = org["E1"]
        await make_balance(e1.id, total="10")
        await make_balance(e1.id, LeaveType.personal, total="5")
        first = await make_leave(
            e1.id, date(2024, 6, 17), date(2024, 6, 19),
            status=LeaveStatus.pending, total_days="3",
        )
        second = await make_leave(
            e1.id, date(2024, 6, 18), date(2024, 6, 20),
            status=LeaveStatus.pending, leave_type=LeaveType.personal, total_days="3",
        )

        async def approve_first() -> None:
            await db.execute(
                update(LeaveRequest)
                .where(LeaveRequest.id == first.id)
                .values(status=LeaveStatus.approved, version=1, charged_days=Decimal("3"))
                .execution_options(synchronize_session=False)
            )

        self._interleave(monkeypatch, approve_first)

        with pytest.raises(ValidationException) as exc_info:
            await service.approve_leave(db, second.id, org["M1"].id, today=TODAY)
        assert first.request_code in exc_info.value.errors["overlap"][0]

        await db.refresh(first)
        await db.refresh(second)
        assert first.status == LeaveStatus.approved
        assert second.status == LeaveStatus.pending
        assert second.version == 0
        balance = await BalanceLedger.find(db, e1.id, LeaveType.personal, YEAR)
        assert balance.used_days == Decimal("0")

    async def test_emergency_auto_approval_blocked_at_write_time(
        self, db, service, org, make_balance, make_leave, monkeypatch,
    ):
        e1 = org["E1"]
        await make_balance(e1.id, LeaveType.emergency, total="5")

        async def approve_overlapping() -> None:
            await make_leave(e1.id, TODAY, TODAY)

        self._interleave(monkeypatch, approve_overlapping)

        with pytest.raises(ValidationException) as exc_info:
            await service.apply_leave(
                db,
                e1.id,
                LeaveRequestCreate(
                    leave_type=LeaveType.emergency,
                    start_date=TODAY,
                    end_date=TODAY,
                    is_emergency=True,
                ),
                today=TODAY,
            )
        assert "overlap" in exc_info.value.errors

        auto_approved = (
            await db.execute(
                select(LeaveRequest).where(LeaveRequest.status == LeaveStatus.auto_approved)
            )
        ).scalars().all()
        assert auto_approved == []
        balance = await BalanceLedger.find(db, e1.id, LeaveType.emergency, YEAR)
        assert balance.used_days == Decimal("0")
