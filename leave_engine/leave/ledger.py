"""Leave balance ledger — conditional deduct/restore, initialization, renewal.

Every mutation of ``used_days`` is a single conditional UPDATE evaluated
by the database, never a read-modify-write from a Python-side snapshot.
A conditional update that matches no row raises
``LedgerConflictException``; callers decide whether to re-read and retry.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import APPROVED_STATUSES, LeaveType
from leave_engine.common.exceptions import LedgerConflictException, NotFoundException
from leave_engine.config import LeavePolicy, get_policy
from leave_engine.core_hr.models import Employee
from leave_engine.leave.models import LeaveBalance, LeaveRequest

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# BalanceLedger
# ═════════════════════════════════════════════════════════════════════


class BalanceLedger:
    """Stateless helpers; each takes the caller's session and joins its transaction."""

    # ─────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
            .order_by(LeaveBalance.leave_type)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Conditional mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def deduct(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Consume *days* iff at least that many are still available."""
        days = Decimal(days)
        if days < ZERO:
            raise ValueError("days must be non-negative")

        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == year,
                LeaveBalance.total_days - LeaveBalance.used_days >= days,
            )
            .values(used_days=LeaveBalance.used_days + days, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Deduct of %s %s days for %s/%d rejected",
                days, leave_type.value, employee_id, year,
            )
            raise LedgerConflictException(
                f"Cannot deduct {days:.1f} {leave_type.display_name} days for "
                f"{year}: balance missing or insufficient."
            )

        balance = await BalanceLedger.find(db, employee_id, leave_type, year)
        await create_audit_entry(
            db,
            action="deduct",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values={"used_days": str(balance.used_days - days)},
            new_values={"used_days": str(balance.used_days)},
        )
        return balance

    @staticmethod
    async def deduct_available(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Consume up to *days*, capped at what is available; return the amount charged.

        Used for emergency leave granted without a balance check. A missing
        balance row charges nothing.
        """
        balance = await BalanceLedger.find(db, employee_id, leave_type, year)
        if balance is None:
            logger.info(
                "No %s balance for %s/%d; emergency leave left uncharged",
                leave_type.value, employee_id, year,
            )
            return ZERO
        charge = min(Decimal(days), max(balance.available_days, ZERO))
        if charge <= ZERO:
            return ZERO
        await BalanceLedger.deduct(
            db, employee_id, leave_type, year, charge, actor_id=actor_id,
        )
        return charge

    @staticmethod
    async def restore(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Return *days* to the balance iff at least that many are in use."""
        days = Decimal(days)
        if days < ZERO:
            raise ValueError("days must be non-negative")

        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == year,
                LeaveBalance.used_days >= days,
            )
            .values(used_days=LeaveBalance.used_days - days, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Restore of %s %s days for %s/%d rejected",
                days, leave_type.value, employee_id, year,
            )
            raise LedgerConflictException(
                f"Cannot restore {days:.1f} {leave_type.display_name} days for "
                f"{year}: balance missing or fewer days in use."
            )

        balance = await BalanceLedger.find(db, employee_id, leave_type, year)
        await create_audit_entry(
            db,
            action="restore",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values={"used_days": str(balance.used_days + days)},
            new_values={"used_days": str(balance.used_days)},
        )
        return balance

    # ─────────────────────────────────────────────────────────────────
    # Initialization / renewal
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def initialize_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        allocations: Optional[dict[LeaveType, Decimal]] = None,
        *,
        used: Optional[dict[LeaveType, Decimal]] = None,
        policy: Optional[LeavePolicy] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Create any missing balance rows for *year*; existing rows are left untouched."""
        emp = await db.get(Employee, employee_id)
        if emp is None:
            raise NotFoundException("Employee", str(employee_id))

        policy = policy or get_policy()
        allocations = allocations if allocations is not None else policy.default_allocations
        used = used or {}

        existing = {
            b.leave_type: b
            for b in await BalanceLedger.list_for_employee(db, employee_id, year)
        }
        created = []
        for leave_type, total in allocations.items():
            if leave_type in existing:
                continue
            used_days = Decimal(used.get(leave_type, ZERO))
            if used_days < ZERO or used_days > Decimal(total):
                raise LedgerConflictException(
                    f"Used days for {leave_type.display_name} must be between 0 and {total}."
                )
            balance = LeaveBalance(
                id=uuid.uuid4(),
                employee_id=employee_id,
                leave_type=leave_type,
                year=year,
                total_days=Decimal(total),
                used_days=used_days,
            )
            db.add(balance)
            created.append(balance)

        await db.flush()
        for balance in created:
            await create_audit_entry(
                db,
                action="initialize",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor_id,
                new_values={
                    "leave_type": balance.leave_type.value,
                    "year": year,
                    "total_days": str(balance.total_days),
                    "used_days": str(balance.used_days),
                },
            )
        if created:
            logger.info(
                "Initialized %d balance rows for %s in %d",
                len(created), emp.employee_code, year,
            )
        return await BalanceLedger.list_for_employee(db, employee_id, year)

    @staticmethod
    async def process_year_end_renewal(
        db: AsyncSession,
        from_year: int,
        to_year: int,
    ) -> int:
        """Carry every employee's category allocations from *from_year* into *to_year*.

        Used days start at zero in the new year. Returns the number of
        employees processed.
        """
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.year == from_year)
            .order_by(LeaveBalance.employee_id, LeaveBalance.leave_type)
        )
        by_employee: dict[uuid.UUID, dict[LeaveType, Decimal]] = {}
        for balance in result.scalars().all():
            by_employee.setdefault(balance.employee_id, {})[balance.leave_type] = (
                balance.total_days
            )

        for employee_id, allocations in by_employee.items():
            await BalanceLedger.initialize_balances(db, employee_id, to_year, allocations)

        logger.info(
            "Year-end renewal %d -> %d processed %d employees",
            from_year, to_year, len(by_employee),
        )
        return len(by_employee)

    @staticmethod
    async def recalculate(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Rebuild ``used_days`` from the ledger charges of approved requests in *year*."""
        result = await db.execute(
            select(LeaveRequest.leave_type, func.sum(LeaveRequest.charged_days))
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_(list(APPROVED_STATUSES)),
                LeaveRequest.start_date >= date(year, 1, 1),
                LeaveRequest.start_date <= date(year, 12, 31),
            )
            .group_by(LeaveRequest.leave_type)
        )
        used_by_type = {lt: Decimal(str(total or 0)) for lt, total in result.all()}

        balances = await BalanceLedger.list_for_employee(db, employee_id, year)
        now = datetime.now(timezone.utc)
        for balance in balances:
            old_used = balance.used_days
            new_used = min(used_by_type.get(balance.leave_type, ZERO), balance.total_days)
            if new_used == old_used:
                continue
            balance.used_days = new_used
            balance.updated_at = now
            await db.flush()
            await create_audit_entry(
                db,
                action="recalculate",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor_id,
                old_values={"used_days": str(old_used)},
                new_values={"used_days": str(new_used)},
            )
        return balances

    # ─────────────────────────────────────────────────────────────────
    # Summary
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def balance_summary(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        *,
        policy: Optional[LeavePolicy] = None,
    ) -> dict:
        """Totals, utilization and running-low categories for one employee/year."""
        emp = await db.get(Employee, employee_id)
        if emp is None:
            raise NotFoundException("Employee", str(employee_id))

        policy = policy or get_policy()
        balances = await BalanceLedger.list_for_employee(db, employee_id, year)

        total_allocated = sum((b.total_days for b in balances), ZERO)
        total_used = sum((b.used_days for b in balances), ZERO)
        low = [b for b in balances if b.available_days < policy.low_balance_threshold]

        warnings = []
        if low:
            warnings.append(f"You have {len(low)} leave type(s) with low balance")

        return {
            "employee_id": emp.id,
            "employee_code": emp.employee_code,
            "name": emp.name,
            "department": emp.department,
            "year": year,
            "balances": balances,
            "total_allocated": total_allocated,
            "total_used": total_used,
            "total_available": total_allocated - total_used,
            "utilization_percentage": utilization(total_used, total_allocated),
            "low_balance_types": [b.leave_type for b in low],
            "warnings": warnings,
        }


def utilization(used: Decimal, total: Decimal) -> Decimal:
    """Used share of the allocation as a percentage, one decimal place."""
    if total <= ZERO:
        return ZERO
    return (Decimal(used) / Decimal(total) * 100).quantize(Decimal("0.1"))
