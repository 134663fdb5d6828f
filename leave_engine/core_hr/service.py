"""Employee directory service — async CRUD plus hierarchy maintenance.

Uses:
  - ``paginate()`` from leave_engine.common.pagination
  - ``create_audit_entry`` from leave_engine.common.audit
  - ``NotFoundException / ConflictError / ValidationException`` from
    leave_engine.common.exceptions

The manager reference is kept acyclic here, at write time: every
assignment walks the prospective manager's ancestor chain (bounded by the
configured maximum depth) before it is stored.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import create_audit_entry, snapshot
from leave_engine.common.constants import DEFAULT_PAGE_SIZE
from leave_engine.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from leave_engine.common.pagination import PaginationMeta, paginate
from leave_engine.config import get_policy
from leave_engine.core_hr.models import Employee
from leave_engine.core_hr.schemas import EmployeeCreate, EmployeeUpdate, SubordinateCount
from leave_engine.leave.delegation import OrgMember, load_org_chart, management_chain

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Hierarchy check
# ═════════════════════════════════════════════════════════════════════


def check_manager_assignment(
    parents: dict[uuid.UUID, Optional[uuid.UUID]],
    employee_id: uuid.UUID,
    manager_id: uuid.UUID,
    max_depth: int,
) -> None:
    """Reject an assignment that would make *employee_id* its own ancestor.

    *parents* maps every employee id to its current manager id. The walk
    starts at the prospective manager and climbs at most *max_depth* hops.
    """
    if manager_id == employee_id:
        raise ValidationException(
            {"manager_id": ["An employee cannot be their own manager."]}
        )

    current: Optional[uuid.UUID] = manager_id
    hops = 0
    while current is not None:
        if current == employee_id:
            raise ValidationException(
                {"manager_id": ["Circular manager reference detected."]}
            )
        hops += 1
        if hops > max_depth:
            raise ValidationException(
                {"manager_id": [f"Management hierarchy exceeds maximum depth of {max_depth}."]}
            )
        current = parents.get(current)


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def get_by_code(db: AsyncSession, employee_code: str) -> Employee:
        result = await db.execute(
            select(Employee).where(Employee.employee_code == employee_code.upper())
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", employee_code)
        return employee

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        *,
        department: Optional[str] = None,
        is_active: Optional[bool] = True,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: Optional[str] = None,
    ) -> tuple[Sequence[Employee], PaginationMeta]:
        query = select(Employee).order_by(Employee.employee_code)
        if department is not None:
            query = query.where(Employee.department == department)
        if is_active is not None:
            query = query.where(Employee.is_active.is_(is_active))
        return await paginate(
            db, query, page=page, page_size=page_size, sort=sort, model=Employee,
        )

    @staticmethod
    async def get_by_department(db: AsyncSession, department: str) -> list[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.department == department, Employee.is_active.is_(True))
            .order_by(Employee.employee_code)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_top_level(db: AsyncSession) -> list[Employee]:
        """Active employees with no manager (the HR / top-level fallback pool)."""
        result = await db.execute(
            select(Employee)
            .where(Employee.manager_id.is_(None), Employee.is_active.is_(True))
            .order_by(Employee.employee_code)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_direct_reports(db: AsyncSession, manager_id: uuid.UUID) -> list[Employee]:
        await EmployeeService.get_employee(db, manager_id)
        result = await db.execute(
            select(Employee)
            .where(Employee.manager_id == manager_id, Employee.is_active.is_(True))
            .order_by(Employee.employee_code)
        )
        return list(result.scalars().all())

    @staticmethod
    async def subordinate_counts(
        db: AsyncSession,
        department: Optional[str] = None,
    ) -> list[SubordinateCount]:
        """Number of active direct reports per manager, busiest first."""
        report = Employee.__table__.alias("report")
        query = (
            select(Employee.id, Employee.employee_code, func.count(report.c.id))
            .join(report, report.c.manager_id == Employee.id)
            .where(report.c.is_active.is_(True))
            .group_by(Employee.id, Employee.employee_code)
            .order_by(func.count(report.c.id).desc(), Employee.employee_code)
        )
        if department is not None:
            query = query.where(Employee.department == department)
        result = await db.execute(query)
        return [
            SubordinateCount(employee_id=emp_id, employee_code=code, subordinates=int(n))
            for emp_id, code, n in result.all()
        ]

    @staticmethod
    async def get_management_chain(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> list[OrgMember]:
        await EmployeeService.get_employee(db, employee_id)
        policy = get_policy()
        chart = await load_org_chart(
            db, date.today(), max_depth=policy.max_hierarchy_depth,
        )
        return management_chain(chart, employee_id)

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Create a new employee record."""
        if data.manager_id is not None:
            manager = await db.get(Employee, data.manager_id)
            if manager is None:
                raise NotFoundException("Manager", str(data.manager_id))

        await EmployeeService._ensure_unique(db, employee_code=data.employee_code, email=data.email)

        now = datetime.now(timezone.utc)
        employee = Employee(
            id=uuid.uuid4(),
            **data.model_dump(),
            is_active=True,
            created_at=now,
            updated_at=now,
        )

        try:
            async with db.begin_nested():
                db.add(employee)
                await db.flush()
        except IntegrityError as exc:
            err = str(exc.orig)
            if "employee_code" in err:
                raise ConflictError("employee_code", data.employee_code) from exc
            if "email" in err:
                raise ConflictError("email", data.email) from exc
            raise

        # Audit
        await create_audit_entry(
            db,
            action="create",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        logger.info("Employee %s created", employee.employee_code)
        return employee

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Partial-update an existing employee."""
        employee = await EmployeeService.get_employee(db, employee_id)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return employee

        if "email" in changes and changes["email"] != employee.email:
            await EmployeeService._ensure_unique(db, email=changes["email"], exclude_id=employee_id)

        old_values = snapshot(employee, changes)
        for field, value in changes.items():
            setattr(employee, field, value)
        employee.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(mode="json", exclude_unset=True),
        )
        return employee

    # ── Manager assignment ──────────────────────────────────────────

    @staticmethod
    async def assign_manager(
        db: AsyncSession,
        employee_id: uuid.UUID,
        manager_id: Optional[uuid.UUID],
        *,
        actor_id: Optional[uuid.UUID] = None,
        max_depth: Optional[int] = None,
    ) -> Employee:
        """Set or clear an employee's manager, refusing self-assignment and cycles."""
        employee = await EmployeeService.get_employee(db, employee_id)
        max_depth = max_depth or get_policy().max_hierarchy_depth

        if manager_id is not None:
            if manager_id != employee_id and await db.get(Employee, manager_id) is None:
                raise NotFoundException("Manager", str(manager_id))

            result = await db.execute(select(Employee.id, Employee.manager_id))
            parents = {emp_id: parent_id for emp_id, parent_id in result.all()}
            try:
                check_manager_assignment(parents, employee_id, manager_id, max_depth)
            except ValidationException:
                logger.warning(
                    "Rejected manager %s for employee %s", manager_id, employee.employee_code
                )
                raise

        old_manager = employee.manager_id
        employee.manager_id = manager_id
        employee.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="assign_manager",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values={"manager_id": str(old_manager) if old_manager else None},
            new_values={"manager_id": str(manager_id) if manager_id else None},
        )
        logger.info(
            "Employee %s now reports to %s", employee.employee_code, manager_id or "nobody"
        )
        return employee

    # ── Internal ────────────────────────────────────────────────────

    @staticmethod
    async def _ensure_unique(
        db: AsyncSession,
        *,
        employee_code: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        if employee_code is not None:
            query = select(Employee.id).where(Employee.employee_code == employee_code)
            if exclude_id is not None:
                query = query.where(Employee.id != exclude_id)
            if (await db.execute(query)).first() is not None:
                raise ConflictError("employee_code", employee_code)
        if email is not None:
            query = select(Employee.id).where(func.lower(Employee.email) == email.lower())
            if exclude_id is not None:
                query = query.where(Employee.id != exclude_id)
            if (await db.execute(query)).first() is not None:
                raise ConflictError("email", email)
