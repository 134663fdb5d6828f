"""Approver resolution and approval authorization.

Everything here except ``load_org_chart`` is a pure function over an
``OrgChart`` snapshot. The snapshot is rebuilt for every operation and
never cached, so a hierarchy change or a newly approved leave is seen by
the next call.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import APPROVED_STATUSES
from leave_engine.common.exceptions import NotFoundException
from leave_engine.config import LeavePolicy
from leave_engine.core_hr.models import Employee
from leave_engine.leave.models import LeaveRequest

logger = logging.getLogger(__name__)

WARN_MANAGER_ON_LEAVE = "Approving as direct manager while currently on leave"
WARN_ALTERNATE = "Approving as alternate approver due to primary manager unavailability"
WARN_CHAIN = "Approving as higher-level manager in hierarchy"
WARN_HR = "Approving as HR representative"


# ═════════════════════════════════════════════════════════════════════
# Snapshot types
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OrgMember:
    id: uuid.UUID
    employee_code: str
    name: str
    department: Optional[str]
    manager_id: Optional[uuid.UUID]
    is_hr: bool = False

    @property
    def is_top_level(self) -> bool:
        return self.manager_id is None

    @classmethod
    def from_model(cls, emp: Employee) -> "OrgMember":
        return cls(
            id=emp.id,
            employee_code=emp.employee_code,
            name=emp.name,
            department=emp.department,
            manager_id=emp.manager_id,
            is_hr=bool(emp.is_hr),
        )


@dataclass(frozen=True)
class OrgChart:
    """Active employees, their subordinate counts, and who is on leave on ``on_date``."""

    members: dict[uuid.UUID, OrgMember]
    subordinate_counts: dict[uuid.UUID, int] = field(default_factory=dict)
    on_leave: frozenset[uuid.UUID] = frozenset()
    on_date: Optional[date] = None
    max_depth: int = 64

    @classmethod
    def build(
        cls,
        members: list[OrgMember],
        *,
        on_leave: frozenset[uuid.UUID] = frozenset(),
        on_date: Optional[date] = None,
        max_depth: int = 64,
    ) -> "OrgChart":
        """Build a chart from a flat member list, deriving subordinate counts."""
        by_id = {m.id: m for m in members}
        counts: dict[uuid.UUID, int] = {}
        for m in members:
            if m.manager_id is not None:
                counts[m.manager_id] = counts.get(m.manager_id, 0) + 1
        return cls(
            members=by_id,
            subordinate_counts=counts,
            on_leave=frozenset(on_leave),
            on_date=on_date,
            max_depth=max_depth,
        )

    def get(self, employee_id: Optional[uuid.UUID]) -> Optional[OrgMember]:
        if employee_id is None:
            return None
        return self.members.get(employee_id)

    def top_level(self) -> list[OrgMember]:
        """Employees with no manager, in a stable employee-code order."""
        return sorted(
            (m for m in self.members.values() if m.is_top_level),
            key=lambda m: m.employee_code,
        )

    def subordinates_of(self, employee_id: uuid.UUID) -> int:
        return self.subordinate_counts.get(employee_id, 0)


@dataclass
class AuthorizationResult:
    authorized: bool
    approver: Optional[OrgMember] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Hierarchy queries
# ═════════════════════════════════════════════════════════════════════


def management_chain(chart: OrgChart, employee_id: uuid.UUID) -> list[OrgMember]:
    """Ancestors of *employee_id*, nearest first.

    The walk stops at ``chart.max_depth`` hops or on a repeated id, so a
    corrupted hierarchy cannot loop forever.
    """
    chain: list[OrgMember] = []
    seen = {employee_id}
    current = chart.get(employee_id)
    while current is not None and current.manager_id is not None:
        if len(chain) >= chart.max_depth or current.manager_id in seen:
            logger.warning(
                "Manager chain for %s truncated at %d hops", employee_id, len(chain)
            )
            break
        manager = chart.get(current.manager_id)
        if manager is None:
            break
        chain.append(manager)
        seen.add(manager.id)
        current = manager
    return chain


def is_manager_available(chart: OrgChart, manager_id: uuid.UUID) -> bool:
    """False iff the manager holds approved leave covering the chart date."""
    return manager_id not in chart.on_leave


def department_managers(chart: OrgChart, department: Optional[str]) -> list[OrgMember]:
    """Members of *department* with at least one subordinate, busiest first."""
    if department is None:
        return []
    managers = [
        m for m in chart.members.values()
        if m.department == department and chart.subordinates_of(m.id) > 0
    ]
    return sorted(
        managers,
        key=lambda m: (-chart.subordinates_of(m.id), m.employee_code),
    )


def alternate_approvers(chart: OrgChart, manager: OrgMember) -> list[OrgMember]:
    """Substitutes for an unavailable *manager*, in preference order.

    The manager's own manager comes first, followed by the other
    department managers. Top-level employees are used only when neither
    source yields anyone.
    """
    alternates: list[OrgMember] = []
    seen = {manager.id}

    skip_level = chart.get(manager.manager_id)
    if skip_level is not None:
        alternates.append(skip_level)
        seen.add(skip_level.id)

    for candidate in department_managers(chart, manager.department):
        if candidate.id not in seen:
            alternates.append(candidate)
            seen.add(candidate.id)

    if not alternates:
        alternates = [m for m in chart.top_level() if m.id != manager.id]
    return alternates


# ═════════════════════════════════════════════════════════════════════
# Resolution / authorization
# ═════════════════════════════════════════════════════════════════════


def resolve_approver(chart: OrgChart, employee_id: uuid.UUID) -> OrgMember:
    """Pick who should act on *employee_id*'s request right now."""
    employee = chart.get(employee_id)
    if employee is None:
        raise NotFoundException("Employee", str(employee_id))

    manager = chart.get(employee.manager_id)
    if manager is not None:
        if is_manager_available(chart, manager.id):
            return manager
        for alternate in alternate_approvers(chart, manager):
            if alternate.id != employee_id:
                logger.info(
                    "Manager %s unavailable on %s; delegating to %s",
                    manager.employee_code, chart.on_date, alternate.employee_code,
                )
                return alternate

    for candidate in chart.top_level():
        if candidate.id != employee_id:
            return candidate

    raise NotFoundException("Approver for employee", str(employee_id))


def authorize(
    chart: OrgChart,
    approver_id: uuid.UUID,
    requester_id: uuid.UUID,
) -> AuthorizationResult:
    """Decide whether *approver_id* may act on a request owned by *requester_id*."""
    approver = chart.get(approver_id)
    if approver is None:
        return AuthorizationResult(
            False, errors=[f"Approver not found with ID: {approver_id}"]
        )

    if approver_id == requester_id:
        return AuthorizationResult(
            False, approver, errors=["Employees cannot approve their own leave requests"]
        )

    requester = chart.get(requester_id)
    if requester is None:
        return AuthorizationResult(
            False, approver, errors=[f"Employee not found with ID: {requester_id}"]
        )

    manager = chart.get(requester.manager_id)
    if manager is not None and manager.id == approver_id:
        result = AuthorizationResult(True, approver)
        if not is_manager_available(chart, manager.id):
            result.warnings.append(WARN_MANAGER_ON_LEAVE)
        return result

    if manager is not None and not is_manager_available(chart, manager.id):
        if any(alt.id == approver_id for alt in alternate_approvers(chart, manager)):
            return AuthorizationResult(True, approver, warnings=[WARN_ALTERNATE])

    # Chain above the direct manager
    if any(m.id == approver_id for m in management_chain(chart, requester_id)[1:]):
        return AuthorizationResult(True, approver, warnings=[WARN_CHAIN])

    if approver.is_hr or approver.is_top_level:
        return AuthorizationResult(True, approver, warnings=[WARN_HR])

    return AuthorizationResult(
        False,
        approver,
        errors=[
            "You are not authorized to approve this leave request. Only the "
            "employee's manager or authorized delegates can approve leave requests."
        ],
    )


def is_pending_for(chart: OrgChart, approver_id: uuid.UUID, requester_id: uuid.UUID) -> bool:
    """True when the request belongs in *approver_id*'s approval queue.

    That is the case for direct reports, and for requests whose manager is
    unavailable and who list *approver_id* among the alternates.
    """
    if approver_id == requester_id:
        return False
    requester = chart.get(requester_id)
    if requester is None or requester.manager_id is None:
        return False
    if requester.manager_id == approver_id:
        return True
    manager = chart.get(requester.manager_id)
    if manager is None or is_manager_available(chart, manager.id):
        return False
    return any(alt.id == approver_id for alt in alternate_approvers(chart, manager))


def can_auto_approve(is_emergency: bool, total_days: Decimal, policy: LeavePolicy) -> bool:
    """Short emergency leave is granted without a human decision."""
    return is_emergency and total_days <= policy.emergency_auto_approve_days


# ═════════════════════════════════════════════════════════════════════
# Loader
# ═════════════════════════════════════════════════════════════════════


async def load_org_chart(
    db: AsyncSession,
    on_date: date,
    *,
    max_depth: int = 64,
) -> OrgChart:
    """Snapshot the active hierarchy and the approved-leave set for *on_date*."""
    emp_result = await db.execute(
        select(Employee).where(Employee.is_active.is_(True))
    )
    members = [OrgMember.from_model(e) for e in emp_result.scalars().all()]

    count_result = await db.execute(
        select(Employee.manager_id, func.count(Employee.id))
        .where(Employee.manager_id.is_not(None), Employee.is_active.is_(True))
        .group_by(Employee.manager_id)
    )
    counts = {manager_id: int(n) for manager_id, n in count_result.all()}

    leave_result = await db.execute(
        select(LeaveRequest.employee_id)
        .where(
            LeaveRequest.status.in_(list(APPROVED_STATUSES)),
            LeaveRequest.start_date <= on_date,
            LeaveRequest.end_date >= on_date,
        )
        .distinct()
    )
    on_leave = frozenset(leave_result.scalars().all())

    return OrgChart(
        members={m.id: m for m in members},
        subordinate_counts=counts,
        on_leave=on_leave,
        on_date=on_date,
        max_depth=max_depth,
    )
