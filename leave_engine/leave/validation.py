"""Admissibility rules for a proposed leave request.

``validate_request`` is a pure decision function over snapshots: the
caller loads the employee, the balance row and the employee's approved
requests, then hands them in together with ``today`` and the policy.
Only the date-range rule short-circuits; every other rule runs so the
caller sees every problem at once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import AbstractSet, Iterable, Optional, Protocol

from leave_engine.common.constants import (
    APPROVED_STATUSES,
    DateClass,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
)
from leave_engine.common.exceptions import ValidationException
from leave_engine.config import LeavePolicy
from leave_engine.leave.calendar import (
    calendar_span,
    classify,
    ranges_overlap,
    working_days,
)

# ═════════════════════════════════════════════════════════════════════
# Snapshots
# ═════════════════════════════════════════════════════════════════════


class EmployeeLike(Protocol):
    id: uuid.UUID
    joining_date: date


@dataclass(frozen=True)
class LeaveProposal:
    """The fields of a request under evaluation."""

    employee_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    duration: LeaveDuration = LeaveDuration.full_day
    is_emergency: bool = False
    # Set when re-validating an existing request so it does not conflict with itself
    exclude_request_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class BalanceSnapshot:
    leave_type: LeaveType
    year: int
    total_days: Decimal
    used_days: Decimal

    @property
    def available_days(self) -> Decimal:
        return self.total_days - self.used_days

    @classmethod
    def from_model(cls, balance) -> "BalanceSnapshot":
        return cls(
            leave_type=balance.leave_type,
            year=balance.year,
            total_days=Decimal(balance.total_days),
            used_days=Decimal(balance.used_days),
        )


@dataclass(frozen=True)
class ExistingLeave:
    """A request already on file that may block the proposal."""

    id: uuid.UUID
    request_code: str
    start_date: date
    end_date: date
    status: LeaveStatus

    @classmethod
    def from_model(cls, request) -> "ExistingLeave":
        return cls(
            id=request.id,
            request_code=request.request_code,
            start_date=request.start_date,
            end_date=request.end_date,
            status=request.status,
        )


@dataclass
class ValidationResult:
    """Outcome of one validation run.

    ``errors`` is keyed by rule name and keeps insertion order, so
    ``reasons`` lists rejection reasons in the order the rules ran.
    """

    errors: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    working_days: int = 0
    requested_days: Decimal = Decimal("0")
    is_backdated: bool = False
    balance_checked: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def reasons(self) -> list[str]:
        return [msg for msgs in self.errors.values() for msg in msgs]

    def add_error(self, rule: str, message: str) -> None:
        self.errors.setdefault(rule, []).append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationException(self.errors, warnings=self.warnings)


# ═════════════════════════════════════════════════════════════════════
# Individual rules
# ═════════════════════════════════════════════════════════════════════


def find_conflicts(
    start: date,
    end: date,
    existing: Iterable[ExistingLeave],
    exclude_request_id: Optional[uuid.UUID] = None,
) -> list[ExistingLeave]:
    """Approved or auto-approved requests whose range intersects ``[start, end]``."""
    return [
        other
        for other in existing
        if other.status in APPROVED_STATUSES
        and other.id != exclude_request_id
        and ranges_overlap(start, end, other.start_date, other.end_date)
    ]


def format_conflicts(conflicts: Iterable[ExistingLeave]) -> str:
    parts = [
        f"{c.request_code} ({c.start_date.isoformat()} to {c.end_date.isoformat()}, "
        f"Status: {c.status.display_name})"
        for c in conflicts
    ]
    return "Leave request overlaps with existing requests: " + ", ".join(parts)


def bypasses_balance_check(
    is_emergency: bool, days: Decimal, policy: LeavePolicy
) -> bool:
    """Short emergency leave is accounted for after the fact, not gated by balance."""
    return is_emergency and days <= policy.emergency_auto_approve_days


def _check_balance(
    result: ValidationResult,
    proposal: LeaveProposal,
    balance: Optional[BalanceSnapshot],
    policy: LeavePolicy,
) -> None:
    requested = result.requested_days
    if bypasses_balance_check(proposal.is_emergency, requested, policy):
        return

    result.balance_checked = True
    if balance is None:
        result.add_error(
            "balance",
            f"Leave balance not found for {proposal.leave_type.display_name} "
            f"in year {proposal.start_date.year}",
        )
        return

    available = balance.available_days
    if requested > available:
        result.add_error(
            "balance",
            f"Insufficient {proposal.leave_type.display_name} balance. "
            f"Available: {available:.1f} days, Requested: {requested:.1f} days",
        )


def _check_low_balance(
    result: ValidationResult,
    proposal: LeaveProposal,
    balance: Optional[BalanceSnapshot],
    policy: LeavePolicy,
) -> None:
    if not result.balance_checked or balance is None or "balance" in result.errors:
        return
    remaining = balance.available_days - result.requested_days
    if remaining < policy.low_balance_threshold:
        result.add_warning(
            f"Low {proposal.leave_type.display_name} balance warning: "
            f"{remaining:.1f} days will remain after this request"
        )


def _check_backdated(
    result: ValidationResult,
    start: date,
    today: date,
    policy: LeavePolicy,
) -> None:
    if classify(start, today) is not DateClass.past:
        return
    result.is_backdated = True
    days_past = (today - start).days
    if days_past > policy.max_backdated_days:
        result.add_error(
            "backdated",
            f"Backdated leave requests are only allowed up to "
            f"{policy.max_backdated_days} days. This request is {days_past} days "
            f"in the past, beyond allowed backdated window",
        )
    else:
        result.add_warning(
            f"This is a backdated request ({days_past} days ago). "
            f"Please provide proper justification"
        )


def _check_emergency(
    result: ValidationResult,
    proposal: LeaveProposal,
    today: date,
    policy: LeavePolicy,
) -> None:
    if not proposal.is_emergency:
        return
    if result.requested_days > policy.emergency_auto_approve_days:
        result.add_warning(
            f"Emergency leave exceeds {policy.emergency_auto_approve_days} days - "
            f"manager approval required"
        )
    if classify(proposal.start_date, today) is not DateClass.same_day:
        result.add_warning(
            "Emergency leave is not for same day - manager approval may be required"
        )


# ═════════════════════════════════════════════════════════════════════
# Entry point
# ═════════════════════════════════════════════════════════════════════


def validate_request(
    proposal: LeaveProposal,
    employee: EmployeeLike,
    balance: Optional[BalanceSnapshot],
    existing: Iterable[ExistingLeave],
    policy: LeavePolicy,
    today: date,
    holidays: Optional[AbstractSet[date]] = None,
) -> ValidationResult:
    """Evaluate every admissibility rule against the supplied snapshots."""
    result = ValidationResult()
    start, end = proposal.start_date, proposal.end_date

    # ── 1. Date range ───────────────────────────────────────────────
    if end < start:
        result.add_error("dates", "End date must be on or after start date")
        return result

    result.working_days = working_days(start, end, policy.rest_days, holidays)
    result.requested_days = Decimal(result.working_days) * proposal.duration.multiplier

    # ── 2. Joining-date floor ───────────────────────────────────────
    if start < employee.joining_date:
        result.add_error(
            "joining_date",
            f"Leave cannot be applied before joining date: "
            f"{employee.joining_date.isoformat()}",
        )

    # ── 3. Overlap ──────────────────────────────────────────────────
    conflicts = find_conflicts(start, end, existing, proposal.exclude_request_id)
    if conflicts:
        result.add_error("overlap", format_conflicts(conflicts))

    # ── 4. Balance sufficiency ──────────────────────────────────────
    _check_balance(result, proposal, balance, policy)

    # ── 5. Maximum span ─────────────────────────────────────────────
    span = calendar_span(start, end)
    if span > policy.max_span_days:
        result.add_error(
            "span",
            f"Leave request spans {span} calendar days; the maximum is "
            f"{policy.max_span_days}",
        )

    # ── 6. No-working-day span ──────────────────────────────────────
    if result.working_days == 0:
        result.add_error(
            "working_days", "Leave request must include at least one working day"
        )

    # ── 7. Backdated window ─────────────────────────────────────────
    _check_backdated(result, start, today, policy)

    # ── 8. Post-request low balance ─────────────────────────────────
    _check_low_balance(result, proposal, balance, policy)

    # ── 9. Emergency notices ────────────────────────────────────────
    _check_emergency(result, proposal, today, policy)

    return result
