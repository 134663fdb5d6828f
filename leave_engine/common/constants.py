"""Enums and constants for the leave engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    vacation = "vacation"
    sick = "sick"
    personal = "personal"
    emergency = "emergency"
    maternity = "maternity"
    paternity = "paternity"
    bereavement = "bereavement"
    compensatory = "compensatory"
    unpaid = "unpaid"

    @property
    def display_name(self) -> str:
        if self is LeaveType.compensatory:
            return "Compensatory Off"
        return f"{self.value.capitalize()} Leave"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    auto_approved = "auto_approved"
    rejected = "rejected"
    cancelled = "cancelled"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def is_approved(self) -> bool:
        return self in APPROVED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self is not LeaveStatus.pending


class LeaveDuration(str, enum.Enum):
    full_day = "full_day"
    half_day = "half_day"

    @property
    def multiplier(self) -> Decimal:
        return Decimal("1.0") if self is LeaveDuration.full_day else Decimal("0.5")


class DateClass(str, enum.Enum):
    past = "past"
    same_day = "same_day"
    future = "future"


APPROVED_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.auto_approved}
)


# ── Policy defaults ─────────────────────────────────────────────────

# Saturday (5) and Sunday (6)
WEEKEND: frozenset[int] = frozenset({5, 6})

DEFAULT_ALLOCATIONS: dict[LeaveType, Decimal] = {
    LeaveType.vacation: Decimal("20"),
    LeaveType.sick: Decimal("10"),
    LeaveType.personal: Decimal("5"),
    LeaveType.maternity: Decimal("90"),
    LeaveType.paternity: Decimal("15"),
}


# ── Misc constants ──────────────────────────────────────────────────

REQUEST_CODE_PREFIX = "LR-"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
