"""Common module — shared enums, exceptions and helpers for the leave engine."""

from leave_engine.common.constants import (
    APPROVED_STATUSES,
    DEFAULT_ALLOCATIONS,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    WEEKEND,
    DateClass,
    LeaveDuration,
    LeaveStatus,
    LeaveType,
)
from leave_engine.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    LedgerConflictException,
    NotFoundException,
    StateConflictException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "APPROVED_STATUSES",
    "DEFAULT_ALLOCATIONS",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "WEEKEND",
    "DateClass",
    "LeaveDuration",
    "LeaveStatus",
    "LeaveType",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "LedgerConflictException",
    "NotFoundException",
    "StateConflictException",
    "ValidationException",
    "register_exception_handlers",
]
