"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leave_engine.common.constants import LeaveDuration, LeaveStatus, LeaveType
from leave_engine.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Leave Request — write models
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Body for applying for leave. ``total_days`` is always computed server-side."""

    leave_type: LeaveType
    start_date: date
    end_date: date
    duration: LeaveDuration = LeaveDuration.full_day
    reason: Optional[str] = Field(default=None, max_length=500)
    is_emergency: bool = False
    backdated_justification: Optional[str] = Field(default=None, max_length=1000)


class LeaveApproveRequest(BaseModel):
    approver_id: uuid.UUID
    comments: Optional[str] = Field(default=None, max_length=1000)


class LeaveRejectRequest(BaseModel):
    approver_id: uuid.UUID
    reason: str = Field(..., min_length=1, max_length=1000)
    comments: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason is required")
        return v.strip()


class LeaveCancelRequest(BaseModel):
    employee_id: uuid.UUID


class LeaveRegularizeRequest(BaseModel):
    approver_id: uuid.UUID
    note: Optional[str] = Field(default=None, max_length=1000)


class LeaveRevokeRequest(BaseModel):
    actor_id: uuid.UUID
    reason: str = Field(..., min_length=1, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — read models
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_code: str
    employee_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    duration: LeaveDuration
    total_days: Decimal
    charged_days: Decimal
    reason: Optional[str] = None
    comments: Optional[str] = None
    status: LeaveStatus
    is_emergency: bool = False
    is_backdated: bool = False
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Non-fatal findings from validation or authorization for this call
    warnings: list[str] = Field(default_factory=list)


class LeaveRequestListOut(BaseModel):
    data: list[LeaveRequestOut]
    meta: PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance row with derived availability."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    year: int
    total_days: Decimal
    used_days: Decimal
    available_days: Decimal


class BalanceAllocation(BaseModel):
    leave_type: LeaveType
    total_days: Decimal = Field(..., ge=0, max_digits=5, decimal_places=1)
    used_days: Decimal = Field(default=Decimal("0"), ge=0, max_digits=5, decimal_places=1)

    @model_validator(mode="after")
    def used_within_total(self) -> "BalanceAllocation":
        if self.used_days > self.total_days:
            raise ValueError("used_days cannot exceed total_days")
        return self


class InitializeBalanceRequest(BaseModel):
    """Body for creating missing balance rows; omit ``allocations`` for policy defaults."""

    year: int = Field(..., ge=2000, le=2100)
    allocations: Optional[list[BalanceAllocation]] = None

    @model_validator(mode="after")
    def unique_types(self) -> "InitializeBalanceRequest":
        if self.allocations:
            types = [a.leave_type for a in self.allocations]
            if len(types) != len(set(types)):
                raise ValueError("Each leave type may appear only once")
        return self


class BalanceSummaryOut(BaseModel):
    employee_id: uuid.UUID
    employee_code: str
    name: str
    department: Optional[str] = None
    year: int
    balances: list[LeaveBalanceOut]
    total_allocated: Decimal
    total_used: Decimal
    total_available: Decimal
    utilization_percentage: Decimal
    low_balance_types: list[LeaveType]
    warnings: list[str] = Field(default_factory=list)


class YearEndRenewalRequest(BaseModel):
    from_year: int = Field(..., ge=2000, le=2100)
    to_year: int = Field(..., ge=2000, le=2100)

    @model_validator(mode="after")
    def forward_only(self) -> "YearEndRenewalRequest":
        if self.to_year <= self.from_year:
            raise ValueError("to_year must be after from_year")
        return self


class YearEndRenewalOut(BaseModel):
    from_year: int
    to_year: int
    employees_processed: int


# ═════════════════════════════════════════════════════════════════════
# Holidays
# ═════════════════════════════════════════════════════════════════════


class HolidayCreate(BaseModel):
    holiday_date: date
    name: str = Field(..., min_length=1, max_length=200)


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    holiday_date: date
    name: str
