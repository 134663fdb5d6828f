"""Core HR Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Out / *Brief      → response bodies (read)
"""


import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from leave_engine.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Employee — write models
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Body for creating an employee."""

    employee_code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    joining_date: date
    manager_id: Optional[uuid.UUID] = None
    is_hr: bool = False

    @model_validator(mode="after")
    def normalise_code(self) -> "EmployeeCreate":
        self.employee_code = self.employee_code.strip().upper()
        return self


class EmployeeUpdate(BaseModel):
    """Partial update — only supplied fields are changed.

    ``manager_id`` is not accepted here; reassignment goes through the
    dedicated endpoint so the hierarchy check always runs.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    joining_date: Optional[date] = None
    is_hr: Optional[bool] = None
    is_active: Optional[bool] = None


class ManagerAssignment(BaseModel):
    """``manager_id=None`` makes the employee top-level."""

    manager_id: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Employee — read models
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    name: str
    department: Optional[str] = None


class EmployeeOut(BaseModel):
    """Full employee representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    name: str
    email: str
    department: Optional[str] = None
    position: Optional[str] = None
    joining_date: date
    manager_id: Optional[uuid.UUID] = None
    is_hr: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EmployeeListOut(BaseModel):
    data: list[EmployeeOut]
    meta: PaginationMeta


class SubordinateCount(BaseModel):
    employee_id: uuid.UUID
    employee_code: str
    subordinates: int
