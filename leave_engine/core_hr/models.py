"""Employee directory ORM model.

The manager link is a nullable self reference; the directory service keeps
it acyclic at write time.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.database import Base

if TYPE_CHECKING:
    from leave_engine.leave.models import LeaveBalance, LeaveRequest


class Employee(Base):
    """An employee record with its place in the reporting hierarchy."""

    __tablename__ = "employees"
    __table_args__ = (
        sa.CheckConstraint(
            "manager_id IS NULL OR manager_id <> id",
            name="ck_employee_not_own_manager",
        ),
        sa.Index("ix_employees_manager_id", "manager_id"),
        sa.Index("ix_employees_department", "department"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    department: Mapped[Optional[str]] = mapped_column(sa.String(100))
    position: Mapped[Optional[str]] = mapped_column(sa.String(100))
    joining_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    is_hr: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("FALSE"), default=False,
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"), default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # Relationships
    manager: Mapped[Optional[Employee]] = relationship(
        remote_side=[id], back_populates="subordinates",
    )
    subordinates: Mapped[list[Employee]] = relationship(
        back_populates="manager",
    )
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="employee",
        foreign_keys="LeaveRequest.employee_id",
    )
    leave_balances: Mapped[list[LeaveBalance]] = relationship(
        back_populates="employee",
    )

    @property
    def is_top_level(self) -> bool:
        return self.manager_id is None

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} {self.name}>"
