"""Core HR router — employee directory endpoints.

Routes:
    /employees                      — List, create employees
    /employees/top-level            — Employees with no manager
    /employees/subordinate-counts   — Direct-report counts per manager
    /employees/{id}                 — Get, update employee
    /employees/{id}/manager         — Assign or clear the manager
    /employees/{id}/direct-reports  — Manager's direct reports
    /employees/{id}/chain           — Management chain, nearest first
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.pagination import PaginationParams
from leave_engine.core_hr.schemas import (
    EmployeeBrief,
    EmployeeCreate,
    EmployeeListOut,
    EmployeeOut,
    EmployeeUpdate,
    ManagerAssignment,
    SubordinateCount,
)
from leave_engine.core_hr.service import EmployeeService
from leave_engine.database import get_db

employees_router = APIRouter(prefix="", tags=["employees"])


# ── GET /employees — List employees ─────────────────────────────────

@employees_router.get("", response_model=EmployeeListOut)
async def list_employees(
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
    department: Optional[str] = Query(None, description="Filter by department"),
    is_active: Optional[bool] = Query(True, description="Filter by active flag"),
):
    """List employees with pagination and filtering."""
    rows, meta = await EmployeeService.list_employees(
        db,
        department=department,
        is_active=is_active,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )
    return EmployeeListOut(
        data=[EmployeeOut.model_validate(emp) for emp in rows],
        meta=meta,
    )


# ── POST /employees — Create ────────────────────────────────────────

@employees_router.post("", response_model=EmployeeOut, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.create_employee(db, body)


# ── GET /employees/top-level ────────────────────────────────────────

@employees_router.get("/top-level", response_model=list[EmployeeBrief])
async def top_level_employees(db: AsyncSession = Depends(get_db)):
    return await EmployeeService.get_top_level(db)


# ── GET /employees/subordinate-counts ───────────────────────────────

@employees_router.get("/subordinate-counts", response_model=list[SubordinateCount])
async def subordinate_counts(
    department: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.subordinate_counts(db, department)


# ── GET /employees/{id} ─────────────────────────────────────────────

@employees_router.get("/{employee_id}", response_model=EmployeeOut)
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employee(db, employee_id)


# ── PATCH /employees/{id} ───────────────────────────────────────────

@employees_router.patch("/{employee_id}", response_model=EmployeeOut)
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Partial update; only supplied fields change."""
    return await EmployeeService.update_employee(db, employee_id, body)


# ── PUT /employees/{id}/manager ─────────────────────────────────────

@employees_router.put("/{employee_id}/manager", response_model=EmployeeOut)
async def assign_manager(
    employee_id: uuid.UUID,
    body: ManagerAssignment,
    db: AsyncSession = Depends(get_db),
):
    """Set the reporting manager. Self-assignment and cycles are rejected."""
    return await EmployeeService.assign_manager(db, employee_id, body.manager_id)


# ── GET /employees/{id}/direct-reports ──────────────────────────────

@employees_router.get("/{employee_id}/direct-reports", response_model=list[EmployeeBrief])
async def direct_reports(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_direct_reports(db, employee_id)


# ── GET /employees/{id}/chain ───────────────────────────────────────

@employees_router.get("/{employee_id}/chain", response_model=list[EmployeeBrief])
async def management_chain(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Managers above the employee, nearest first."""
    return await EmployeeService.get_management_chain(db, employee_id)
