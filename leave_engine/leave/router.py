"""Leave router — apply, approve/reject/cancel, regularize, revoke, balances, holidays.

Actors are identified explicitly in the path or body; authentication is
handled in front of this service.

Routes:
    /employees/{id}/requests              — Apply, leave history
    /employees/{id}/balances              — Balances, summary, initialize, recalculate
    /approvers/{id}/pending               — Pending queue for an approver
    /requests                             — Requests by status
    /requests/range                       — Approved leave in a date range
    /requests/{id}                        — Detail
    /requests/{id}/approve|reject|cancel|regularize|revoke
    /balances/renewal                     — Year-end renewal
    /holidays                             — List, create
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveStatus
from leave_engine.common.pagination import PaginationParams
from leave_engine.common.rate_limit import limiter
from leave_engine.config import settings
from leave_engine.database import get_db
from leave_engine.dependencies import get_leave_service
from leave_engine.leave.schemas import (
    BalanceSummaryOut,
    HolidayCreate,
    HolidayOut,
    InitializeBalanceRequest,
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveRegularizeRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestListOut,
    LeaveRequestOut,
    LeaveRevokeRequest,
    YearEndRenewalOut,
    YearEndRenewalRequest,
)
from leave_engine.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ═════════════════════════════════════════════════════════════════════
# Employee-scoped endpoints
# ═════════════════════════════════════════════════════════════════════


# ── POST /employees/{id}/requests ───────────────────────────────────

@router.post(
    "/employees/{employee_id}/requests",
    response_model=LeaveRequestOut,
    status_code=201,
)
@limiter.limit(settings.RATE_LIMIT_APPLY)
async def apply_leave(
    request: Request,
    employee_id: uuid.UUID,
    body: LeaveRequestCreate,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates dates, overlap, balance and backdating rules."""
    return await service.apply_leave(db, employee_id, body)


# ── GET /employees/{id}/requests ────────────────────────────────────

@router.get("/employees/{employee_id}/requests", response_model=LeaveRequestListOut)
async def leave_history(
    employee_id: uuid.UUID,
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_leave_history(
        db,
        employee_id,
        status=status,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )


# ── GET /employees/{id}/balances ────────────────────────────────────

@router.get("/employees/{employee_id}/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_balance(db, employee_id, year)


# ── GET /employees/{id}/balances/summary ────────────────────────────

@router.get("/employees/{employee_id}/balances/summary", response_model=BalanceSummaryOut)
async def balance_summary(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Totals, utilization and low-balance warnings for one year."""
    return await service.balance_summary(db, employee_id, year)


# ── POST /employees/{id}/balances/initialize ────────────────────────

@router.post(
    "/employees/{employee_id}/balances/initialize",
    response_model=list[LeaveBalanceOut],
)
async def initialize_balances(
    employee_id: uuid.UUID,
    body: InitializeBalanceRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Create missing balance rows; existing rows are left untouched."""
    allocations = used = None
    if body.allocations:
        allocations = {a.leave_type: a.total_days for a in body.allocations}
        used = {a.leave_type: a.used_days for a in body.allocations}
    return await service.initialize_balances(
        db, employee_id, body.year, allocations, used=used,
    )


# ── POST /employees/{id}/balances/recalculate ───────────────────────

@router.post(
    "/employees/{employee_id}/balances/recalculate",
    response_model=list[LeaveBalanceOut],
)
async def recalculate_balances(
    employee_id: uuid.UUID,
    year: int = Query(..., ge=2000, le=2100),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Rebuild used days from the approved requests of the year."""
    return await service.recalculate_balances(db, employee_id, year)


# ═════════════════════════════════════════════════════════════════════
# Approver queue
# ═════════════════════════════════════════════════════════════════════


@router.get("/approvers/{approver_id}/pending", response_model=list[LeaveRequestOut])
async def pending_for_approver(
    approver_id: uuid.UUID,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Pending requests of direct reports plus those delegated to this approver."""
    return await service.get_pending_for_approver(db, approver_id)


# ═════════════════════════════════════════════════════════════════════
# Request endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=LeaveRequestListOut)
async def requests_by_status(
    status: LeaveStatus = Query(LeaveStatus.pending),
    pagination: PaginationParams = Depends(),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_requests_by_status(
        db, status, page=pagination.page, page_size=pagination.page_size,
    )


# ── GET /requests/range ─────────────────────────────────────────────

@router.get("/requests/range", response_model=list[LeaveRequestOut])
async def requests_in_range(
    start_date: date = Query(...),
    end_date: date = Query(...),
    employee_id: Optional[uuid.UUID] = Query(None),
    department: Optional[str] = Query(None),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Approved leave intersecting the range, optionally for one employee or department."""
    return await service.get_requests_in_range(
        db, start_date, end_date, employee_id=employee_id, department=department,
    )


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_leave_request(db, request_id)


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending leave request. Deducts from balance."""
    return await service.approve_leave(
        db, request_id, body.approver_id, comments=body.comments,
    )


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending leave request."""
    return await service.reject_leave(
        db, request_id, body.approver_id, body.reason, comments=body.comments,
    )


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw one's own pending request."""
    return await service.cancel_leave(db, request_id, body.employee_id)


# ── PUT /requests/{id}/regularize ───────────────────────────────────

@router.put("/requests/{request_id}/regularize", response_model=LeaveRequestOut)
async def regularize_leave(
    request_id: uuid.UUID,
    body: LeaveRegularizeRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending backdated request."""
    return await service.regularize_leave(db, request_id, body.approver_id, body.note)


# ── PUT /requests/{id}/revoke ───────────────────────────────────────

@router.put("/requests/{request_id}/revoke", response_model=LeaveRequestOut)
async def revoke_leave(
    request_id: uuid.UUID,
    body: LeaveRevokeRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Cancel approved leave that has not started and restore the balance."""
    return await service.revoke_approved(db, request_id, body.actor_id, body.reason)


# ═════════════════════════════════════════════════════════════════════
# Balances / holidays
# ═════════════════════════════════════════════════════════════════════


@router.post("/balances/renewal", response_model=YearEndRenewalOut)
async def year_end_renewal(
    body: YearEndRenewalRequest,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    """Create next-year balances from this year's allocations."""
    processed = await service.process_year_end_renewal(db, body.from_year, body.to_year)
    return YearEndRenewalOut(
        from_year=body.from_year, to_year=body.to_year, employees_processed=processed,
    )


@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None),
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_holidays(db, year)


@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def add_holiday(
    body: HolidayCreate,
    service: LeaveService = Depends(get_leave_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.add_holiday(db, body)
