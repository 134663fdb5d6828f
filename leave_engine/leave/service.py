"""Leave service layer — request lifecycle, approvals, ledger coupling.

Business logic:
  - Leave application with working-day computation, full validation and
    emergency auto-approval
  - Approve / reject / cancel / regularize workflows guarded by a
    compare-and-swap on ``(status, version)``
  - Revocation of approved leave with ledger restoration
  - Balance queries, initialization, year-end renewal and recalculation

Each state transition and its ledger mutation run inside one SAVEPOINT,
so either both persist or neither does.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import (
    APPROVED_STATUSES,
    DEFAULT_PAGE_SIZE,
    REQUEST_CODE_PREFIX,
    LeaveStatus,
)
from leave_engine.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from leave_engine.common.pagination import paginate
from leave_engine.config import LeavePolicy, get_policy
from leave_engine.core_hr.models import Employee
from leave_engine.leave.delegation import (
    authorize,
    can_auto_approve,
    is_pending_for,
    load_org_chart,
    resolve_approver,
)
from leave_engine.leave.ledger import BalanceLedger
from leave_engine.leave.models import Holiday, LeaveRequest
from leave_engine.leave.schemas import (
    BalanceSummaryOut,
    HolidayCreate,
    HolidayOut,
    LeaveBalanceOut,
    LeaveRequestCreate,
    LeaveRequestListOut,
    LeaveRequestOut,
)
from leave_engine.leave.validation import (
    BalanceSnapshot,
    ExistingLeave,
    LeaveProposal,
    find_conflicts,
    format_conflicts,
    validate_request,
)

logger = logging.getLogger(__name__)

ENTITY = "LeaveRequest"


def _append_comment(existing: Optional[str], label: str, text: Optional[str]) -> Optional[str]:
    if not text:
        return existing
    line = f"{label}: {text}"
    return f"{existing}\n{line}" if existing else line


def _generate_request_code() -> str:
    return f"{REQUEST_CODE_PREFIX}{uuid.uuid4().hex[:8].upper()}"


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Request lifecycle coordinator.

    Holds only the policy it was constructed with; all store access goes
    through the session passed to each call.
    """

    def __init__(self, policy: Optional[LeavePolicy] = None) -> None:
        self.policy = policy or get_policy()

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        emp = await db.get(Employee, employee_id)
        if emp is None:
            raise NotFoundException("Employee", str(employee_id))
        return emp

    @staticmethod
    async def _get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException(ENTITY, str(request_id))
        return leave_req

    @staticmethod
    async def _holiday_set(db: AsyncSession, start: date, end: date) -> frozenset[date]:
        if end < start:
            return frozenset()
        result = await db.execute(
            select(Holiday.holiday_date).where(
                Holiday.holiday_date >= start,
                Holiday.holiday_date <= end,
            )
        )
        return frozenset(result.scalars().all())

    @staticmethod
    async def _approved_overlapping(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> list[ExistingLeave]:
        if end < start:
            return []
        query = select(LeaveRequest).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(list(APPROVED_STATUSES)),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        if exclude_request_id is not None:
            query = query.where(LeaveRequest.id != exclude_request_id)
        result = await db.execute(
            query.order_by(LeaveRequest.start_date)
            .execution_options(populate_existing=True)
        )
        return [ExistingLeave.from_model(r) for r in result.scalars().all()]

    @staticmethod
    async def _lock_employee(db: AsyncSession, employee_id: uuid.UUID) -> None:
        # Serializes approvals per employee; SQLite ignores FOR UPDATE
        await db.execute(
            select(Employee.id).where(Employee.id == employee_id).with_for_update()
        )

    @staticmethod
    async def _ensure_no_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        *,
        request_code: str,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> None:
        existing = await LeaveService._approved_overlapping(
            db, employee_id, start, end, exclude_request_id=exclude_request_id,
        )
        conflicts = find_conflicts(start, end, existing, exclude_request_id)
        if conflicts:
            logger.warning("%s blocked by overlap with approved leave", request_code)
            raise ValidationException({"overlap": [format_conflicts(conflicts)]})

    @staticmethod
    def _build_request_response(
        leave_req: LeaveRequest,
        warnings: Iterable[str] = (),
    ) -> LeaveRequestOut:
        out = LeaveRequestOut.model_validate(leave_req)
        out.warnings = list(warnings)
        return out

    @staticmethod
    def _require_pending(leave_req: LeaveRequest, action: str) -> None:
        if leave_req.status != LeaveStatus.pending:
            logger.warning(
                "Cannot %s %s: status is %s",
                action, leave_req.request_code, leave_req.status.value,
            )
            raise StateConflictException(
                ENTITY, leave_req.request_code, leave_req.status.value, action,
            )

    async def _authorize_or_raise(
        self,
        db: AsyncSession,
        approver_id: uuid.UUID,
        leave_req: LeaveRequest,
        today: date,
    ) -> list[str]:
        chart = await load_org_chart(db, today, max_depth=self.policy.max_hierarchy_depth)
        auth = authorize(chart, approver_id, leave_req.employee_id)
        if not auth.authorized:
            logger.warning(
                "Approver %s refused for %s: %s",
                approver_id, leave_req.request_code, "; ".join(auth.errors),
            )
            raise ForbiddenException(" ".join(auth.errors))
        return auth.warnings

    @staticmethod
    async def _transition(
        db: AsyncSession,
        leave_req: LeaveRequest,
        *,
        expected: LeaveStatus,
        target: LeaveStatus,
        action: str,
        actor_id: Optional[uuid.UUID],
        values: dict,
        ledger_op=None,
        guard=None,
    ) -> None:
        """Compare-and-swap the status and apply *ledger_op* in one savepoint.

        The owning employee row is locked first, so *guard* (a check that
        must hold at write time, such as overlap) sees every transition
        already committed for that employee. The UPDATE matches only while
        the row still has the status and version this caller read; a
        concurrent winner makes it match nothing, which surfaces as
        ``StateConflictException``.
        """
        now = datetime.now(timezone.utc)
        old_version = leave_req.version

        async with db.begin_nested():
            await LeaveService._lock_employee(db, leave_req.employee_id)
            if guard is not None:
                await guard()

            result = await db.execute(
                update(LeaveRequest)
                .where(
                    LeaveRequest.id == leave_req.id,
                    LeaveRequest.status == expected,
                    LeaveRequest.version == old_version,
                )
                .values(status=target, version=old_version + 1, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await db.scalar(
                    select(LeaveRequest.status).where(LeaveRequest.id == leave_req.id)
                )
                current_value = current.value if current is not None else "missing"
                logger.warning(
                    "Lost race on %s (%s): status now %s",
                    leave_req.request_code, action, current_value,
                )
                raise StateConflictException(
                    ENTITY, leave_req.request_code, current_value, action,
                )

            if ledger_op is not None:
                await ledger_op()

            await create_audit_entry(
                db,
                action=action,
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=actor_id,
                old_values={"status": expected.value, "version": old_version},
                new_values={
                    "status": target.value,
                    "version": old_version + 1,
                    **{k: v for k, v in values.items() if v is not None},
                },
            )

        await db.refresh(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Apply Leave
    # ─────────────────────────────────────────────────────────────────

    async def apply_leave(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Validate and submit a leave request.

        Short emergency leave is auto-approved and charged to the ledger
        immediately; everything else is created pending with no ledger
        effect.
        """
        today = today or date.today()
        policy = self.policy

        # ── Load employee ───────────────────────────────────────────
        employee = await self._get_employee(db, employee_id)
        if not employee.is_active:
            raise ValidationException({"employee": ["Employee is not active."]})

        # ── Snapshots ───────────────────────────────────────────────
        holidays = await self._holiday_set(db, data.start_date, data.end_date)
        balance = await BalanceLedger.find(
            db, employee_id, data.leave_type, data.start_date.year
        )
        existing = await self._approved_overlapping(
            db, employee_id, data.start_date, data.end_date
        )
        proposal = LeaveProposal(
            employee_id=employee_id,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            duration=data.duration,
            is_emergency=data.is_emergency,
        )

        # ── Validate ────────────────────────────────────────────────
        result = validate_request(
            proposal,
            employee,
            BalanceSnapshot.from_model(balance) if balance is not None else None,
            existing,
            policy,
            today,
            holidays,
        )
        if not result.is_valid:
            logger.warning(
                "Leave application by %s rejected: %s",
                employee.employee_code, "; ".join(result.reasons),
            )
            result.raise_if_invalid()

        warnings = list(result.warnings)
        comments = None
        if result.is_backdated:
            comments = _append_comment(
                comments, "Backdated Justification", data.backdated_justification
            )

        # ── Determine initial status ────────────────────────────────
        auto = can_auto_approve(data.is_emergency, result.requested_days, policy)
        approver_id = None
        if auto:
            chart = await load_org_chart(db, today, max_depth=policy.max_hierarchy_depth)
            try:
                approver_id = resolve_approver(chart, employee_id).id
            except NotFoundException:
                logger.info(
                    "No approver resolvable for %s; auto-approving without one",
                    employee.employee_code,
                )

        now = datetime.now(timezone.utc)
        leave_req = LeaveRequest(
            id=uuid.uuid4(),
            request_code=_generate_request_code(),
            employee_id=employee_id,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            duration=data.duration,
            total_days=result.requested_days,
            charged_days=Decimal("0"),
            reason=data.reason,
            comments=comments,
            status=LeaveStatus.auto_approved if auto else LeaveStatus.pending,
            is_emergency=data.is_emergency,
            is_backdated=result.is_backdated,
            approved_by=approver_id,
            approved_at=now if auto else None,
            version=0,
            created_at=now,
            updated_at=now,
        )

        # ── Persist request (+ ledger when auto-approved) ──────────
        async with db.begin_nested():
            if auto:
                # Re-check under the employee lock; an overlapping request
                # may have been approved since the snapshot above
                await self._lock_employee(db, employee_id)
                await self._ensure_no_overlap(
                    db,
                    employee_id,
                    data.start_date,
                    data.end_date,
                    request_code=leave_req.request_code,
                )
            db.add(leave_req)
            await db.flush()

            if auto:
                leave_req.charged_days = await BalanceLedger.deduct_available(
                    db,
                    employee_id,
                    data.leave_type,
                    data.start_date.year,
                    result.requested_days,
                    actor_id=employee_id,
                )
                if leave_req.charged_days < result.requested_days:
                    warnings.append(
                        f"Emergency leave granted beyond available balance: "
                        f"{result.requested_days - leave_req.charged_days:.1f} days "
                        f"not charged to the ledger"
                    )
                await db.flush()

            await create_audit_entry(
                db,
                action="create",
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=employee_id,
                new_values={
                    "request_code": leave_req.request_code,
                    "leave_type": data.leave_type.value,
                    "start_date": data.start_date.isoformat(),
                    "end_date": data.end_date.isoformat(),
                    "total_days": str(result.requested_days),
                    "status": leave_req.status.value,
                },
            )

        logger.info(
            "Leave %s created for %s as %s (%s days)",
            leave_req.request_code, employee.employee_code,
            leave_req.status.value, result.requested_days,
        )
        await db.refresh(leave_req)
        return self._build_request_response(leave_req, warnings)

    # ─────────────────────────────────────────────────────────────────
    # Approve Leave
    # ─────────────────────────────────────────────────────────────────

    async def approve_leave(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request and charge the ledger for its start-date year."""
        leave_req = await self._get_request(db, request_id)
        return await self._approve(
            db,
            leave_req,
            approver_id,
            today=today or date.today(),
            action="approve",
            comment_label="Approval Comments",
            comments=comments,
        )

    async def _approve(
        self,
        db: AsyncSession,
        leave_req: LeaveRequest,
        approver_id: uuid.UUID,
        *,
        today: date,
        action: str,
        comment_label: str,
        comments: Optional[str],
    ) -> LeaveRequestOut:
        """Shared approve/regularize path.

        Overlap is re-checked against approved and auto-approved requests
        only. Pending requests do not block each other, otherwise two
        overlapping pending requests could never be decided; whichever is
        approved first wins and the other then fails this check. The check
        runs once up front and again under the employee lock inside the
        transition, where a concurrently approved request is visible.
        """
        self._require_pending(leave_req, action)
        warnings = await self._authorize_or_raise(db, approver_id, leave_req, today)

        async def _no_overlap() -> None:
            await self._ensure_no_overlap(
                db,
                leave_req.employee_id,
                leave_req.start_date,
                leave_req.end_date,
                request_code=leave_req.request_code,
                exclude_request_id=leave_req.id,
            )

        await _no_overlap()

        days = leave_req.total_days
        employee_id = leave_req.employee_id
        leave_type = leave_req.leave_type
        year = leave_req.start_date.year

        async def _charge() -> None:
            await BalanceLedger.deduct(
                db, employee_id, leave_type, year, days, actor_id=approver_id,
            )

        await self._transition(
            db,
            leave_req,
            expected=LeaveStatus.pending,
            target=LeaveStatus.approved,
            action=action,
            actor_id=approver_id,
            values={
                "approved_by": approver_id,
                "approved_at": datetime.now(timezone.utc),
                "charged_days": days,
                "comments": _append_comment(leave_req.comments, comment_label, comments),
            },
            ledger_op=_charge,
            guard=_no_overlap,
        )
        logger.info(
            "Leave %s %sd by %s", leave_req.request_code, action, approver_id
        )
        return self._build_request_response(leave_req, warnings)

    # ─────────────────────────────────────────────────────────────────
    # Regularize Leave
    # ─────────────────────────────────────────────────────────────────

    async def regularize_leave(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        note: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Approve a backdated request, recording the regularization note."""
        leave_req = await self._get_request(db, request_id)
        if not leave_req.is_backdated:
            raise ValidationException(
                {"request": ["Only backdated leave requests can be regularized."]}
            )
        return await self._approve(
            db,
            leave_req,
            approver_id,
            today=today or date.today(),
            action="regularize",
            comment_label="Backdated Leave Regularization",
            comments=note or "Regularized",
        )

    # ─────────────────────────────────────────────────────────────────
    # Reject Leave
    # ─────────────────────────────────────────────────────────────────

    async def reject_leave(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        reason: str,
        *,
        comments: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Reject a pending request. No ledger effect."""
        today = today or date.today()
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["Rejection reason is required."]})

        leave_req = await self._get_request(db, request_id)
        self._require_pending(leave_req, "reject")
        warnings = await self._authorize_or_raise(db, approver_id, leave_req, today)

        await self._transition(
            db,
            leave_req,
            expected=LeaveStatus.pending,
            target=LeaveStatus.rejected,
            action="reject",
            actor_id=approver_id,
            values={
                "rejection_reason": reason.strip(),
                "comments": _append_comment(leave_req.comments, "Rejection Comments", comments),
            },
        )
        logger.info("Leave %s rejected by %s", leave_req.request_code, approver_id)
        return self._build_request_response(leave_req, warnings)

    # ─────────────────────────────────────────────────────────────────
    # Cancel Leave
    # ─────────────────────────────────────────────────────────────────

    async def cancel_leave(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Withdraw one's own pending request."""
        leave_req = await self._get_request(db, request_id)

        if leave_req.employee_id != employee_id:
            logger.warning(
                "Employee %s tried to cancel %s owned by %s",
                employee_id, leave_req.request_code, leave_req.employee_id,
            )
            raise ForbiddenException("You can only cancel your own leave requests.")

        self._require_pending(leave_req, "cancel")

        await self._transition(
            db,
            leave_req,
            expected=LeaveStatus.pending,
            target=LeaveStatus.cancelled,
            action="cancel",
            actor_id=employee_id,
            values={"cancelled_at": datetime.now(timezone.utc)},
        )
        logger.info("Leave %s cancelled by owner", leave_req.request_code)
        return self._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Revoke Approved Leave
    # ─────────────────────────────────────────────────────────────────

    async def revoke_approved(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
        *,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Withdraw approved leave that has not started yet and give the days back.

        Permitted for the owner and for anyone authorized to approve the
        request. The request ends ``cancelled``; it never returns to pending.
        """
        today = today or date.today()
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["Revocation reason is required."]})

        leave_req = await self._get_request(db, request_id)
        current = leave_req.status
        if current not in APPROVED_STATUSES:
            logger.warning(
                "Cannot revoke %s: status is %s", leave_req.request_code, current.value
            )
            raise StateConflictException(
                ENTITY, leave_req.request_code, current.value, "revoke"
            )

        if leave_req.start_date < today:
            raise ValidationException(
                {"start_date": ["Leave that has already started cannot be revoked."]}
            )

        warnings: list[str] = []
        if actor_id != leave_req.employee_id:
            warnings = await self._authorize_or_raise(db, actor_id, leave_req, today)

        charged = leave_req.charged_days
        employee_id = leave_req.employee_id
        leave_type = leave_req.leave_type
        year = leave_req.start_date.year

        async def _refund() -> None:
            if charged > 0:
                await BalanceLedger.restore(
                    db, employee_id, leave_type, year, charged, actor_id=actor_id,
                )

        await self._transition(
            db,
            leave_req,
            expected=current,
            target=LeaveStatus.cancelled,
            action="revoke",
            actor_id=actor_id,
            values={
                "cancelled_at": datetime.now(timezone.utc),
                "charged_days": Decimal("0"),
                "comments": _append_comment(
                    leave_req.comments, "Revocation Reason", reason.strip()
                ),
            },
            ledger_op=_refund,
        )
        logger.info(
            "Approved leave %s revoked by %s (%s days restored)",
            leave_req.request_code, actor_id, charged,
        )
        return self._build_request_response(leave_req, warnings)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    async def get_leave_request(
        self, db: AsyncSession, request_id: uuid.UUID
    ) -> LeaveRequestOut:
        return self._build_request_response(await self._get_request(db, request_id))

    async def get_leave_history(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: Optional[str] = None,
    ) -> LeaveRequestListOut:
        """An employee's requests, newest first, paginated."""
        await self._get_employee(db, employee_id)
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.employee_id == employee_id)
            .order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
        )
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, sort=sort, model=LeaveRequest,
        )
        return LeaveRequestListOut(
            data=[self._build_request_response(r) for r in rows],
            meta=meta,
        )

    async def get_pending_for_approver(
        self,
        db: AsyncSession,
        approver_id: uuid.UUID,
        *,
        today: Optional[date] = None,
    ) -> list[LeaveRequestOut]:
        """Pending requests from direct reports, plus those delegated to the approver."""
        today = today or date.today()
        await self._get_employee(db, approver_id)
        chart = await load_org_chart(db, today, max_depth=self.policy.max_hierarchy_depth)

        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.status == LeaveStatus.pending)
            .order_by(LeaveRequest.created_at.asc())
        )
        return [
            self._build_request_response(r)
            for r in result.scalars().all()
            if is_pending_for(chart, approver_id, r.employee_id)
        ]

    async def get_requests_by_status(
        self,
        db: AsyncSession,
        status: LeaveStatus,
        *,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> LeaveRequestListOut:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.status == status)
            .order_by(LeaveRequest.created_at.desc())
        )
        rows, meta = await paginate(db, query, page=page, page_size=page_size)
        return LeaveRequestListOut(
            data=[self._build_request_response(r) for r in rows],
            meta=meta,
        )

    async def get_requests_in_range(
        self,
        db: AsyncSession,
        start: date,
        end: date,
        *,
        employee_id: Optional[uuid.UUID] = None,
        department: Optional[str] = None,
        statuses: Optional[Sequence[LeaveStatus]] = None,
    ) -> list[LeaveRequestOut]:
        """Requests intersecting ``[start, end]``; approved ones unless *statuses* is given."""
        if end < start:
            raise ValidationException({"end_date": ["End date must be on or after start date"]})

        wanted = list(statuses) if statuses else list(APPROVED_STATUSES)
        query = select(LeaveRequest).where(
            LeaveRequest.status.in_(wanted),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if department is not None:
            query = query.join(Employee, Employee.id == LeaveRequest.employee_id).where(
                Employee.department == department
            )
        result = await db.execute(query.order_by(LeaveRequest.start_date))
        return [self._build_request_response(r) for r in result.scalars().all()]

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    async def get_balance(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> list[LeaveBalanceOut]:
        await self._get_employee(db, employee_id)
        year = year or date.today().year
        balances = await BalanceLedger.list_for_employee(db, employee_id, year)
        return [LeaveBalanceOut.model_validate(b) for b in balances]

    async def initialize_balances(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        allocations: Optional[dict] = None,
        *,
        used: Optional[dict] = None,
    ) -> list[LeaveBalanceOut]:
        balances = await BalanceLedger.initialize_balances(
            db, employee_id, year, allocations, used=used, policy=self.policy,
        )
        return [LeaveBalanceOut.model_validate(b) for b in balances]

    async def process_year_end_renewal(
        self, db: AsyncSession, from_year: int, to_year: int
    ) -> int:
        return await BalanceLedger.process_year_end_renewal(db, from_year, to_year)

    async def recalculate_balances(
        self, db: AsyncSession, employee_id: uuid.UUID, year: int
    ) -> list[LeaveBalanceOut]:
        await self._get_employee(db, employee_id)
        balances = await BalanceLedger.recalculate(db, employee_id, year)
        return [LeaveBalanceOut.model_validate(b) for b in balances]

    async def balance_summary(
        self, db: AsyncSession, employee_id: uuid.UUID, year: Optional[int] = None
    ) -> BalanceSummaryOut:
        summary = await BalanceLedger.balance_summary(
            db, employee_id, year or date.today().year, policy=self.policy,
        )
        summary["balances"] = [LeaveBalanceOut.model_validate(b) for b in summary["balances"]]
        return BalanceSummaryOut(**summary)

    # ─────────────────────────────────────────────────────────────────
    # Holidays
    # ─────────────────────────────────────────────────────────────────

    async def add_holiday(self, db: AsyncSession, data: HolidayCreate) -> HolidayOut:
        existing = await db.execute(
            select(Holiday).where(Holiday.holiday_date == data.holiday_date)
        )
        if existing.scalars().first() is not None:
            raise ConflictError("holiday_date", data.holiday_date.isoformat())

        holiday = Holiday(id=uuid.uuid4(), holiday_date=data.holiday_date, name=data.name)
        db.add(holiday)
        await db.flush()
        await create_audit_entry(
            db,
            action="create",
            entity_type="holiday",
            entity_id=holiday.id,
            new_values={"holiday_date": data.holiday_date.isoformat(), "name": data.name},
        )
        return HolidayOut.model_validate(holiday)

    async def list_holidays(
        self, db: AsyncSession, year: Optional[int] = None
    ) -> list[HolidayOut]:
        query = select(Holiday).order_by(Holiday.holiday_date)
        if year is not None:
            query = query.where(
                Holiday.holiday_date >= date(year, 1, 1),
                Holiday.holiday_date <= date(year, 12, 31),
            )
        result = await db.execute(query)
        return [HolidayOut.model_validate(h) for h in result.scalars().all()]
