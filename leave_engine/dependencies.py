"""Shared FastAPI dependencies."""

from fastapi import Depends

from leave_engine.config import LeavePolicy, get_policy
from leave_engine.leave.service import LeaveService


def get_leave_policy() -> LeavePolicy:
    return get_policy()


def get_leave_service(policy: LeavePolicy = Depends(get_leave_policy)) -> LeaveService:
    """Service bound to the active policy; override ``get_leave_policy`` to change thresholds."""
    return LeaveService(policy)
