"""Leave module — requests, balances, holidays and the approval workflow."""

from leave_engine.leave.models import Holiday, LeaveBalance, LeaveRequest

__all__ = ["Holiday", "LeaveBalance", "LeaveRequest"]
