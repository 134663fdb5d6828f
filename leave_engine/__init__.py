"""Leave engine — leave requests, approvals and balance ledger for an employee directory."""

__version__ = "1.0.0"
