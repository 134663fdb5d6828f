"""Core HR module — Employee model, schemas and directory service."""

from leave_engine.core_hr.models import Employee

__all__ = ["Employee"]
