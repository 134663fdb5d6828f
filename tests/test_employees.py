"""Employee directory — CRUD, manager assignment and hierarchy queries."""

from __future__ import annotations

import uuid
from datetime import date

import pytest

from leave_engine.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from leave_engine.core_hr.schemas import EmployeeCreate, EmployeeUpdate
from leave_engine.core_hr.service import EmployeeService, check_manager_assignment


def _create(code: str, **kwargs) -> EmployeeCreate:
    kwargs.setdefault("email", f"{code.lower()}@example.com")
    return EmployeeCreate(
        employee_code=code,
        name=f"Employee {code}",
        joining_date=date(2023, 1, 2),
        **kwargs,
    )


class TestCreateEmployee:
    async def test_create_normalises_code(self, db):
        emp = await EmployeeService.create_employee(db, _create(" eng-7 ", email="e7@example.com"))
        assert emp.employee_code == "ENG-7"
        assert emp.is_active
        assert emp.manager_id is None

    async def test_create_with_manager(self, db, org):
        emp = await EmployeeService.create_employee(db, _create("NEW", manager_id=org["M1"].id))
        assert emp.manager_id == org["M1"].id

    async def test_duplicate_code(self, db, org):
        with pytest.raises(ConflictError) as exc_info:
            await EmployeeService.create_employee(db, _create("E1", email="other@example.com"))
        assert exc_info.value.errors == {"employee_code": ["'E1' is already in use."]}

    async def test_duplicate_email_case_insensitive(self, db, org):
        with pytest.raises(ConflictError):
            await EmployeeService.create_employee(db, _create("X9", email="E1@Example.com"))

    async def test_unknown_manager(self, db):
        with pytest.raises(NotFoundException):
            await EmployeeService.create_employee(db, _create("NEW", manager_id=uuid.uuid4()))


class TestUpdateEmployee:
    async def test_partial_update(self, db, org):
        emp = await EmployeeService.update_employee(
            db, org["E1"].id, EmployeeUpdate(position="Lead", is_hr=True),
        )
        assert emp.position == "Lead"
        assert emp.is_hr
        assert emp.name == "Employee E1"

    async def test_update_email_conflict(self, db, org):
        with pytest.raises(ConflictError):
            await EmployeeService.update_employee(
                db, org["E1"].id, EmployeeUpdate(email="e2@example.com"),
            )

    async def test_update_unknown(self, db):
        with pytest.raises(NotFoundException):
            await EmployeeService.update_employee(db, uuid.uuid4(), EmployeeUpdate(name="X"))


class TestAssignManager:
    async def test_reassign(self, db, org):
        emp = await EmployeeService.assign_manager(db, org["E1"].id, org["M2"].id)
        assert emp.manager_id == org["M2"].id

    async def test_clear_manager(self, db, org):
        emp = await EmployeeService.assign_manager(db, org["E1"].id, None)
        assert emp.manager_id is None

    async def test_self_assignment_rejected(self, db, org):
        with pytest.raises(ValidationException) as exc_info:
            await EmployeeService.assign_manager(db, org["E1"].id, org["E1"].id)
        assert exc_info.value.errors == {
            "manager_id": ["An employee cannot be their own manager."]
        }

    async def test_cycle_rejected(self, db, org):
        """CEO cannot report to E1, who already reports (indirectly) to CEO."""
        with pytest.raises(ValidationException) as exc_info:
            await EmployeeService.assign_manager(db, org["CEO"].id, org["E1"].id)
        assert exc_info.value.errors == {
            "manager_id": ["Circular manager reference detected."]
        }
        await db.refresh(org["CEO"])
        assert org["CEO"].manager_id is None

    async def test_depth_limit(self, db, org):
        with pytest.raises(ValidationException):
            await EmployeeService.assign_manager(db, org["E2"].id, org["E1"].id, max_depth=2)

    async def test_unknown_manager(self, db, org):
        with pytest.raises(NotFoundException):
            await EmployeeService.assign_manager(db, org["E1"].id, uuid.uuid4())

    def test_check_manager_assignment_walk(self):
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        parents = {a: None, b: a, c: b}
        check_manager_assignment(parents, a, uuid.uuid4(), max_depth=5)
        with pytest.raises(ValidationException):
            check_manager_assignment(parents, a, c, max_depth=5)


class TestHierarchyQueries:
    async def test_top_level(self, db, org):
        top = await EmployeeService.get_top_level(db)
        assert [e.employee_code for e in top] == ["CEO"]

    async def test_direct_reports(self, db, org):
        reports = await EmployeeService.get_direct_reports(db, org["M1"].id)
        assert [e.employee_code for e in reports] == ["E1", "E2"]

    async def test_subordinate_counts(self, db, org):
        counts = await EmployeeService.subordinate_counts(db)
        assert [(c.employee_code, c.subordinates) for c in counts] == [
            ("CEO", 3), ("M1", 2), ("M2", 1),
        ]

    async def test_subordinate_counts_by_department(self, db, org):
        counts = await EmployeeService.subordinate_counts(db, "Engineering")
        assert [c.employee_code for c in counts] == ["M1", "M2"]

    async def test_management_chain(self, db, org):
        chain = await EmployeeService.get_management_chain(db, org["E3"].id)
        assert [m.employee_code for m in chain] == ["M2", "CEO"]

    async def test_list_employees_by_department(self, db, org):
        rows, meta = await EmployeeService.list_employees(db, department="Engineering")
        assert meta.total == 5
        assert [e.employee_code for e in rows] == ["E1", "E2", "E3", "M1", "M2"]
