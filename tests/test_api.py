"""HTTP surface — routing, status codes and RFC 7807 error bodies.

The routes call the service with the real clock, so dates here are
relative to ``date.today()``. Seed data is committed before each request
because the app uses its own session.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from leave_engine.common.constants import LeaveType

PROBLEM_JSON = "application/problem+json"


def _next_monday() -> date:
    today = date.today()
    return today + timedelta(days=7 - today.weekday())


@pytest.fixture
async def seeded(db, org, make_balance):
    start = _next_monday()
    for code in ("E1", "E2", "M1"):
        await make_balance(org[code].id, total="10", year=start.year)
    await db.commit()
    return org


async def _apply(client, employee_id, start: date, days: int = 1, **extra):
    body = {
        "leave_type": "vacation",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days - 1)).isoformat(),
        **extra,
    }
    return await client.post(f"/api/v1/leave/employees/{employee_id}/requests", json=body)


class TestSystem:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestEmployeeEndpoints:
    async def test_create_and_fetch(self, client):
        resp = await client.post(
            "/api/v1/employees",
            json={
                "employee_code": "new-1",
                "name": "New Starter",
                "email": "new.starter@example.com",
                "department": "Engineering",
                "joining_date": "2024-01-15",
            },
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["employee_code"] == "NEW-1"

        fetched = await client.get(f"/api/v1/employees/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["email"] == "new.starter@example.com"

    async def test_duplicate_code_is_conflict(self, client, seeded):
        resp = await client.post(
            "/api/v1/employees",
            json={
                "employee_code": "E1",
                "name": "Clone",
                "email": "clone@example.com",
                "joining_date": "2024-01-15",
            },
        )
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith(PROBLEM_JSON)
        assert resp.json()["type"].endswith("/conflict")

    async def test_invalid_email_rejected(self, client):
        resp = await client.post(
            "/api/v1/employees",
            json={
                "employee_code": "BAD",
                "name": "Bad Email",
                "email": "not-an-email",
                "joining_date": "2024-01-15",
            },
        )
        assert resp.status_code == 422
        assert "email" in resp.json()["errors"]

    async def test_cycle_rejected(self, client, seeded):
        resp = await client.put(
            f"/api/v1/employees/{seeded['CEO'].id}/manager",
            json={"manager_id": str(seeded["E1"].id)},
        )
        assert resp.status_code == 422
        assert resp.json()["errors"]["manager_id"] == ["Circular manager reference detected."]

    async def test_list_and_hierarchy(self, client, seeded):
        listing = await client.get("/api/v1/employees", params={"department": "Engineering"})
        assert listing.status_code == 200
        assert listing.json()["meta"]["total"] == 5

        chain = await client.get(f"/api/v1/employees/{seeded['E1'].id}/chain")
        assert [m["employee_code"] for m in chain.json()] == ["M1", "CEO"]

        counts = await client.get("/api/v1/employees/subordinate-counts")
        assert counts.json()[0] == {
            "employee_id": str(seeded["CEO"].id),
            "employee_code": "CEO",
            "subordinates": 3,
        }


class TestLeaveEndpoints:
    async def test_apply_and_approve(self, client, seeded):
        resp = await _apply(client, seeded["E1"].id, _next_monday(), days=3)
        assert resp.status_code == 201
        created = resp.json()
        assert created["status"] == "pending"
        assert Decimal(created["total_days"]) == Decimal("3")

        approved = await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={"approver_id": str(seeded["M1"].id), "comments": "ok"},
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        balances = await client.get(
            f"/api/v1/leave/employees/{seeded['E1'].id}/balances",
            params={"year": _next_monday().year},
        )
        vacation = next(b for b in balances.json() if b["leave_type"] == "vacation")
        assert Decimal(vacation["used_days"]) == Decimal("3")
        assert Decimal(vacation["available_days"]) == Decimal("7")

    async def test_second_approval_is_state_conflict(self, client, seeded):
        created = (await _apply(client, seeded["E1"].id, _next_monday())).json()
        url = f"/api/v1/leave/requests/{created['id']}/approve"
        body = {"approver_id": str(seeded["M1"].id)}

        assert (await client.put(url, json=body)).status_code == 200
        resp = await client.put(url, json=body)
        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/state-conflict")

    async def test_insufficient_balance_is_422(self, client, seeded):
        resp = await _apply(client, seeded["E1"].id, _next_monday(), days=12)
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith(PROBLEM_JSON)
        assert "balance" in resp.json()["errors"]

    async def test_unauthorized_approver_is_403(self, client, seeded):
        created = (await _apply(client, seeded["E1"].id, _next_monday())).json()
        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={"approver_id": str(seeded["E2"].id)},
        )
        assert resp.status_code == 403

    async def test_blank_rejection_reason_is_422(self, client, seeded):
        created = (await _apply(client, seeded["E1"].id, _next_monday())).json()
        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/reject",
            json={"approver_id": str(seeded["M1"].id), "reason": "   "},
        )
        assert resp.status_code == 422

    async def test_cancel_and_history(self, client, seeded):
        created = (await _apply(client, seeded["E1"].id, _next_monday())).json()
        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/cancel",
            json={"employee_id": str(seeded["E1"].id)},
        )
        assert resp.json()["status"] == "cancelled"

        history = await client.get(
            f"/api/v1/leave/employees/{seeded['E1'].id}/requests",
            params={"status": "cancelled"},
        )
        assert history.json()["meta"]["total"] == 1

    async def test_revoke_restores_balance(self, client, seeded):
        created = (await _apply(client, seeded["E1"].id, _next_monday(), days=2)).json()
        await client.put(
            f"/api/v1/leave/requests/{created['id']}/approve",
            json={"approver_id": str(seeded["M1"].id)},
        )

        resp = await client.put(
            f"/api/v1/leave/requests/{created['id']}/revoke",
            json={"actor_id": str(seeded["E1"].id), "reason": "Trip cancelled"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        summary = await client.get(
            f"/api/v1/leave/employees/{seeded['E1'].id}/balances/summary",
            params={"year": _next_monday().year},
        )
        assert Decimal(summary.json()["total_used"]) == Decimal("0")

    async def test_pending_queue(self, client, seeded):
        await _apply(client, seeded["E1"].id, _next_monday())
        await _apply(client, seeded["E2"].id, _next_monday())

        resp = await client.get(f"/api/v1/leave/approvers/{seeded['M1'].id}/pending")
        assert resp.status_code == 200
        assert len(resp.json()) == 2

    async def test_unknown_request_is_404(self, client):
        resp = await client.get(f"/api/v1/leave/requests/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["title"] == "LeaveRequest Not Found"


class TestBalanceAndHolidayEndpoints:
    async def test_initialize_with_defaults(self, client, seeded):
        resp = await client.post(
            f"/api/v1/leave/employees/{seeded['E3'].id}/balances/initialize",
            json={"year": 2030},
        )
        assert resp.status_code == 200
        assert len(resp.json()) == 5

    async def test_initialize_rejects_duplicate_types(self, client, seeded):
        resp = await client.post(
            f"/api/v1/leave/employees/{seeded['E3'].id}/balances/initialize",
            json={
                "year": 2030,
                "allocations": [
                    {"leave_type": "sick", "total_days": "5"},
                    {"leave_type": "sick", "total_days": "6"},
                ],
            },
        )
        assert resp.status_code == 422

    async def test_year_end_renewal(self, client, seeded):
        year = _next_monday().year
        resp = await client.post(
            "/api/v1/leave/balances/renewal",
            json={"from_year": year, "to_year": year + 1},
        )
        assert resp.status_code == 200
        assert resp.json()["employees_processed"] == 3

    async def test_holidays(self, client):
        body = {"holiday_date": "2030-12-25", "name": "Christmas"}
        assert (await client.post("/api/v1/leave/holidays", json=body)).status_code == 201
        assert (await client.post("/api/v1/leave/holidays", json=body)).status_code == 409

        listing = await client.get("/api/v1/leave/holidays", params={"year": 2030})
        assert [h["name"] for h in listing.json()] == ["Christmas"]

    async def test_holiday_shortens_request(self, client, seeded):
        start = _next_monday()
        await client.post(
            "/api/v1/leave/holidays",
            json={"holiday_date": (start + timedelta(days=1)).isoformat(), "name": "Local"},
        )

        resp = await _apply(client, seeded["E1"].id, start, days=3)
        assert Decimal(resp.json()["total_days"]) == Decimal("2")


@pytest.mark.parametrize("leave_type", [LeaveType.sick, LeaveType.personal])
async def test_apply_without_balance_row(client, seeded, leave_type):
    resp = await _apply(client, seeded["E1"].id, _next_monday(), leave_type=leave_type.value)
    assert resp.status_code == 422
    assert resp.json()["errors"]["balance"][0].startswith("Leave balance not found")
