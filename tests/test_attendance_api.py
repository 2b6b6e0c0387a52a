"""End-to-end tests for the attendance endpoints."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.models.attendance import AttendanceSession
from conftest import auth_headers

API = "/api/v1/attendance"


async def _check_in(client, user, employee_id, **body):
    return await client.post(f"{API}/check-in", json={"employee_id": employee_id, **body}, headers=auth_headers(user))


async def _count_sessions(session_factory) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count(AttendanceSession.id)))


# ── Transitions ─────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_requires_authentication(async_client: AsyncClient, people):
    resp = await async_client.post(f"{API}/check-in", json={"employee_id": people.alice_emp.id})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_missing_employee_id_is_rejected(async_client: AsyncClient, people):
    resp = await async_client.post(f"{API}/check-in", json={}, headers=auth_headers(people.alice))
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Employee ID is required", "success": False}


@pytest.mark.asyncio
async def test_late_check_in_creates_session_and_violation(async_client: AsyncClient, people, policy, clock):
    clock.set(9, 20)
    resp = await _check_in(async_client, people.alice, people.alice_emp.id, notes="  traffic  ")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "checked_in"
    assert data["employee_id"] == people.alice_emp.id
    assert data["session_date"] == "2026-03-02"
    assert data["notes"] == "traffic"
    assert data["ip_address"] == "127.0.0.1"

    resp = await async_client.get(
        f"{API}/violations",
        params={"employee_id": people.alice_emp.id},
        headers=auth_headers(people.alice),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 1
    violation = body["items"][0]
    assert violation["violation_type"] == "late_arrival"
    assert "5 minutes late" in violation["description"]
    assert violation["session_id"] == data["id"]


@pytest.mark.asyncio
async def test_second_check_in_is_conflict(async_client: AsyncClient, people, session_factory):
    first = await _check_in(async_client, people.alice, people.alice_emp.id)
    assert first.status_code == 200

    second = await _check_in(async_client, people.alice, people.alice_emp.id)
    assert second.status_code == 409
    assert second.json()["detail"] == "Employee is already checked in"
    assert await _count_sessions(session_factory) == 1


@pytest.mark.asyncio
async def test_manager_cannot_touch_non_report(async_client: AsyncClient, people, session_factory):
    resp = await _check_in(async_client, people.manager, people.bob_emp.id)
    assert resp.status_code == 403
    assert await _count_sessions(session_factory) == 0


@pytest.mark.asyncio
async def test_manager_checks_in_direct_report(async_client: AsyncClient, people):
    resp = await _check_in(async_client, people.manager, people.alice_emp.id)
    assert resp.status_code == 200
    assert resp.json()["employee_id"] == people.alice_emp.id


@pytest.mark.asyncio
async def test_unknown_employee_is_not_found_for_admin_only(async_client: AsyncClient, people):
    resp = await _check_in(async_client, people.hr, 9999)
    assert resp.status_code == 404

    # An out-of-scope caller learns nothing about existence.
    resp = await _check_in(async_client, people.alice, 9999)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_caller_without_roles_is_forbidden(async_client: AsyncClient, people):
    resp = await _check_in(async_client, people.nobody, people.bob_emp.id)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_full_day_with_break(async_client: AsyncClient, people, policy, clock, events):
    headers = auth_headers(people.bob)
    body = {"employee_id": people.bob_emp.id}

    clock.set(8, 58)
    assert (await async_client.post(f"{API}/check-in", json=body, headers=headers)).status_code == 200

    clock.set(12, 0, 0)
    resp = await async_client.post(f"{API}/break-start", json=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "on_break"

    resp = await async_client.post(f"{API}/break-start", json=body, headers=headers)
    assert resp.status_code == 409

    clock.set(12, 45, 30)
    resp = await async_client.post(f"{API}/break-end", json=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "checked_in"
    assert resp.json()["total_break_minutes"] == 46

    clock.set(16, 30)
    resp = await async_client.post(f"{API}/check-out", json=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "checked_out"

    resp = await async_client.post(f"{API}/check-out", json=body, headers=headers)
    assert resp.status_code == 409

    resp = await async_client.get(
        f"{API}/violations", params={"employee_id": people.bob_emp.id}, headers=headers
    )
    items = resp.json()["items"]
    assert [v["violation_type"] for v in items] == ["early_departure"]
    assert "30 minutes early" in items[0]["description"]

    # check_in, break_start, break_end, check_out, early_departure
    assert events.pending() == 5


@pytest.mark.asyncio
async def test_break_without_session(async_client: AsyncClient, people):
    headers = auth_headers(people.bob)
    resp = await async_client.post(f"{API}/break-start", json={"employee_id": people.bob_emp.id}, headers=headers)
    assert resp.status_code == 404
    resp = await async_client.post(f"{API}/break-end", json={"employee_id": people.bob_emp.id}, headers=headers)
    assert resp.status_code == 404
    resp = await async_client.post(f"{API}/check-out", json={"employee_id": people.bob_emp.id}, headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_notes_length_is_validated(async_client: AsyncClient, people):
    resp = await _check_in(async_client, people.alice, people.alice_emp.id, notes="x" * 501)
    assert resp.status_code == 422


# ── Reads ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_list_sessions_scoping(async_client: AsyncClient, people):
    await _check_in(async_client, people.alice, people.alice_emp.id)
    await _check_in(async_client, people.bob, people.bob_emp.id)

    resp = await async_client.get(f"{API}/sessions", headers=auth_headers(people.alice))
    assert resp.status_code == 403

    resp = await async_client.get(
        f"{API}/sessions", params={"employee_id": people.alice_emp.id}, headers=auth_headers(people.alice)
    )
    assert resp.status_code == 200
    assert [s["employee_id"] for s in resp.json()["items"]] == [people.alice_emp.id]

    resp = await async_client.get(f"{API}/sessions", headers=auth_headers(people.manager))
    assert resp.status_code == 200
    assert resp.json()["pagination"]["total"] == 2

    resp = await async_client.get(
        f"{API}/sessions", params={"department": "sales"}, headers=auth_headers(people.hr)
    )
    assert [s["employee_id"] for s in resp.json()["items"]] == [people.bob_emp.id]


@pytest.mark.asyncio
async def test_list_sessions_pagination(async_client: AsyncClient, people):
    await _check_in(async_client, people.alice, people.alice_emp.id)
    await _check_in(async_client, people.bob, people.bob_emp.id)
    await _check_in(async_client, people.manager, people.manager_emp.id)

    headers = auth_headers(people.admin)
    resp = await async_client.get(f"{API}/sessions", params={"page": 2, "limit": 2}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["items"]) == 1
    assert body["pagination"] == {"total": 3, "page": 2, "limit": 2, "total_pages": 2}

    resp = await async_client.get(f"{API}/sessions", params={"limit": 500}, headers=headers)
    assert resp.json()["pagination"]["limit"] == 100

    resp = await async_client.get(f"{API}/sessions", params={"page": 0}, headers=headers)
    assert resp.status_code == 422

    resp = await async_client.get(f"{API}/sessions", params={"status": "sleeping"}, headers=headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_current_status_flags(async_client: AsyncClient, people, clock):
    headers = auth_headers(people.alice)
    url = f"{API}/status/{people.alice_emp.id}"

    body = (await async_client.get(url, headers=headers)).json()
    assert body["session"] is None
    assert body["can_check_in"] is True
    assert body["can_check_out"] is False

    await _check_in(async_client, people.alice, people.alice_emp.id)
    clock.set(12)
    await async_client.post(f"{API}/break-start", json={"employee_id": people.alice_emp.id}, headers=headers)

    body = (await async_client.get(url, headers=headers)).json()
    assert body["session"]["status"] == "on_break"
    assert body["is_checked_in"] is True
    assert body["is_on_break"] is True
    assert body["can_check_in"] is False
    assert body["can_check_out"] is True
    assert body["can_start_break"] is False
    assert body["can_end_break"] is True

    resp = await async_client.get(f"{API}/status/{people.alice_emp.id}", headers=auth_headers(people.bob))
    assert resp.status_code == 403


# ── Violations ──────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_resolve_violation(async_client: AsyncClient, people, policy, clock):
    clock.set(9, 40)
    await _check_in(async_client, people.alice, people.alice_emp.id)
    listed = await async_client.get(f"{API}/violations", headers=auth_headers(people.hr))
    violation_id = listed.json()["items"][0]["id"]
    url = f"{API}/violations/{violation_id}/resolve"

    resp = await async_client.post(url, json={"resolution_notes": "ok"}, headers=auth_headers(people.alice))
    assert resp.status_code == 403

    resp = await async_client.post(url, json={"resolution_notes": "   "}, headers=auth_headers(people.hr))
    assert resp.status_code == 400

    clock.set(10, 0)
    resp = await async_client.post(url, json={"resolution_notes": "Train delay"}, headers=auth_headers(people.hr))
    assert resp.status_code == 200
    body = resp.json()
    assert body["resolved"] is True
    assert body["resolved_by"] == people.hr.id
    assert body["resolution_notes"] == "Train delay"
    assert body["resolved_at"].startswith("2026-03-02T10:00:00")

    resp = await async_client.post(url, json={"resolution_notes": "again"}, headers=auth_headers(people.hr))
    assert resp.status_code == 409

    resp = await async_client.get(f"{API}/violations", params={"resolved": False}, headers=auth_headers(people.hr))
    assert resp.json()["pagination"]["total"] == 0

    resp = await async_client.post(
        f"{API}/violations/4242/resolve", json={"resolution_notes": "x"}, headers=auth_headers(people.hr)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_violations_by_department(async_client: AsyncClient, people, policy, clock):
    clock.set(9, 40)
    await _check_in(async_client, people.alice, people.alice_emp.id)
    await _check_in(async_client, people.bob, people.bob_emp.id)
    headers = auth_headers(people.hr)

    resp = await async_client.get(f"{API}/violations", params={"department": "sales"}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 1
    assert [v["employee_id"] for v in body["items"]] == [people.bob_emp.id]

    resp = await async_client.get(
        f"{API}/violations", params={"department": "engineering", "resolved": False}, headers=headers
    )
    assert [v["employee_id"] for v in resp.json()["items"]] == [people.alice_emp.id]

    resp = await async_client.get(f"{API}/violations", params={"department": "legal"}, headers=headers)
    assert resp.json()["pagination"]["total"] == 0


# ── Dashboard) ───────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_live_dashboard(async_client: AsyncClient, people, policy, clock):
    clock.set(9, 30)
    await _check_in(async_client, people.alice, people.alice_emp.id)
    await _check_in(async_client, people.bob, people.bob_emp.id)
    clock.set(11)
    await async_client.post(
        f"{API}/break-start", json={"employee_id": people.bob_emp.id}, headers=auth_headers(people.bob)
    )

    resp = await async_client.get(f"{API}/live-dashboard", headers=auth_headers(people.admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["statistics"] == {
        "total_sessions": 2,
        "checked_in": 1,
        "on_break": 1,
        "checked_out": 0,
        "not_checked_in": 1,
        "violations": 2,
    }
    assert len(body["sessions"]) == 2
    assert {v["violation_type"] for v in body["violations"]} == {"late_arrival"}
    assert body["last_updated"].startswith("2026-03-02T11:00:00")

    resp = await async_client.get(f"{API}/statistics", headers=auth_headers(people.manager))
    assert resp.status_code == 200
    assert resp.json()["on_break"] == 1

    resp = await async_client.get(f"{API}/live-dashboard", headers=auth_headers(people.alice))
    assert resp.status_code == 403
