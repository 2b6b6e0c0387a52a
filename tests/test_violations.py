"""Tests for violation detection (late arrival / early departure)."""

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.models.attendance import AttendanceViolation
from app.services.policy import PolicyProvider
from app.services.state_machine import Transition
from app.services.violations import (ViolationDetector, ViolationFilters,
                                     ViolationStore, evaluate)
from conftest import at

DAY = date(2026, 3, 2)


def _policy(**overrides):
    values = dict(work_hours_start="09:00", work_hours_end="17:00", late_arrival_threshold_minutes=15)
    values.update(overrides)
    return SimpleNamespace(**values)


def _session(check_in=None, check_out=None):
    return SimpleNamespace(
        id=11,
        employee_id=3,
        session_date=DAY,
        check_in_time=check_in,
        check_out_time=check_out,
    )


# ── evaluate() ──────────────────────────────────────────────────────
def test_late_arrival_counts_minutes_past_grace():
    rows = evaluate(_session(check_in=at(9, 20)), Transition.CHECK_IN, _policy())
    assert len(rows) == 1
    row = rows[0]
    assert row["violation_type"] == "late_arrival"
    assert row["description"] == "Employee arrived 5 minutes late"
    assert row["severity"] == "medium"
    assert row["auto_detected"] is True
    assert row["employee_id"] == 3
    assert row["session_id"] == 11


def test_arrival_inside_grace_is_clean():
    assert evaluate(_session(check_in=at(9, 15)), Transition.CHECK_IN, _policy()) == []
    assert evaluate(_session(check_in=at(8, 30)), Transition.CHECK_IN, _policy()) == []


def test_late_by_seconds_reports_at_least_one_minute():
    rows = evaluate(_session(check_in=at(9, 15, 10)), Transition.CHECK_IN, _policy())
    assert rows[0]["description"] == "Employee arrived 1 minutes late"


def test_missing_threshold_falls_back_to_default():
    policy = _policy(late_arrival_threshold_minutes=None)
    assert evaluate(_session(check_in=at(9, 10)), Transition.CHECK_IN, policy, 15) == []
    rows = evaluate(_session(check_in=at(9, 10)), Transition.CHECK_IN, policy, 5)
    assert rows[0]["description"] == "Employee arrived 5 minutes late"


def test_early_departure():
    rows = evaluate(_session(check_in=at(9), check_out=at(16, 30)), Transition.CHECK_OUT, _policy())
    assert [r["violation_type"] for r in rows] == ["early_departure"]
    assert rows[0]["description"] == "Employee left 30 minutes early"


def test_check_out_at_or_after_end_is_clean():
    assert evaluate(_session(check_out=at(17, 0)), Transition.CHECK_OUT, _policy()) == []
    assert evaluate(_session(check_out=at(18, 5)), Transition.CHECK_OUT, _policy()) == []


def test_breaks_never_produce_violations():
    session = _session(check_in=at(11), check_out=None)
    assert evaluate(session, Transition.BREAK_START, _policy()) == []
    assert evaluate(session, Transition.BREAK_END, _policy()) == []


def test_naive_storage_timestamps_are_treated_as_utc():
    naive = datetime(2026, 3, 2, 9, 20)
    rows = evaluate(_session(check_in=naive), Transition.CHECK_IN, _policy())
    assert rows[0]["description"] == "Employee arrived 5 minutes late"


def test_policy_hours_follow_configured_offset(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "TIMEZONE_OFFSET", "+02:00")
    # 09:00 local at +02:00 is 07:00 UTC; 07:20 UTC is 5 minutes past grace
    rows = evaluate(
        _session(check_in=datetime(2026, 3, 2, 7, 20, tzinfo=timezone.utc)),
        Transition.CHECK_IN,
        _policy(),
    )
    assert rows[0]["description"] == "Employee arrived 5 minutes late"


# ── ViolationDetector ───────────────────────────────────────────────
async def _count(db) -> int:
    return await db.scalar(select(func.count(AttendanceViolation.id)))


async def _checked_in_session(service, people, clock, hour, minute):
    clock.set(hour, minute)
    return await service.check_in(people.alice_emp.id, people.alice.id)


@pytest.mark.asyncio
async def test_detector_without_policy_records_nothing(service, people, clock, db_session):
    await _checked_in_session(service, people, clock, 10, 30)
    assert await _count(db_session) == 0


@pytest.mark.asyncio
async def test_detector_records_late_arrival(service, people, policy, clock, db_session, events):
    session = await _checked_in_session(service, people, clock, 9, 20)
    assert session.status == "checked_in"

    violations, total = await ViolationStore(db_session).search(ViolationFilters(), offset=0, limit=None)
    assert total == 1
    assert violations[0].violation_type == "late_arrival"
    assert "5 minutes late" in violations[0].description
    assert violations[0].session_id == session.id
    assert violations[0].resolved is False

    kinds = []
    while events.pending():
        kinds.append(events._queue.get_nowait()["type"])
    assert kinds == ["attendance_update", "attendance_violation"]


@pytest.mark.asyncio
async def test_violations_are_append_only_by_default(service, people, policy, clock, db_session):
    await _checked_in_session(service, people, clock, 9, 20)
    clock.set(9, 40)
    await service.check_out(people.alice_emp.id, people.alice.id)
    clock.set(9, 45)
    await service.check_in(people.alice_emp.id, people.alice.id)

    late, total = await ViolationStore(db_session).search(
        ViolationFilters(violation_type="late_arrival"), offset=0, limit=None
    )
    assert total == 2


@pytest.mark.asyncio
async def test_search_filters_by_department(service, people, policy, clock, db_session):
    clock.set(9, 20)
    await service.check_in(people.alice_emp.id, people.alice.id)
    await service.check_in(people.bob_emp.id, people.bob.id)
    store = ViolationStore(db_session)

    sales, total = await store.search(ViolationFilters(department="sales"), offset=0, limit=None)
    assert total == 1
    assert sales[0].employee_id == people.bob_emp.id

    _, total = await store.search(
        ViolationFilters(department="engineering", employee_id=people.bob_emp.id), offset=0, limit=None
    )
    assert total == 0


@pytest.mark.asyncio
async def test_deduplication_skips_open_duplicate(db_session, people, policy, clock, service):
    await _checked_in_session(service, people, clock, 9, 20)
    record = await service._sessions.get(people.alice_emp.id, DAY)

    detector = ViolationDetector(PolicyProvider(db_session), ViolationStore(db_session), deduplicate=True)
    assert await detector.run(record, Transition.CHECK_IN, at(9, 20)) == []
    assert await _count(db_session) == 1


@pytest.mark.asyncio
async def test_detector_is_fail_open(db_session, people, policy, clock, service, caplog):
    await _checked_in_session(service, people, clock, 9, 20)
    employee_id = people.alice_emp.id
    record = await service._sessions.get(employee_id, DAY)
    session_id = record.id

    class BrokenStore(ViolationStore):
        async def add_all(self, rows, created_at):
            raise RuntimeError("disk on fire")

    detector = ViolationDetector(PolicyProvider(db_session), BrokenStore(db_session))
    assert await detector.run(record, Transition.CHECK_IN, at(9, 20)) == []
    assert "Violation check failed" in caplog.text

    # The rollback expired every loaded row; the committed session is untouched.
    still_there = await service._sessions.get(employee_id, DAY)
    assert still_there.id == session_id
    assert still_there.status == "checked_in"
    # Only the late arrival recorded by the check-in itself.
    assert await _count(db_session) == 1
