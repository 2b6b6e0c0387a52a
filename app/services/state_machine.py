"""
Session state machine.

Pure functions only: given the observed state of today's session and a
transition, compute the column values to write or raise the typed error.
Persistence (and the race between read and write) belongs to the store.

    (no session) --check_in--> checked_in
    checked_in   --break_start--> on_break --break_end--> checked_in
    checked_in | on_break --check_out--> checked_out
    on_break | checked_out --check_in--> checked_in   (same-day correction)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union

from app.core.exceptions import ConflictError, NotFoundError
from app.core.timeutils import ensure_utc, round_minutes
from app.models.attendance import AttendanceSession, SessionStatus


class Transition(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    BREAK_START = "break_start"
    BREAK_END = "break_end"


@dataclass(frozen=True)
class NoSession:
    """Nothing recorded for (employee, date) yet."""

    employee_id: int
    session_date: date


@dataclass(frozen=True)
class ExistingSession:
    """Immutable snapshot of the stored session as it was read."""

    id: int
    employee_id: int
    session_date: date
    status: SessionStatus
    version: int
    break_start_time: datetime | None = None
    total_break_minutes: int = 0

    @classmethod
    def from_record(cls, record: AttendanceSession) -> "ExistingSession":
        return cls(
            id=record.id,
            employee_id=record.employee_id,
            session_date=record.session_date,
            status=SessionStatus(record.status),
            version=record.version,
            break_start_time=record.break_start_time,
            total_break_minutes=record.total_break_minutes or 0,
        )


SessionState = Union[NoSession, ExistingSession]


@dataclass(frozen=True)
class TransitionContext:
    location_data: dict | None = None
    device_info: dict | None = None
    ip_address: str | None = None
    notes: str | None = None

    def as_values(self) -> dict[str, Any]:
        return {
            "location_data": self.location_data,
            "device_info": self.device_info,
            "ip_address": self.ip_address,
            "notes": self.notes,
        }


def state_of(record: AttendanceSession | None, employee_id: int, session_date: date) -> SessionState:
    if record is None:
        return NoSession(employee_id=employee_id, session_date=session_date)
    return ExistingSession.from_record(record)


def break_minutes(started: datetime, now: datetime) -> int:
    return max(0, round_minutes(ensure_utc(now) - ensure_utc(started)))


def _close_open_break(state: ExistingSession, now: datetime) -> dict[str, Any]:
    """Fold a still-open break into the accumulator at *now*."""
    if state.status is not SessionStatus.ON_BREAK or state.break_start_time is None:
        return {}
    return {
        "break_end_time": now,
        "total_break_minutes": state.total_break_minutes
        + break_minutes(state.break_start_time, now),
    }


def _require_session(state: SessionState, message: str) -> ExistingSession:
    if isinstance(state, NoSession):
        raise NotFoundError(message)
    return state


def check_in(state: SessionState, now: datetime, context: TransitionContext) -> dict[str, Any]:
    if isinstance(state, ExistingSession) and state.status is SessionStatus.CHECKED_IN:
        raise ConflictError("Employee is already checked in")
    values: dict[str, Any] = {
        "check_in_time": now,
        "status": SessionStatus.CHECKED_IN.value,
        **context.as_values(),
    }
    if isinstance(state, ExistingSession):
        values["check_out_time"] = None
        values.update(_close_open_break(state, now))
    return values


def check_out(state: SessionState, now: datetime, context: TransitionContext) -> dict[str, Any]:
    session = _require_session(state, "No active session found for today. Please check in first.")
    if session.status is SessionStatus.CHECKED_OUT:
        raise ConflictError("Employee is already checked out")
    return {
        "check_out_time": now,
        "status": SessionStatus.CHECKED_OUT.value,
        **context.as_values(),
        **_close_open_break(session, now),
    }


def start_break(state: SessionState, now: datetime) -> dict[str, Any]:
    session = _require_session(state, "No active session found for today. Please check in first.")
    if session.status is not SessionStatus.CHECKED_IN:
        raise ConflictError("Employee must be checked in to start a break")
    return {
        "break_start_time": now,
        "status": SessionStatus.ON_BREAK.value,
    }


def end_break(state: SessionState, now: datetime) -> dict[str, Any]:
    session = _require_session(state, "No active session found for today.")
    if session.status is not SessionStatus.ON_BREAK:
        raise ConflictError("Employee is not currently on break")
    closed = _close_open_break(session, now)
    if not closed:
        # on_break without a recorded start: nothing to accumulate
        closed = {"break_end_time": now, "total_break_minutes": session.total_break_minutes}
    return {**closed, "status": SessionStatus.CHECKED_IN.value}


def apply(
    state: SessionState,
    transition: Transition,
    now: datetime,
    context: TransitionContext | None = None,
) -> dict[str, Any]:
    """Dispatch *transition* against *state*; ``now`` is read once by the caller."""
    context = context or TransitionContext()
    if transition is Transition.CHECK_IN:
        return check_in(state, now, context)
    if transition is Transition.CHECK_OUT:
        return check_out(state, now, context)
    if transition is Transition.BREAK_START:
        return start_break(state, now)
    if transition is Transition.BREAK_END:
        return end_break(state, now)
    raise ValueError(f"Unknown transition: {transition!r}")
