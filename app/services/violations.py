"""
Violation detection and violation records.

The detector runs right after a successful transition. It is fail-open:
no active policy means nothing to check, and any failure while evaluating
or persisting is logged and swallowed because the transition itself has
already been committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.timeutils import ensure_utc, round_minutes, wall_clock_on
from app.models.attendance import (AttendanceSession, AttendanceViolation,
                                   Severity, ViolationType)
from app.models.attendance_policy import AttendancePolicy
from app.models.employee import Employee
from app.services.policy import PolicyProvider
from app.services.state_machine import Transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViolationFilters:
    employee_id: int | None = None
    department: str | None = None
    violation_type: str | None = None
    severity: str | None = None
    resolved: bool | None = None
    since: datetime | None = None


def _whole_minutes(delta: timedelta) -> int:
    return max(1, round_minutes(delta))


def evaluate(
    session: AttendanceSession,
    transition: Transition,
    policy: AttendancePolicy,
    default_late_threshold: int = 15,
) -> list[dict[str, Any]]:
    """Return the violation rows *transition* produced against *policy*."""
    found: list[dict[str, Any]] = []

    if transition is Transition.CHECK_IN and session.check_in_time is not None:
        check_in = ensure_utc(session.check_in_time)
        threshold = policy.late_arrival_threshold_minutes
        if threshold is None:
            threshold = default_late_threshold
        deadline = wall_clock_on(session.session_date, policy.work_hours_start) + timedelta(
            minutes=threshold
        )
        if check_in > deadline:
            found.append(
                {
                    "violation_type": ViolationType.LATE_ARRIVAL.value,
                    "description": f"Employee arrived {_whole_minutes(check_in - deadline)} minutes late",
                }
            )

    if transition is Transition.CHECK_OUT and session.check_out_time is not None:
        check_out = ensure_utc(session.check_out_time)
        work_end = wall_clock_on(session.session_date, policy.work_hours_end)
        if check_out < work_end:
            found.append(
                {
                    "violation_type": ViolationType.EARLY_DEPARTURE.value,
                    "description": f"Employee left {_whole_minutes(work_end - check_out)} minutes early",
                }
            )

    for row in found:
        row.update(
            employee_id=session.employee_id,
            session_id=session.id,
            severity=Severity.MEDIUM.value,
            auto_detected=True,
        )
    return found


class ViolationStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_all(self, rows: list[dict[str, Any]], created_at: datetime) -> list[AttendanceViolation]:
        violations = [AttendanceViolation(**row, resolved=False, created_at=created_at) for row in rows]
        self._db.add_all(violations)
        await self._db.commit()
        for violation in violations:
            await self._db.refresh(violation)
        return violations

    async def discard(self) -> None:
        try:
            await self._db.rollback()
        except SQLAlchemyError as e:
            logger.error("Rollback after failed violation write also failed: %s", e)

    async def has_unresolved(self, session_id: int, violation_type: str) -> bool:
        result = await self._db.execute(
            select(AttendanceViolation.id).where(
                AttendanceViolation.session_id == session_id,
                AttendanceViolation.violation_type == violation_type,
                AttendanceViolation.resolved.is_(False),
            )
        )
        return result.first() is not None

    async def get(self, violation_id: int) -> AttendanceViolation | None:
        return await self._db.get(AttendanceViolation, violation_id)

    async def save(self, violation: AttendanceViolation) -> AttendanceViolation:
        await self._db.commit()
        await self._db.refresh(violation)
        return violation

    async def search(
        self,
        filters: ViolationFilters,
        *,
        offset: int,
        limit: int | None,
    ) -> tuple[list[AttendanceViolation], int]:
        query = select(AttendanceViolation)
        if filters.department:
            query = query.join(Employee, Employee.id == AttendanceViolation.employee_id).where(
                Employee.department == filters.department
            )
        if filters.employee_id is not None:
            query = query.where(AttendanceViolation.employee_id == filters.employee_id)
        if filters.violation_type:
            query = query.where(AttendanceViolation.violation_type == filters.violation_type)
        if filters.severity:
            query = query.where(AttendanceViolation.severity == filters.severity)
        if filters.resolved is not None:
            query = query.where(AttendanceViolation.resolved.is_(filters.resolved))
        if filters.since is not None:
            query = query.where(AttendanceViolation.created_at >= filters.since)

        total = await self._db.scalar(select(func.count()).select_from(query.subquery()))
        query = query.order_by(AttendanceViolation.created_at.desc(), AttendanceViolation.id.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self._db.execute(query)
        return list(result.scalars().all()), int(total or 0)


class ViolationDetector:
    def __init__(
        self,
        policies: PolicyProvider,
        store: ViolationStore,
        *,
        deduplicate: bool | None = None,
        default_late_threshold: int | None = None,
    ) -> None:
        self._policies = policies
        self._store = store
        self._deduplicate = settings.DEDUPLICATE_VIOLATIONS if deduplicate is None else deduplicate
        self._default_late_threshold = (
            settings.DEFAULT_LATE_THRESHOLD_MINUTES
            if default_late_threshold is None
            else default_late_threshold
        )

    async def run(
        self,
        session: AttendanceSession,
        transition: Transition,
        now: datetime,
    ) -> list[AttendanceViolation]:
        try:
            policy = await self._policies.get_active_policy()
            if policy is None:
                logger.debug("No active attendance policy; skipping violation check")
                return []

            rows = evaluate(session, transition, policy, self._default_late_threshold)
            if self._deduplicate:
                rows = [
                    row
                    for row in rows
                    if not await self._store.has_unresolved(session.id, row["violation_type"])
                ]
            if not rows:
                return []

            violations = await self._store.add_all(rows, created_at=now)
            for violation in violations:
                logger.info(
                    "Detected %s for employee %s (session %s)",
                    violation.violation_type,
                    violation.employee_id,
                    violation.session_id,
                )
            return violations
        except Exception:
            logger.exception(
                "Violation check failed for session %s after %s",
                getattr(session, "id", None),
                transition.value,
            )
            await self._store.discard()
            return []
