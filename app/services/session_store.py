"""
Session store. Owns the single current-day session per employee.

The (employee_id, session_date) unique constraint and the version
compare-and-swap in ``upsert_guarded`` are what enforce the
at-most-one-session invariant; reading the state first is only an
optimisation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.models.attendance import AttendanceSession
from app.models.employee import Employee
from app.services.state_machine import ExistingSession, NoSession, SessionState, state_of

logger = logging.getLogger(__name__)


class StaleSessionError(ConflictError):
    """The guarded write lost a race: the row changed after it was read."""


@dataclass(frozen=True)
class SessionFilters:
    employee_id: int | None = None
    department: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    status: str | None = None


class SessionStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, employee_id: int, session_date: date, *, lock: bool = False) -> AttendanceSession | None:
        query = select(AttendanceSession).where(
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.session_date == session_date,
        )
        if lock:
            query = query.with_for_update()
        result = await self._db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def read_state(self, employee_id: int, session_date: date) -> SessionState:
        record = await self.get(employee_id, session_date, lock=True)
        return state_of(record, employee_id, session_date)

    async def upsert_guarded(
        self,
        expected: SessionState,
        values: dict[str, Any],
        now: datetime,
    ) -> AttendanceSession:
        """Write *values* only if the stored row still matches *expected*.

        ``NoSession`` inserts; the unique constraint rejects a second
        creator. ``ExistingSession`` updates by (id, version). Either loss
        raises ``StaleSessionError`` after rolling back.
        """
        if isinstance(expected, NoSession):
            return await self._insert(expected, values, now)
        return await self._update(expected, values, now)

    async def _insert(self, expected: NoSession, values: dict[str, Any], now: datetime) -> AttendanceSession:
        record = AttendanceSession(
            employee_id=expected.employee_id,
            session_date=expected.session_date,
            total_break_minutes=0,
            version=1,
            created_at=now,
            updated_at=now,
            **values,
        )
        self._db.add(record)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.info(
                "Concurrent session creation for employee %s on %s lost the race",
                expected.employee_id,
                expected.session_date,
            )
            raise StaleSessionError("Attendance session already exists for today")
        await self._db.refresh(record)
        return record

    async def _update(self, expected: ExistingSession, values: dict[str, Any], now: datetime) -> AttendanceSession:
        result = await self._db.execute(
            update(AttendanceSession)
            .where(
                AttendanceSession.id == expected.id,
                AttendanceSession.version == expected.version,
            )
            .values(**values, version=expected.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._db.rollback()
            logger.info(
                "Session %s changed since version %s; guarded write rejected",
                expected.id,
                expected.version,
            )
            raise StaleSessionError("Attendance session was modified concurrently")
        await self._db.commit()
        fresh = await self._db.execute(
            select(AttendanceSession)
            .where(AttendanceSession.id == expected.id)
            .execution_options(populate_existing=True)
        )
        return fresh.scalar_one()

    # ── Read projections ────────────────────────────────────────────
    async def search(
        self,
        filters: SessionFilters,
        *,
        offset: int,
        limit: int,
    ) -> tuple[list[AttendanceSession], int]:
        query = select(AttendanceSession)
        if filters.department:
            query = query.join(Employee, Employee.id == AttendanceSession.employee_id).where(
                Employee.department == filters.department
            )
        if filters.employee_id is not None:
            query = query.where(AttendanceSession.employee_id == filters.employee_id)
        if filters.date_from is not None:
            query = query.where(AttendanceSession.session_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.where(AttendanceSession.session_date <= filters.date_to)
        if filters.status:
            query = query.where(AttendanceSession.status == filters.status)

        total = await self._db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self._db.execute(
            query.order_by(AttendanceSession.session_date.desc(), AttendanceSession.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def for_date(self, session_date: date) -> list[AttendanceSession]:
        result = await self._db.execute(
            select(AttendanceSession)
            .where(AttendanceSession.session_date == session_date)
            .order_by(AttendanceSession.check_in_time.desc())
        )
        return list(result.scalars().all())
