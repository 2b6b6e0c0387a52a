"""
Policy provider: the active attendance policy, plus its admin CRUD.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.core.timeutils import parse_wall_clock
from app.models.attendance_policy import AttendancePolicy

logger = logging.getLogger(__name__)


def validate_work_hours(start: str, end: str) -> None:
    try:
        start_t = parse_wall_clock(start)
        end_t = parse_wall_clock(end)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if end_t <= start_t:
        raise ValidationError("work_hours_end must be after work_hours_start")


class PolicyProvider:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_active_policy(self) -> AttendancePolicy | None:
        result = await self._db.execute(
            select(AttendancePolicy)
            .where(
                AttendancePolicy.is_default.is_(True),
                AttendancePolicy.is_active.is_(True),
            )
            .order_by(AttendancePolicy.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_policies(self) -> list[AttendancePolicy]:
        result = await self._db.execute(
            select(AttendancePolicy).order_by(AttendancePolicy.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_policy(self, policy_id: int) -> AttendancePolicy:
        policy = await self._db.get(AttendancePolicy, policy_id)
        if policy is None:
            raise NotFoundError("Attendance policy not found")
        return policy

    async def create_policy(self, data: dict[str, Any], created_by: int) -> AttendancePolicy:
        validate_work_hours(data["work_hours_start"], data["work_hours_end"])
        if data.get("is_default"):
            await self._clear_default()
        policy = AttendancePolicy(**data, created_by=created_by)
        self._db.add(policy)
        await self._db.commit()
        await self._db.refresh(policy)
        logger.info("Created attendance policy %s (%s)", policy.id, policy.name)
        return policy

    async def update_policy(self, policy_id: int, changes: dict[str, Any]) -> AttendancePolicy:
        policy = await self.get_policy(policy_id)
        validate_work_hours(
            changes.get("work_hours_start", policy.work_hours_start),
            changes.get("work_hours_end", policy.work_hours_end),
        )
        if changes.get("is_default"):
            await self._clear_default(exclude_id=policy_id)
        for field, value in changes.items():
            setattr(policy, field, value)
        await self._db.commit()
        await self._db.refresh(policy)
        logger.info("Attendance policy %s updated: %s", policy_id, changes)
        return policy

    async def _clear_default(self, exclude_id: int | None = None) -> None:
        stmt = update(AttendancePolicy).where(AttendancePolicy.is_default.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(AttendancePolicy.id != exclude_id)
        await self._db.execute(stmt.values(is_default=False))
