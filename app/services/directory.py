"""
Read-only lookups into HR-owned data: roles, employees, hierarchy.

These tables are maintained elsewhere in the platform; the attendance
engine consumes them without locking.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.employee import Employee, EmployeeHierarchy
from app.models.user import User, UserRole


class Directory:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_user(self, user_id: int) -> User | None:
        return await self._db.get(User, user_id)

    async def active_roles(self, user_id: int) -> list[str]:
        result = await self._db.execute(
            select(UserRole.role_name).where(
                UserRole.user_id == user_id,
                UserRole.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def get_active_employee(self, employee_id: int) -> Employee | None:
        result = await self._db.execute(
            select(Employee).where(
                Employee.id == employee_id,
                Employee.employee_status == "active",
                Employee.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def employee_for_user(self, user_id: int) -> Employee | None:
        result = await self._db.execute(select(Employee).where(Employee.user_id == user_id))
        return result.scalar_one_or_none()

    async def is_direct_report(self, manager_employee_id: int, target_employee_id: int) -> bool:
        result = await self._db.execute(
            select(EmployeeHierarchy.id).where(
                EmployeeHierarchy.manager_id == manager_employee_id,
                EmployeeHierarchy.employee_id == target_employee_id,
                EmployeeHierarchy.is_active.is_(True),
            )
        )
        return result.first() is not None

    async def direct_reports(self, manager_employee_id: int) -> set[int]:
        result = await self._db.execute(
            select(EmployeeHierarchy.employee_id).where(
                EmployeeHierarchy.manager_id == manager_employee_id,
                EmployeeHierarchy.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def count_active_employees(self) -> int:
        total = await self._db.scalar(
            select(func.count(Employee.id)).where(
                Employee.employee_status == "active",
                Employee.deleted_at.is_(None),
            )
        )
        return int(total or 0)
