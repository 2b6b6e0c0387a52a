"""
Access control gate for attendance data.

    super-admin / hr-admin  → everything
    manager                 → direct reports; list views (no target) read-only
    employee                → own record only
    anything else           → denied

Roles are additive: a caller holding several roles gets the union.
"""

from __future__ import annotations

import logging
from enum import Enum

from app.core.exceptions import AuthorizationError
from app.models.user import ADMIN_ROLES, ROLE_EMPLOYEE, ROLE_MANAGER
from app.services.directory import Directory

logger = logging.getLogger(__name__)


class AccessAction(str, Enum):
    READ = "read"
    WRITE = "write"


class AccessControlGate:
    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    async def _roles(self, caller_id: int) -> set[str]:
        if await self._directory.get_user(caller_id) is None:
            raise AuthorizationError("User not found")
        roles = set(await self._directory.active_roles(caller_id))
        if not roles:
            raise AuthorizationError("User has no active roles")
        return roles

    async def can_act_on_self(self, caller_id: int, target_employee_id: int) -> bool:
        """True when *target_employee_id* is the caller's own employee record."""
        own = await self._directory.employee_for_user(caller_id)
        return own is not None and own.id == target_employee_id

    async def is_admin(self, caller_id: int) -> bool:
        return bool(await self._roles(caller_id) & ADMIN_ROLES)

    async def can_access(
        self,
        caller_id: int,
        target_employee_id: int | None,
        action: AccessAction,
    ) -> bool:
        roles = await self._roles(caller_id)
        if roles & ADMIN_ROLES:
            return True

        own = await self._directory.employee_for_user(caller_id)

        if ROLE_MANAGER in roles:
            if target_employee_id is None:
                if action is AccessAction.READ:
                    return True
            elif own is not None and await self._directory.is_direct_report(own.id, target_employee_id):
                return True

        if ROLE_EMPLOYEE in roles and target_employee_id is not None:
            if own is not None and own.id == target_employee_id:
                return True

        return False

    async def require(
        self,
        caller_id: int,
        target_employee_id: int | None,
        action: AccessAction,
        message: str = "Insufficient permissions",
    ) -> None:
        if not await self.can_access(caller_id, target_employee_id, action):
            logger.warning(
                "Denied %s on employee %s for user %s",
                action.value,
                target_employee_id if target_employee_id is not None else "*",
                caller_id,
            )
            raise AuthorizationError(message)
