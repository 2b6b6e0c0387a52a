"""
Attendance policy management (admin only).

Exactly one active default policy drives violation detection; marking a
policy as default clears the flag on every other policy.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_db, require_admin
from app.models.attendance_policy import AttendancePolicy
from app.models.user import User
from app.schemas.attendance import MAX_ID
from app.schemas.policy import PolicyCreate, PolicyRead, PolicyUpdate
from app.services.policy import PolicyProvider

router = APIRouter(prefix="/attendance/policies", tags=["attendance-policies"])


@router.get("", response_model=list[PolicyRead])
async def list_policies(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> list[AttendancePolicy]:
    return await PolicyProvider(db).list_policies()


@router.get("/active", response_model=PolicyRead | None)
async def active_policy(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> AttendancePolicy | None:
    """The policy currently used for violation detection, if any."""
    return await PolicyProvider(db).get_active_policy()


@router.get("/{policy_id}", response_model=PolicyRead)
async def get_policy(
    policy_id: int = Path(gt=0, le=MAX_ID),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> AttendancePolicy:
    return await PolicyProvider(db).get_policy(policy_id)


@router.post("", response_model=PolicyRead, status_code=201)
async def create_policy(
    body: PolicyCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> AttendancePolicy:
    return await PolicyProvider(db).create_policy(body.model_dump(), created_by=admin.id)


@router.put("/{policy_id}", response_model=PolicyRead)
async def update_policy(
    body: PolicyUpdate,
    policy_id: int = Path(gt=0, le=MAX_ID),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> AttendancePolicy:
    return await PolicyProvider(db).update_policy(policy_id, body.model_dump(exclude_unset=True, exclude_none=True))
