"""
FastAPI dependencies for the database session, the caller and the attendance service.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import ACCESS, decode_token, subject_as_user_id
from app.core.timeutils import Clock, utcnow
from app.db.session import async_session_factory
from app.models.user import ADMIN_ROLES, User
from app.services.attendance import AttendanceService
from app.services.broadcaster import EventBroadcaster, broadcaster
from app.services.directory import Directory

# We use auto_error=False so we can manually check for the cookie if header is missing
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Auth dependencies ───────────────────────────────────────────────
def token_from(header_token: str | None, cookie_token: str | None) -> str | None:
    # Priority: Header > Cookie ("Bearer <token>" or bare token)
    if header_token:
        return header_token
    if cookie_token:
        if cookie_token.startswith("Bearer "):
            return cookie_token.split(" ", 1)[1]
        return cookie_token
    return None


async def user_from_token(token: str | None, db: AsyncSession) -> User | None:
    user_id = subject_as_user_id(decode_token(token, ACCESS)) if token else None
    if user_id is None:
        return None
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),  # Read from HttpOnly Cookie
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode JWT from Header OR Cookie, look up user."""
    user = await user_from_token(token_from(token, access_token), db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Reject inactive accounts."""
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user account")
    return current_user


async def require_admin(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Only allow super-admin / hr-admin to proceed."""
    roles = set(await Directory(db).active_roles(current_user.id))
    if not roles & ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


# ── Attendance engine ───────────────────────────────────────────────
def get_clock() -> Clock:
    return utcnow


def get_broadcaster() -> EventBroadcaster:
    return broadcaster


async def get_attendance_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    events: EventBroadcaster = Depends(get_broadcaster),
) -> AttendanceService:
    return AttendanceService(db, broadcaster=events, clock=clock)
