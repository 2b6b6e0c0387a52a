"""
Health check and the live attendance stream.

The WebSocket stream relays the events the broadcaster dispatches. Only
HR / super admins and managers may observe: admins see every employee,
managers see themselves and the direct reports they had when they
connected. The access token travels in the ``token`` query parameter (or
the ``access_token`` cookie).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import (APIRouter, Cookie, Depends, Query, WebSocket,
                     WebSocketDisconnect, status)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import (get_broadcaster, get_db, token_from,
                             user_from_token)
from app.core.config import settings
from app.core.timeutils import utcnow
from app.models.user import ADMIN_ROLES, ROLE_MANAGER
from app.schemas.attendance import HealthResponse
from app.services.broadcaster import EventBroadcaster
from app.services.directory import Directory

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)

OBSERVER_ROLES = ADMIN_ROLES | {ROLE_MANAGER}


# ── Health ──────────────────────────────────────────────────────────
@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Public health check — DB and Redis connectivity."""
    result = HealthResponse(db=False, redis=False)

    try:
        await db.execute(select(1))
        result.db = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)

    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        result.redis = True
    except Exception as e:
        logger.error("Health check Redis failure: %s", e)

    return result


# ── Live stream ─────────────────────────────────────────────────────
def event_employee_id(message: dict[str, Any]) -> int | None:
    data = message.get("data") or {}
    if "violation" in data:
        return data["violation"].get("employee_id")
    return data.get("employee_id")


def visible_to(message: dict[str, Any], scope: frozenset[int] | None) -> bool:
    """``scope`` of None means every employee."""
    return scope is None or event_employee_id(message) in scope


async def observer_scope(db: AsyncSession, user_id: int, roles: set[str]) -> frozenset[int] | None:
    if roles & ADMIN_ROLES:
        return None
    directory = Directory(db)
    employee = await directory.employee_for_user(user_id)
    if employee is None:
        return frozenset()
    return frozenset(await directory.direct_reports(employee.id) | {employee.id})


async def _pump(websocket: WebSocket, queue: asyncio.Queue, scope: frozenset[int] | None) -> None:
    while True:
        message = await queue.get()
        if visible_to(message, scope):
            await websocket.send_json(message)


async def _listen(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive_json()
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json(
                {"type": "notification", "data": {"type": "pong"}, "timestamp": utcnow().isoformat()}
            )


@router.websocket("/ws/attendance")
async def attendance_stream(
    websocket: WebSocket,
    token: str | None = Query(default=None),
    access_token: str | None = Cookie(default=None),
    db: AsyncSession = Depends(get_db),
    events: EventBroadcaster = Depends(get_broadcaster),
) -> None:
    user = await user_from_token(token_from(token, access_token), db)
    if user is None or not user.is_active:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return
    roles = set(await Directory(db).active_roles(user.id))
    if not roles & OBSERVER_ROLES:
        logger.warning("User %s refused live attendance stream (roles=%s)", user.id, sorted(roles))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Insufficient permissions")
        return
    scope = await observer_scope(db, user.id, roles)
    # Nothing else is read from the db for the lifetime of the socket.
    await db.close()

    await websocket.accept()
    queue = events.subscribe()
    logger.info("User %s joined live attendance stream (%d observers)", user.id, events.subscriber_count)
    tasks = [
        asyncio.create_task(_pump(websocket, queue, scope)),
        asyncio.create_task(_listen(websocket)),
    ]
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Live attendance stream for user %s failed: %s", user.id, exc)
    finally:
        for task in tasks:
            task.cancel()
        events.unsubscribe(queue)
        logger.info("User %s left live attendance stream", user.id)
