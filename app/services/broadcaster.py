"""
Event broadcaster: fire-and-forget fan-out of session and violation changes.

``publish`` / ``publish_violation`` only serialise and enqueue; they never
block and never raise into the caller. A dispatcher task (started from the
app lifespan) drains the queue to in-process subscribers (WebSocket
observers) and, when enabled, to a Redis pub/sub channel. Delivery is
at-most-once: a full queue drops the event, a failed delivery is logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from app.core.config import settings
from app.core.timeutils import utcnow
from app.models.attendance import AttendanceSession, AttendanceViolation
from app.schemas.attendance import SessionRead, ViolationRead

logger = logging.getLogger(__name__)

ATTENDANCE_UPDATE = "attendance_update"
ATTENDANCE_VIOLATION = "attendance_violation"


class EventBroadcaster:
    def __init__(
        self,
        *,
        maxsize: int | None = None,
        redis_enabled: bool | None = None,
        redis_url: str | None = None,
        redis_channel: str | None = None,
        subscriber_maxsize: int = 100,
    ) -> None:
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.BROADCAST_QUEUE_SIZE
        )
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()
        self._subscriber_maxsize = subscriber_maxsize
        self._redis_enabled = settings.BROADCAST_REDIS_ENABLED if redis_enabled is None else redis_enabled
        self._redis_url = redis_url or settings.REDIS_URL
        self._redis_channel = redis_channel or settings.BROADCAST_REDIS_CHANNEL
        self._redis = None
        self._task: asyncio.Task | None = None

    # ── Producer side (called on the request path) ─────────────────
    def publish(self, employee_id: int, event_kind: str, session: AttendanceSession | SessionRead) -> None:
        try:
            snapshot = SessionRead.model_validate(session).model_dump(mode="json")
            now = utcnow().isoformat()
            self._enqueue(
                {
                    "type": ATTENDANCE_UPDATE,
                    "data": {
                        "employee_id": employee_id,
                        "event_type": event_kind,
                        "session": snapshot,
                        "timestamp": now,
                    },
                    "timestamp": now,
                }
            )
        except Exception:
            logger.exception("Failed to publish %s for employee %s", event_kind, employee_id)

    def publish_violation(self, violation: AttendanceViolation) -> None:
        try:
            payload = ViolationRead.model_validate(violation).model_dump(mode="json")
            now = utcnow().isoformat()
            self._enqueue(
                {
                    "type": ATTENDANCE_VIOLATION,
                    "data": {"violation": payload, "timestamp": now},
                    "timestamp": now,
                }
            )
        except Exception:
            logger.exception("Failed to publish violation %s", getattr(violation, "id", None))

    def _enqueue(self, message: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Broadcast queue full; dropping %s event", message["type"])

    def pending(self) -> int:
        return self._queue.qsize()

    # ── Observers ──────────────────────────────────────────────────
    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._subscriber_maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ── Dispatcher ─────────────────────────────────────────────────
    async def start(self) -> None:
        if self._task is not None:
            return
        if self._redis_enabled:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self._redis_url)
        self._task = asyncio.create_task(self._run(), name="attendance-broadcaster")
        logger.info("Attendance broadcaster started (redis=%s)", self._redis_enabled)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.dispatch_pending()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("Attendance broadcaster stopped")

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            await self._deliver(message)

    async def dispatch_pending(self) -> int:
        """Deliver everything currently queued; returns how many were sent."""
        sent = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            sent += 1
        return sent

    async def _deliver(self, message: dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Observer queue full; dropping %s event", message["type"])
        if self._redis is not None:
            try:
                await self._redis.publish(self._redis_channel, json.dumps(message))
            except Exception as e:
                logger.error("Redis publish failed: %s", e)


broadcaster = EventBroadcaster()
