"""
Attendance service, the entry point for every attendance operation.

Each transition follows the same path:

    gate → read today's state → state machine → guarded write
         → violation detector (fail-open) → broadcaster (fire-and-forget)

``now`` is read from the clock exactly once per operation and threaded
through every step.
"""

from __future__ import annotations

import logging
import math
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (AttendanceError, ConflictError, NotFoundError,
                                 ServiceError, ValidationError)
from app.core.timeutils import Clock, local_date, start_of_local_day, utcnow
from app.models.attendance import SessionStatus
from app.schemas.attendance import (CurrentStatusResponse, DashboardStats,
                                    LiveDashboardResponse, Pagination,
                                    SessionRead, ViolationRead)
from app.services import state_machine
from app.services.access import AccessAction, AccessControlGate
from app.services.broadcaster import EventBroadcaster
from app.services.broadcaster import broadcaster as default_broadcaster
from app.services.directory import Directory
from app.services.policy import PolicyProvider
from app.services.session_store import (SessionFilters, SessionStore,
                                        StaleSessionError)
from app.services.state_machine import Transition, TransitionContext
from app.services.violations import (ViolationDetector, ViolationFilters,
                                     ViolationStore)

logger = logging.getLogger(__name__)

_LABELS = {
    Transition.CHECK_IN: "check in",
    Transition.CHECK_OUT: "check out",
    Transition.BREAK_START: "start a break for",
    Transition.BREAK_END: "end a break for",
}


def normalize_page(page: int | None, limit: int | None) -> tuple[int, int]:
    page = page or 1
    if page < 1:
        raise ValidationError("page must be 1 or greater")
    limit = limit or settings.DEFAULT_PAGE_SIZE
    if limit < 1:
        raise ValidationError("limit must be 1 or greater")
    return page, min(limit, settings.MAX_PAGE_SIZE)


def paginate(total: int, page: int, limit: int) -> Pagination:
    return Pagination(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))


class AttendanceService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        broadcaster: EventBroadcaster | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._db = db
        self._directory = Directory(db)
        self._gate = AccessControlGate(self._directory)
        self._sessions = SessionStore(db)
        self._violations = ViolationStore(db)
        self._detector = ViolationDetector(PolicyProvider(db), self._violations)
        self._broadcaster = broadcaster or default_broadcaster
        self._clock = clock or utcnow

    # ── Transitions ────────────────────────────────────────────────
    async def check_in(
        self,
        employee_id: int | None,
        caller_id: int,
        *,
        location_data: dict | None = None,
        device_info: dict | None = None,
        notes: str | None = None,
        ip_address: str | None = None,
    ) -> SessionRead:
        context = TransitionContext(location_data, device_info, ip_address, notes)
        return await self._transition(Transition.CHECK_IN, employee_id, caller_id, context)

    async def check_out(
        self,
        employee_id: int | None,
        caller_id: int,
        *,
        location_data: dict | None = None,
        device_info: dict | None = None,
        notes: str | None = None,
        ip_address: str | None = None,
    ) -> SessionRead:
        context = TransitionContext(location_data, device_info, ip_address, notes)
        return await self._transition(Transition.CHECK_OUT, employee_id, caller_id, context)

    async def start_break(self, employee_id: int | None, caller_id: int) -> SessionRead:
        return await self._transition(Transition.BREAK_START, employee_id, caller_id)

    async def end_break(self, employee_id: int | None, caller_id: int) -> SessionRead:
        return await self._transition(Transition.BREAK_END, employee_id, caller_id)

    async def _authorize_transition(self, transition: Transition, employee_id: int, caller_id: int) -> None:
        # Authorization is settled before existence so an out-of-scope caller
        # cannot probe which employee ids exist.
        if not await self._gate.can_act_on_self(caller_id, employee_id):
            await self._gate.require(
                caller_id,
                employee_id,
                AccessAction.WRITE,
                f"Insufficient permissions to {_LABELS[transition]} this employee",
            )
        if await self._directory.get_active_employee(employee_id) is None:
            raise NotFoundError("Employee not found or inactive")

    async def _transition(
        self,
        transition: Transition,
        employee_id: int | None,
        caller_id: int,
        context: TransitionContext | None = None,
    ) -> SessionRead:
        if employee_id is None:
            raise ValidationError("Employee ID is required")

        now = self._clock()
        logger.info("Processing %s for employee %s (caller %s)", transition.value, employee_id, caller_id)
        try:
            await self._authorize_transition(transition, employee_id, caller_id)
            session_date = local_date(now)
            state = await self._sessions.read_state(employee_id, session_date)
            values = state_machine.apply(state, transition, now, context)
            try:
                record = await self._sessions.upsert_guarded(state, values, now)
            except StaleSessionError:
                # Lost a race: answer exactly as if the winner's write had been read first.
                fresh = await self._sessions.read_state(employee_id, session_date)
                state_machine.apply(fresh, transition, now, context)
                raise ConflictError("Attendance session was modified concurrently; please retry")
            snapshot = SessionRead.model_validate(record)
        except AttendanceError:
            await self._db.rollback()
            raise
        except Exception:
            logger.exception("%s failed for employee %s", transition.value, employee_id)
            await self._db.rollback()
            raise ServiceError(f"Failed to {_LABELS[transition]} employee")

        logger.info("%s succeeded for employee %s (session %s)", transition.value, employee_id, snapshot.id)

        violations = await self._detector.run(record, transition, now)
        self._broadcaster.publish(employee_id, transition.value, snapshot)
        for violation in violations:
            self._broadcaster.publish_violation(violation)
        return snapshot

    # ── Reads ──────────────────────────────────────────────────────
    async def list_sessions(
        self,
        filters: SessionFilters,
        caller_id: int,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[SessionRead], int]:
        page, limit = normalize_page(page, limit)
        await self._gate.require(
            caller_id,
            filters.employee_id,
            AccessAction.READ,
            "Insufficient permissions to view attendance data",
        )
        try:
            records, total = await self._sessions.search(filters, offset=(page - 1) * limit, limit=limit)
        except Exception:
            logger.exception("Failed to list attendance sessions with %s", filters)
            raise ServiceError("Failed to get attendance sessions")
        return [SessionRead.model_validate(r) for r in records], total

    async def list_violations(
        self,
        filters: ViolationFilters,
        caller_id: int,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[ViolationRead], int]:
        page, limit = normalize_page(page, limit)
        await self._gate.require(
            caller_id,
            filters.employee_id,
            AccessAction.READ,
            "Insufficient permissions to view attendance violations",
        )
        try:
            records, total = await self._violations.search(filters, offset=(page - 1) * limit, limit=limit)
        except Exception:
            logger.exception("Failed to list attendance violations with %s", filters)
            raise ServiceError("Failed to get attendance violations")
        return [ViolationRead.model_validate(r) for r in records], total

    async def resolve_violation(self, violation_id: int, resolution_notes: str | None, caller_id: int) -> ViolationRead:
        await self._gate.require(
            caller_id,
            None,
            AccessAction.WRITE,
            "Insufficient permissions to resolve attendance violations",
        )
        notes = (resolution_notes or "").strip()
        if not notes:
            raise ValidationError("Resolution notes are required")

        try:
            violation = await self._violations.get(violation_id)
            if violation is None:
                raise NotFoundError("Attendance violation not found")
            if violation.resolved:
                raise ConflictError("Attendance violation is already resolved")

            violation.resolved = True
            violation.resolved_by = caller_id
            violation.resolution_notes = notes
            violation.resolved_at = self._clock()
            violation = await self._violations.save(violation)
        except AttendanceError:
            raise
        except Exception:
            logger.exception("Failed to resolve violation %s", violation_id)
            await self._db.rollback()
            raise ServiceError("Failed to resolve violation")

        logger.info("Violation %s resolved by user %s", violation_id, caller_id)
        return ViolationRead.model_validate(violation)

    async def current_status(self, employee_id: int, caller_id: int) -> CurrentStatusResponse:
        await self._gate.require(
            caller_id,
            employee_id,
            AccessAction.READ,
            "Insufficient permissions to view attendance data",
        )
        today = local_date(self._clock())
        record = await self._sessions.get(employee_id, today)
        session = SessionRead.model_validate(record) if record is not None else None
        status = SessionStatus(session.status) if session else None
        return CurrentStatusResponse(
            employee_id=employee_id,
            session_date=today,
            session=session,
            is_checked_in=status in (SessionStatus.CHECKED_IN, SessionStatus.ON_BREAK),
            is_on_break=status is SessionStatus.ON_BREAK,
            can_check_in=status is None or status is SessionStatus.CHECKED_OUT,
            can_check_out=status in (SessionStatus.CHECKED_IN, SessionStatus.ON_BREAK),
            can_start_break=status is SessionStatus.CHECKED_IN,
            can_end_break=status is SessionStatus.ON_BREAK,
        )

    async def live_dashboard(self, caller_id: int) -> LiveDashboardResponse:
        await self._gate.require(
            caller_id,
            None,
            AccessAction.READ,
            "Insufficient permissions to view attendance dashboard",
        )
        now = self._clock()
        today: date = local_date(now)
        try:
            records = await self._sessions.for_date(today)
            violations, violation_count = await self._violations.search(
                ViolationFilters(resolved=False, since=start_of_local_day(today)),
                offset=0,
                limit=None,
            )
            active_employees = await self._directory.count_active_employees()
        except Exception:
            logger.exception("Failed to build live attendance dashboard for %s", today)
            raise ServiceError("Failed to get live attendance dashboard")

        sessions = [SessionRead.model_validate(r) for r in records]
        stats = DashboardStats(total_sessions=len(sessions), violations=violation_count)
        for session in sessions:
            if session.status == SessionStatus.CHECKED_IN.value:
                stats.checked_in += 1
            elif session.status == SessionStatus.ON_BREAK.value:
                stats.on_break += 1
            elif session.status == SessionStatus.CHECKED_OUT.value:
                stats.checked_out += 1
        stats.not_checked_in = max(0, active_employees - len(sessions))

        return LiveDashboardResponse(
            sessions=sessions,
            statistics=stats,
            violations=[ViolationRead.model_validate(v) for v in violations],
            last_updated=now,
        )

    async def statistics(self, caller_id: int) -> DashboardStats:
        return (await self.live_dashboard(caller_id)).statistics
