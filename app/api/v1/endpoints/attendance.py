"""
Attendance session & violation endpoints.

- Transitions (check-in/out, breaks) are open to any authenticated user; the
  service decides whether the caller may act on the target employee.
- Reads are scoped the same way: self, direct reports, or everything for
  HR / super admins.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Path, Query, Request

from app.api.v1.deps import get_attendance_service, get_current_active_user
from app.core.timeutils import start_of_local_day
from app.models.user import User
from app.schemas.attendance import (MAX_ID, BreakRequest, CheckInRequest,
                                    CheckOutRequest, CurrentStatusResponse,
                                    DashboardStats, LiveDashboardResponse,
                                    ResolveViolationRequest,
                                    SessionListResponse, SessionRead,
                                    SessionStatusLiteral, SeverityLiteral,
                                    ViolationListResponse, ViolationRead,
                                    ViolationTypeLiteral)
from app.services.attendance import (AttendanceService, normalize_page,
                                     paginate)
from app.services.session_store import SessionFilters
from app.services.violations import ViolationFilters

router = APIRouter(prefix="/attendance", tags=["attendance"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ── Transitions ─────────────────────────────────────────────────────
@router.post("/check-in", response_model=SessionRead)
async def check_in(
    body: CheckInRequest,
    request: Request,
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> SessionRead:
    """Open (or reopen) today's session for an employee."""
    return await service.check_in(
        body.employee_id,
        user.id,
        location_data=body.location_data,
        device_info=body.device_info,
        notes=body.notes,
        ip_address=_client_ip(request),
    )


@router.post("/check-out", response_model=SessionRead)
async def check_out(
    body: CheckOutRequest,
    request: Request,
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> SessionRead:
    """Close today's session for an employee."""
    return await service.check_out(
        body.employee_id,
        user.id,
        location_data=body.location_data,
        device_info=body.device_info,
        notes=body.notes,
        ip_address=_client_ip(request),
    )


@router.post("/break-start", response_model=SessionRead)
async def break_start(
    body: BreakRequest,
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> SessionRead:
    return await service.start_break(body.employee_id, user.id)


@router.post("/break-end", response_model=SessionRead)
async def break_end(
    body: BreakRequest,
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> SessionRead:
    return await service.end_break(body.employee_id, user.id)


# ── Reads ───────────────────────────────────────────────────────────
@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    employee_id: int | None = Query(default=None, gt=0, le=MAX_ID),
    department: str | None = Query(default=None, max_length=100),
    date_from: date | None = None,
    date_to: date | None = None,
    status: SessionStatusLiteral | None = None,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> SessionListResponse:
    filters = SessionFilters(
        employee_id=employee_id,
        department=department,
        date_from=date_from,
        date_to=date_to,
        status=status,
    )
    page, limit = normalize_page(page, limit)
    sessions, total = await service.list_sessions(filters, user.id, page, limit)
    return SessionListResponse(items=sessions, pagination=paginate(total, page, limit))


@router.get("/violations", response_model=ViolationListResponse)
async def list_violations(
    employee_id: int | None = Query(default=None, gt=0, le=MAX_ID),
    department: str | None = Query(default=None, max_length=100),
    violation_type: ViolationTypeLiteral | None = None,
    severity: SeverityLiteral | None = None,
    resolved: bool | None = None,
    since: date | None = None,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> ViolationListResponse:
    filters = ViolationFilters(
        employee_id=employee_id,
        department=department,
        violation_type=violation_type,
        severity=severity,
        resolved=resolved,
        since=start_of_local_day(since) if since else None,
    )
    page, limit = normalize_page(page, limit)
    violations, total = await service.list_violations(filters, user.id, page, limit)
    return ViolationListResponse(items=violations, pagination=paginate(total, page, limit))


@router.post("/violations/{violation_id}/resolve", response_model=ViolationRead)
async def resolve_violation(
    body: ResolveViolationRequest,
    violation_id: int = Path(gt=0, le=MAX_ID),
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> ViolationRead:
    return await service.resolve_violation(violation_id, body.resolution_notes, user.id)


@router.get("/status/{employee_id}", response_model=CurrentStatusResponse)
async def current_status(
    employee_id: int = Path(gt=0, le=MAX_ID),
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> CurrentStatusResponse:
    """Today's session for an employee plus which transitions are available."""
    return await service.current_status(employee_id, user.id)


@router.get("/live-dashboard", response_model=LiveDashboardResponse)
async def live_dashboard(
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> LiveDashboardResponse:
    return await service.live_dashboard(user.id)


@router.get("/statistics", response_model=DashboardStats)
async def statistics(
    service: AttendanceService = Depends(get_attendance_service),
    user: User = Depends(get_current_active_user),
) -> DashboardStats:
    return await service.statistics(user.id)
