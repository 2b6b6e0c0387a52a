"""Pydantic schemas for attendance sessions, violations and the dashboard."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

SessionStatusLiteral = Literal["checked_in", "on_break", "checked_out"]
ViolationTypeLiteral = Literal["late_arrival", "early_departure", "missed_checkout", "location_violation"]
SeverityLiteral = Literal["low", "medium", "high", "critical"]

# Primary keys are 32-bit integers
MAX_ID = 2_147_483_647


# ── Transitions ─────────────────────────────────────────────────────
class CheckInRequest(BaseModel):
    employee_id: int | None = Field(default=None, gt=0, le=MAX_ID)
    location_data: dict | None = None
    device_info: dict | None = None
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class CheckOutRequest(CheckInRequest):
    pass


class BreakRequest(BaseModel):
    employee_id: int | None = Field(default=None, gt=0, le=MAX_ID)


# ── Session ─────────────────────────────────────────────────────────
class SessionRead(BaseModel):
    id: int
    employee_id: int
    session_date: date
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    break_start_time: datetime | None = None
    break_end_time: datetime | None = None
    total_break_minutes: int = 0
    status: SessionStatusLiteral
    location_data: dict | None = None
    device_info: dict | None = None
    ip_address: str | None = None
    is_manual_entry: bool = False
    approved_by: int | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class SessionListResponse(BaseModel):
    items: list[SessionRead]
    pagination: Pagination


class CurrentStatusResponse(BaseModel):
    employee_id: int
    session_date: date
    session: SessionRead | None
    is_checked_in: bool
    is_on_break: bool
    can_check_in: bool
    can_check_out: bool
    can_start_break: bool
    can_end_break: bool


# ── Violations ──────────────────────────────────────────────────────
class ViolationRead(BaseModel):
    id: int
    employee_id: int
    session_id: int | None
    violation_type: ViolationTypeLiteral
    severity: SeverityLiteral
    description: str
    auto_detected: bool
    resolved: bool
    resolved_by: int | None = None
    resolution_notes: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None

    model_config = {"from_attributes": True}


class ViolationListResponse(BaseModel):
    items: list[ViolationRead]
    pagination: Pagination


class ResolveViolationRequest(BaseModel):
    resolution_notes: str = Field(max_length=1000)


# ── Dashboard ──────────────────────────────────────────────────────
class DashboardStats(BaseModel):
    total_sessions: int = 0
    checked_in: int = 0
    on_break: int = 0
    checked_out: int = 0
    not_checked_in: int = 0
    violations: int = 0


class LiveDashboardResponse(BaseModel):
    sessions: list[SessionRead]
    statistics: DashboardStats
    violations: list[ViolationRead]
    last_updated: datetime


# ── Health ─────────────────────────────────────────────────────────
class HealthResponse(BaseModel):
    db: bool
    redis: bool


# ── Generic ────────────────────────────────────────────────────────
class LogoutResponse(BaseModel):
    message: str
