"""Pydantic schemas for attendance policies."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _check_time(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if not _TIME_RE.match(v):
        raise ValueError("Time must be HH:MM or HH:MM:SS (24h)")
    return v


class PolicyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    work_hours_start: str
    work_hours_end: str
    break_duration_minutes: int = Field(default=60, ge=0, le=24 * 60)
    late_arrival_threshold_minutes: int = Field(default=15, ge=0, le=24 * 60)
    overtime_threshold_minutes: int = Field(default=480, ge=0, le=24 * 60)
    require_location_verification: bool = False
    allow_early_checkin_minutes: int = Field(default=0, ge=0)
    allow_late_checkout_minutes: int = Field(default=0, ge=0)
    is_default: bool = False
    is_active: bool = True

    @field_validator("work_hours_start", "work_hours_end")
    @classmethod
    def _time(cls, v: str) -> str:
        return _check_time(v)  # type: ignore[return-value]


class PolicyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    work_hours_start: str | None = None
    work_hours_end: str | None = None
    break_duration_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    late_arrival_threshold_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    overtime_threshold_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    require_location_verification: bool | None = None
    allow_early_checkin_minutes: int | None = Field(default=None, ge=0)
    allow_late_checkout_minutes: int | None = Field(default=None, ge=0)
    is_default: bool | None = None
    is_active: bool | None = None

    @field_validator("work_hours_start", "work_hours_end")
    @classmethod
    def _time(cls, v: str | None) -> str | None:
        return _check_time(v)


class PolicyRead(BaseModel):
    id: int
    name: str
    work_hours_start: str
    work_hours_end: str
    break_duration_minutes: int
    late_arrival_threshold_minutes: int | None
    overtime_threshold_minutes: int
    require_location_verification: bool
    allow_early_checkin_minutes: int
    allow_late_checkout_minutes: int
    is_default: bool
    is_active: bool
    created_by: int | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}
