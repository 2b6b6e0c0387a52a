"""
Attendance policy model (admin-configurable work-hour rules).

Several policies may exist; the one flagged both ``is_default`` and
``is_active`` is what the violation detector evaluates against.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base


class AttendancePolicy(Base):
    __tablename__ = "attendance_policies"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(100), nullable=False)  # type: ignore[assignment]
    work_hours_start: str = Column(String(8), nullable=False, default="09:00")  # type: ignore[assignment]
    work_hours_end: str = Column(String(8), nullable=False, default="17:00")  # type: ignore[assignment]
    break_duration_minutes: int = Column(Integer, nullable=False, default=60)  # type: ignore[assignment]
    late_arrival_threshold_minutes: int | None = Column(Integer, nullable=True, default=15)  # type: ignore[assignment]
    overtime_threshold_minutes: int = Column(Integer, nullable=False, default=480)  # type: ignore[assignment]
    require_location_verification: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    allow_early_checkin_minutes: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    allow_late_checkout_minutes: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    is_default: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, nullable=False, default=True)  # type: ignore[assignment]
    created_by: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
