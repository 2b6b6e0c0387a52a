"""
Attendance session & violation models, the mutable core of the engine.

One AttendanceSession per (employee, session_date); the unique constraint is
the source of truth for that invariant, not the application-level read.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import (JSON, Boolean, Column, Date, DateTime, ForeignKey,
                        Index, Integer, String, UniqueConstraint)
from sqlalchemy.orm import relationship

from app.db.base import Base


class SessionStatus(str, Enum):
    CHECKED_IN = "checked_in"
    ON_BREAK = "on_break"
    CHECKED_OUT = "checked_out"


class ViolationType(str, Enum):
    LATE_ARRIVAL = "late_arrival"
    EARLY_DEPARTURE = "early_departure"
    MISSED_CHECKOUT = "missed_checkout"
    LOCATION_VIOLATION = "location_violation"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    __table_args__ = (
        UniqueConstraint("employee_id", "session_date", name="uq_session_employee_date"),
        Index("ix_session_date_status", "session_date", "status"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    session_date: date = Column(Date, nullable=False)  # type: ignore[assignment]

    check_in_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    check_out_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    break_start_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    break_end_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    total_break_minutes: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    status: str = Column(String(20), nullable=False)  # type: ignore[assignment]

    location_data: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    device_info: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    ip_address: str | None = Column(String(45), nullable=True)  # type: ignore[assignment]
    is_manual_entry: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    approved_by: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    notes: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]

    # Bumped by every guarded write; compare-and-swap key.
    version: int = Column(Integer, nullable=False, default=1)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]

    violations = relationship("AttendanceViolation", back_populates="session")


class AttendanceViolation(Base):
    __tablename__ = "attendance_violations"
    __table_args__ = (
        Index("ix_violation_employee_created", "employee_id", "created_at"),
        Index("ix_violation_session_type", "session_id", "violation_type"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    session_id: int | None = Column(  # type: ignore[assignment]
        Integer, ForeignKey("attendance_sessions.id"), nullable=True
    )
    violation_type: str = Column(String(30), nullable=False)  # type: ignore[assignment]
    severity: str = Column(String(10), nullable=False, default=Severity.MEDIUM.value)  # type: ignore[assignment]
    description: str = Column(String(500), nullable=False)  # type: ignore[assignment]
    auto_detected: bool = Column(Boolean, nullable=False, default=True)  # type: ignore[assignment]
    resolved: bool = Column(Boolean, nullable=False, default=False, index=True)  # type: ignore[assignment]
    resolved_by: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    resolution_notes: str | None = Column(String(1000), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    resolved_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    session = relationship("AttendanceSession", back_populates="violations")
