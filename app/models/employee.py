"""
Employee & hierarchy models.

Employee records are owned by the HR side of the platform; the attendance
engine only reads them (active lookup, manager → direct-report edges).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, UniqueConstraint)

from app.db.base import Base


class Employee(Base):
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int | None = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id"), unique=True, nullable=True
    )
    full_name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    employee_number: str | None = Column(String(50), unique=True, nullable=True)  # type: ignore[assignment]
    department: str | None = Column(String(100), nullable=True, index=True)  # type: ignore[assignment]
    employee_status: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="active",
        server_default="active",
    )  # active | inactive | terminated
    deleted_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )


class EmployeeHierarchy(Base):
    """Manager → direct-report edge."""

    __tablename__ = "employee_hierarchy"
    __table_args__ = (
        UniqueConstraint("employee_id", "manager_id", name="uq_hierarchy_edge"),
        Index("ix_hierarchy_manager", "manager_id"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    manager_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
