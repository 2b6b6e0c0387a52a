"""Pydantic schemas for tokens and the authenticated caller."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class CurrentUserRead(BaseModel):
    id: int
    email: str
    full_name: str | None
    is_active: bool
    created_at: datetime | None
    roles: list[str] = []
    employee_id: int | None = None

    model_config = {"from_attributes": True}
