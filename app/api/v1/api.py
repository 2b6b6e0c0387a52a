"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import attendance, auth, policies, system

api_router = APIRouter()

# Auth (login, refresh, profile)
api_router.include_router(auth.router)

# Policies first so /attendance/policies is not shadowed by attendance routes
api_router.include_router(policies.router)

# Sessions, breaks, violations, dashboard
api_router.include_router(attendance.router)

# Health, live stream
api_router.include_router(system.router)
