"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from carequeue.api.v1 import appointments, doctors, health, queue, refunds, slots

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

api_router.include_router(
    doctors.router,
    prefix="/doctors",
    tags=["doctors"],
)

api_router.include_router(
    slots.router,
    prefix="/slots",
    tags=["slots"],
)

api_router.include_router(
    appointments.router,
    prefix="/appointments",
    tags=["appointments"],
)

api_router.include_router(
    queue.router,
    prefix="/queue",
    tags=["queue"],
)

api_router.include_router(
    refunds.router,
    prefix="/refunds",
    tags=["refunds"],
)
