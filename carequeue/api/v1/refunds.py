"""Refund policy endpoints."""

from fastapi import APIRouter

from carequeue.booking.policy import get_refund_policy_details

router = APIRouter()


@router.get("/policy")
async def get_refund_policy() -> dict:
    """Configured cancellation refund rules."""
    return get_refund_policy_details()
