"""
Subscription API Routes

REST API endpoints for subscription management.
Plan purchases and plan changes go through POST /orders.
"""

import logging
from typing import Optional

from fastapi import APIRouter

from app.api.dependencies import CurrentUserDep, SubscriptionServiceDep
from app.domain.billing import (
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    SubscriptionRead,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/subscriptions/current", response_model=Optional[SubscriptionRead])
async def get_current_subscription(
    user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
):
    """Get the subscription currently granting access, or null."""
    return await service.current_subscription(user_id)


@router.post("/subscriptions/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
    request: Optional[CancelSubscriptionRequest] = None,
):
    """
    Cancel the current subscription.

    By default access continues until the end of the period; pass
    ``immediate: true`` to end it now.
    """
    return await service.cancel(user_id, request or CancelSubscriptionRequest())


@router.post("/subscriptions/reactivate", response_model=SubscriptionRead)
async def reactivate_subscription(
    user_id: CurrentUserDep,
    service: SubscriptionServiceDep,
):
    """Undo a pending end-of-period cancellation."""
    return await service.reactivate(user_id)
