"""
Order API Routes

Creates payable gateway orders, or applies changes that need no payment.
"""

import logging

from fastapi import APIRouter, Response, status

from app.api.dependencies import CurrentUserDep, OrderServiceDep
from app.domain.billing import CreateOrderRequest, OrderResponse


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    response: Response,
    user_id: CurrentUserDep,
    service: OrderServiceDep,
):
    """
    Create an order for a podcast, playlist, plan change or merchandise cart.

    Returns 201 with the gateway order descriptor when the client has to pay,
    or 200 when the change was applied directly (free plan, zero-cost upgrade,
    scheduled downgrade).
    """
    result = await service.create_order(user_id, request)
    if not result.requires_payment:
        response.status_code = status.HTTP_200_OK
    return result
