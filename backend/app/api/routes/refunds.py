"""
Refund API Routes

User refund requests.
"""

from fastapi import APIRouter, status

from app.api.dependencies import CurrentUserDep, RefundServiceDep
from app.domain.billing import CreateRefundRequest, RefundRead


router = APIRouter()


@router.post("/refunds", response_model=RefundRead, status_code=status.HTTP_201_CREATED)
async def request_refund(
    request: CreateRefundRequest,
    user_id: CurrentUserDep,
    service: RefundServiceDep,
):
    """
    Request a refund for a subscription or a purchase.

    Requests are accepted up to the refund window (7 days by default) after
    the subscription or purchase was created.
    """
    return await service.request_refund(user_id, request)
