"""
Payment API Routes

Client-side confirmation of a completed checkout.
"""

from fastapi import APIRouter

from app.api.dependencies import CurrentUserDep, PaymentVerificationServiceDep
from app.domain.billing import VerifyPaymentRequest, VerifyPaymentResponse


router = APIRouter()


@router.post("/payments/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    user_id: CurrentUserDep,
    service: PaymentVerificationServiceDep,
):
    """
    Verify the checkout signature and grant what was paid for.

    Replaying the same confirmation returns success with already_processed=true.
    """
    return await service.verify(user_id, request)
