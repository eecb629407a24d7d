"""
Payment Verifier

Verifies client-submitted payment confirmations and applies them.

Order of checks:
1. Idempotency: an already-completed payment is reported as success
2. Signature: HMAC-SHA256(key_secret, "order_id|payment_id"), constant time
3. Settlement: the same transition the webhook reconciler applies

A signature mismatch marks the pending rows failed and is never retried.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from app.domain.billing import (
    OrderIntent,
    PaymentStatus,
    PaymentType,
    RefType,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.domain.proration import utcnow
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.exceptions import (
    InvalidSignatureError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.infrastructure.payments.gateway_client import GatewayClient
from app.infrastructure.services.settlement import (
    fail_payment,
    schedule_downgrade,
    settle_payment,
)


logger = logging.getLogger(__name__)

_INTENT_BY_PAYMENT_TYPE = {
    PaymentType.PURCHASE.value: OrderIntent.PURCHASE,
    PaymentType.PLAYLIST.value: OrderIntent.PLAYLIST,
    PaymentType.SUBSCRIPTION.value: OrderIntent.SUBSCRIPTION_NEW,
    PaymentType.UPGRADE.value: OrderIntent.SUBSCRIPTION_UPGRADE,
    PaymentType.MERCH.value: OrderIntent.MERCH,
}


class PaymentVerificationService:
    """
    Client-path payment verification.

    Args:
        store: Ledger store
        gateway: Gateway client (holds the key secret)
        now_provider: Clock returning naive UTC
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: GatewayClient,
        now_provider: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._gateway = gateway
        self._now = now_provider

    async def verify(self, user_id: str, request: VerifyPaymentRequest) -> VerifyPaymentResponse:
        """
        Verify a checkout confirmation and grant what was paid for.

        Raises:
            NotFoundError: no order of this user with that id
            InvalidStateError: the payment already failed or was refunded
            InvalidSignatureError: signature mismatch (rows marked failed)
        """
        if request.intent == OrderIntent.SUBSCRIPTION_DOWNGRADE:
            return await self._verify_downgrade(user_id, request)

        now = self._now()
        signature_valid: Optional[bool] = None

        async with self._store.transaction() as ledger:
            payment = await ledger.payments.get_by_gateway_order_id(
                request.order_id, for_update=True
            )
            if payment is None or payment.user_id != user_id:
                raise NotFoundError("Order not found", table="payment_history")

            if payment.status == PaymentStatus.COMPLETED.value:
                logger.info(f"Order {request.order_id} already verified; returning stored result")
                return self._response(payment, already_processed=True)

            if payment.status in (PaymentStatus.FAILED.value, PaymentStatus.REFUNDED.value):
                raise InvalidStateError(
                    f"Payment for order {request.order_id} is {payment.status}",
                    current_status=payment.status,
                )

            signature_valid = self._gateway.verify_payment_signature(
                request.order_id, request.payment_id, request.signature
            )
            if not signature_valid:
                await fail_payment(
                    ledger,
                    payment,
                    reason="signature_mismatch",
                    gateway_payment_id=request.payment_id,
                )
            else:
                result = await settle_payment(
                    ledger,
                    payment,
                    gateway_payment_id=request.payment_id,
                    now=now,
                    gateway_signature=request.signature,
                )
                response = self._response(result.payment, already_processed=not result.applied)

        if not signature_valid:
            logger.warning(
                f"Signature mismatch for order {request.order_id} from user {user_id}"
            )
            raise InvalidSignatureError(source="payment")

        logger.info(f"Verified payment {request.payment_id} for order {request.order_id}")
        return response

    async def _verify_downgrade(
        self,
        user_id: str,
        request: VerifyPaymentRequest,
    ) -> VerifyPaymentResponse:
        if not self._gateway.verify_payment_signature(
            request.order_id, request.payment_id, request.signature
        ):
            logger.warning(f"Signature mismatch on downgrade confirmation from user {user_id}")
            raise InvalidSignatureError(source="payment")
        if request.target_id is None:
            raise ValidationError("target_id is required for downgrade verification")

        now = self._now()
        async with self._store.transaction() as ledger:
            current = await ledger.subscriptions.get_current(user_id)
            if current is None:
                raise InvalidStateError("No active subscription to downgrade")
            plan = await ledger.plans.get_active(request.target_id)
            if plan is None:
                raise NotFoundError("Pricing plan not found", table="pricing_plans")
            scheduled = await schedule_downgrade(ledger, current, plan, now)

        return VerifyPaymentResponse(
            already_processed=not scheduled,
            intent=OrderIntent.SUBSCRIPTION_DOWNGRADE,
            payment_status=PaymentStatus.COMPLETED,
            entity_type=RefType.SUBSCRIPTION,
            entity_id=str(current.id),
            message="Downgrade scheduled for the end of the current period",
        )

    @staticmethod
    def _response(payment, already_processed: bool) -> VerifyPaymentResponse:
        if (payment.payment_metadata or {}).get("duplicate_purchase"):
            message = "Item already owned; this payment will be refunded"
        elif already_processed:
            message = "Payment already verified"
        else:
            message = "Payment verified"
        return VerifyPaymentResponse(
            already_processed=already_processed,
            intent=_INTENT_BY_PAYMENT_TYPE.get(payment.type),
            payment_status=PaymentStatus(payment.status),
            entity_type=RefType(payment.ref_type) if payment.ref_type else None,
            entity_id=str(payment.ref_id) if payment.ref_id else None,
            message=message,
        )
