"""
Refund Workflow

User refund requests and the admin actions that move them:

    pending --approve--> approved --process--> processed
       |                    |
       +------reject--------+--> rejected

``process`` calls the gateway; ``mark_processed`` records a refund made
outside it. A gateway failure leaves the request approved with a note so the
action can be retried.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import UUID

from app.config.settings import Settings
from app.domain.billing import (
    AdminInitiateRefundRequest,
    AdminRefundActionRequest,
    CreateRefundRequest,
    OPEN_REFUND_STATUSES,
    PaymentStatus,
    PurchaseStatus,
    RefType,
    RefundAction,
    RefundStatus,
)
from app.domain.proration import elapsed_days, to_minor_units, to_money, utcnow
from app.infrastructure.db.ledger import Ledger, LedgerStore
from app.infrastructure.db.models import RefundRequestModel
from app.infrastructure.exceptions import (
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    RefundWindowExpiredError,
    ValidationError,
)
from app.infrastructure.payments.gateway_client import GatewayClient
from app.infrastructure.services.settlement import append_note, apply_refund_cascade


logger = logging.getLogger(__name__)

_OPEN_REFUND_VALUES = [status.value for status in OPEN_REFUND_STATUSES]


class RefundService:
    """
    Refund requests and admin refund actions.

    Args:
        store: Ledger store
        gateway: Gateway client used by ``process``
        settings: Application settings (refund window)
        now_provider: Clock returning naive UTC
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: GatewayClient,
        settings: Settings,
        now_provider: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._gateway = gateway
        self._window_days = settings.refund_window_days
        self._now = now_provider

    # =========================================================================
    # User Requests
    # =========================================================================

    async def request_refund(self, user_id: str, request: CreateRefundRequest) -> RefundRequestModel:
        """
        Open a pending refund request for a subscription or a purchase.

        Raises:
            ValidationError: not exactly one of subscription_id / purchase_id
            NotFoundError: target missing or owned by someone else
            InvalidStateError: purchase not completed, subscription superseded,
                item already refunded, or a request is already open
            RefundWindowExpiredError: target is older than the refund window
            InvalidAmountError: nothing was paid for the target
        """
        if (request.subscription_id is None) == (request.purchase_id is None):
            raise ValidationError("Provide exactly one of subscription_id or purchase_id")

        now = self._now()
        async with self._store.transaction() as ledger:
            if request.subscription_id is not None:
                target = await ledger.subscriptions.get_for_user(request.subscription_id, user_id)
                if target is None:
                    raise NotFoundError("Subscription not found", table="subscriptions")
                latest = await ledger.subscriptions.get_latest_for_user(user_id)
                if latest is not None and latest.id != target.id:
                    raise InvalidStateError(
                        "This subscription was replaced by a newer one",
                        current_status=target.status,
                        details={"subscription_id": str(latest.id)},
                    )
                ref_type = RefType.SUBSCRIPTION
            else:
                target = await ledger.purchases.get_for_user(request.purchase_id, user_id)
                if target is None:
                    raise NotFoundError("Purchase not found", table="purchases")
                if target.status != PurchaseStatus.COMPLETED.value:
                    raise InvalidStateError(
                        "Only completed purchases can be refunded",
                        current_status=target.status,
                    )
                ref_type = RefType.PURCHASE

            existing = await ledger.refunds.get_open_for(
                subscription_id=request.subscription_id,
                purchase_id=request.purchase_id,
            )
            if existing is not None:
                raise InvalidStateError(
                    "A refund request is already open for this item",
                    current_status=existing.status,
                    details={"refund_id": str(existing.id)},
                )

            refunded_request = await ledger.refunds.get_processed_for(
                subscription_id=request.subscription_id,
                purchase_id=request.purchase_id,
            )
            refunded_payment = await ledger.payments.get_latest_for(
                ref_type, target.id, statuses=(PaymentStatus.REFUNDED,)
            )
            if refunded_request is not None or refunded_payment is not None:
                raise InvalidStateError(
                    "This item has already been refunded",
                    current_status=RefundStatus.PROCESSED.value,
                )

            days = elapsed_days(target.created_at, now)
            if days > self._window_days:
                logger.info(
                    f"Refund refused for {ref_type.value} {target.id}: {days} days elapsed"
                )
                raise RefundWindowExpiredError(days, self._window_days)

            payment = await ledger.payments.get_latest_for(ref_type, target.id)
            amount = to_money(payment.amount if payment else target.amount)
            if amount <= 0:
                raise InvalidAmountError("Nothing was paid for this item", amount=amount)

            refund = await ledger.refunds.add(
                RefundRequestModel(
                    user_id=user_id,
                    payment_history_id=payment.id if payment else None,
                    subscription_id=request.subscription_id,
                    purchase_id=request.purchase_id,
                    amount=amount,
                    currency=payment.currency if payment else target.currency,
                    reason=request.reason,
                    status=RefundStatus.PENDING.value,
                )
            )

        logger.info(f"Refund request {refund.id} opened by user {user_id} for {amount}")
        return refund

    # =========================================================================
    # Admin Actions
    # =========================================================================

    async def apply_action(self, admin_id: str, request: AdminRefundActionRequest) -> RefundRequestModel:
        """Dispatch an admin action to its handler."""
        if request.action == RefundAction.APPROVE:
            return await self.approve(admin_id, request.refund_id, request.admin_notes)
        if request.action == RefundAction.REJECT:
            return await self.reject(admin_id, request.refund_id, request.admin_notes)
        if request.action == RefundAction.PROCESS:
            return await self.process(admin_id, request.refund_id, request.admin_notes)
        return await self.mark_processed(
            admin_id,
            request.refund_id,
            request.admin_notes,
            gateway_refund_id=request.gateway_refund_id,
        )

    async def approve(
        self,
        admin_id: str,
        refund_id: UUID,
        notes: Optional[str] = None,
    ) -> RefundRequestModel:
        """pending -> approved. No money moves."""
        async with self._store.transaction() as ledger:
            refund = await self._get(ledger, refund_id)
            self._require_status(refund, (RefundStatus.PENDING.value,), "approve")
            refund.status = RefundStatus.APPROVED.value
            refund.processed_by = admin_id
            if notes:
                refund.admin_notes = append_note(refund.admin_notes, notes)
            ledger.session.add(refund)

        logger.info(f"Refund {refund_id} approved by {admin_id}")
        return refund

    async def reject(
        self,
        admin_id: str,
        refund_id: UUID,
        notes: Optional[str] = None,
    ) -> RefundRequestModel:
        """pending|approved -> rejected."""
        now = self._now()
        async with self._store.transaction() as ledger:
            refund = await self._get(ledger, refund_id)
            self._require_status(refund, _OPEN_REFUND_VALUES, "reject")
            refund.status = RefundStatus.REJECTED.value
            refund.processed_by = admin_id
            refund.processed_at = now
            if notes:
                refund.admin_notes = append_note(refund.admin_notes, notes)
            ledger.session.add(refund)

        logger.info(f"Refund {refund_id} rejected by {admin_id}")
        return refund

    async def process(
        self,
        admin_id: str,
        refund_id: UUID,
        notes: Optional[str] = None,
    ) -> RefundRequestModel:
        """
        Approve if needed, refund through the gateway, then cascade.

        The approval commits before the gateway call; the gateway is never
        called while a transaction is open.

        Raises:
            InvalidStateError: request not open, or no gateway payment to refund
            GatewayUnavailableError: gateway refused or timed out (request stays approved)
        """
        async with self._store.transaction() as ledger:
            refund = await self._get(ledger, refund_id, for_update=True)
            self._require_status(refund, _OPEN_REFUND_VALUES, "process")
            refund.status = RefundStatus.APPROVED.value
            refund.processed_by = admin_id
            if notes:
                refund.admin_notes = append_note(refund.admin_notes, notes)

            payment_id = await self._resolve_gateway_payment_id(ledger, refund)
            if payment_id is None:
                refund.admin_notes = append_note(
                    refund.admin_notes,
                    "No gateway payment id found; refund manually and mark processed",
                )
            ledger.session.add(refund)
            amount = refund.amount

        if payment_id is None:
            raise InvalidStateError(
                "No gateway payment found for this refund",
                current_status=RefundStatus.APPROVED.value,
                details={"manual_refund_required": True, "refund_id": str(refund_id)},
            )

        try:
            gateway_refund = await self._gateway.refund(
                payment_id,
                to_minor_units(amount),
                notes={"refund_request_id": str(refund_id), "processed_by": admin_id},
            )
        except GatewayUnavailableError as e:
            async with self._store.transaction() as ledger:
                refund = await self._get(ledger, refund_id)
                refund.admin_notes = append_note(refund.admin_notes, f"Refund failed: {e.message}")
                ledger.session.add(refund)
            logger.error(f"Gateway refund for request {refund_id} failed: {e.message}")
            raise

        now = self._now()
        async with self._store.transaction() as ledger:
            refund = await self._get(ledger, refund_id, for_update=True)
            rejected_meanwhile = refund.status == RefundStatus.REJECTED.value
            if rejected_meanwhile:
                # Terminal: the request stays rejected, the money movement is still recorded.
                refund.admin_notes = append_note(
                    refund.admin_notes,
                    f"Gateway refund {gateway_refund.id} went through after the request "
                    f"was rejected; reconcile with the user",
                )
            elif refund.status != RefundStatus.PROCESSED.value:
                # refund.processed may have landed while the gateway call was in flight.
                refund.status = RefundStatus.PROCESSED.value
                refund.processed_at = now
                refund.processed_by = admin_id
            refund.gateway_refund_id = refund.gateway_refund_id or gateway_refund.id
            ledger.session.add(refund)
            await self._cascade(ledger, refund, now)

        if rejected_meanwhile:
            logger.error(
                f"Refund {refund_id} was rejected while gateway refund {gateway_refund.id} "
                f"was in flight; request left rejected"
            )
        else:
            logger.info(f"Refund {refund_id} processed as gateway refund {gateway_refund.id}")
        return refund

    async def mark_processed(
        self,
        admin_id: str,
        refund_id: UUID,
        notes: Optional[str] = None,
        gateway_refund_id: Optional[str] = None,
    ) -> RefundRequestModel:
        """pending|approved -> processed for a refund made outside the gateway client."""
        now = self._now()
        async with self._store.transaction() as ledger:
            refund = await self._get(ledger, refund_id, for_update=True)
            self._require_status(refund, _OPEN_REFUND_VALUES, "mark processed")
            refund.status = RefundStatus.PROCESSED.value
            refund.processed_by = admin_id
            refund.processed_at = now
            if gateway_refund_id:
                refund.gateway_refund_id = gateway_refund_id
            refund.admin_notes = append_note(
                refund.admin_notes, notes or "Marked processed manually"
            )
            ledger.session.add(refund)
            await self._cascade(ledger, refund, now)

        logger.info(f"Refund {refund_id} marked processed by {admin_id}")
        return refund

    async def initiate(self, admin_id: str, request: AdminInitiateRefundRequest) -> RefundRequestModel:
        """
        Create an approved refund for any completed payment, optionally processing it.

        Raises:
            NotFoundError: no payment with that gateway id
            InvalidStateError: payment not completed, or a refund is already open
            InvalidAmountError: amount exceeds what was paid
        """
        async with self._store.transaction() as ledger:
            payment = await ledger.payments.get_by_gateway_payment_id(request.payment_id)
            if payment is None:
                raise NotFoundError("Payment not found", table="payment_history")
            if payment.status != PaymentStatus.COMPLETED.value:
                raise InvalidStateError(
                    "Only completed payments can be refunded",
                    current_status=payment.status,
                )
            if await ledger.refunds.get_open_for_payment(payment.id):
                raise InvalidStateError("A refund request is already open for this payment")

            amount = to_money(request.amount) if request.amount is not None else payment.amount
            if amount <= 0 or amount > payment.amount:
                raise InvalidAmountError(
                    f"Refund amount must be between 0.01 and {payment.amount}",
                    amount=amount,
                )

            refund = await ledger.refunds.add(
                RefundRequestModel(
                    user_id=payment.user_id,
                    payment_history_id=payment.id,
                    subscription_id=payment.ref_id if payment.ref_type == RefType.SUBSCRIPTION.value else None,
                    purchase_id=payment.ref_id if payment.ref_type == RefType.PURCHASE.value else None,
                    amount=amount,
                    currency=payment.currency,
                    reason=request.reason,
                    status=RefundStatus.APPROVED.value,
                    processed_by=admin_id,
                    admin_notes=f"Initiated by admin {admin_id}",
                )
            )

        logger.info(f"Admin {admin_id} initiated refund {refund.id} for payment {request.payment_id}")
        if request.process_immediately:
            return await self.process(admin_id, refund.id)
        return refund

    async def list_refunds(
        self,
        status: Optional[RefundStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[RefundRequestModel]:
        """List refund requests for the admin view."""
        async with self._store.transaction() as ledger:
            return await ledger.refunds.list_by_status(status, skip=skip, limit=limit)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    async def _get(ledger: Ledger, refund_id: UUID, for_update: bool = False) -> RefundRequestModel:
        refund = await ledger.refunds.get_by_id(refund_id, for_update=for_update)
        if refund is None:
            raise NotFoundError("Refund request not found", table="refund_requests")
        return refund

    @staticmethod
    def _require_status(refund: RefundRequestModel, allowed, action: str) -> None:
        if refund.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} a {refund.status} refund request",
                current_status=refund.status,
            )

    @staticmethod
    async def _resolve_gateway_payment_id(ledger: Ledger, refund: RefundRequestModel) -> Optional[str]:
        """PaymentHistory first, then the subscription or purchase row."""
        payment = await ledger.payments.get_by_id(refund.payment_history_id)
        if payment is not None and payment.gateway_payment_id:
            return payment.gateway_payment_id
        if refund.subscription_id is not None:
            subscription = await ledger.subscriptions.get_by_id(refund.subscription_id)
            if subscription is not None and subscription.gateway_payment_id:
                return subscription.gateway_payment_id
        if refund.purchase_id is not None:
            purchase = await ledger.purchases.get_by_id(refund.purchase_id)
            if purchase is not None and purchase.gateway_payment_id:
                return purchase.gateway_payment_id
        return None

    @staticmethod
    async def _cascade(ledger: Ledger, refund: RefundRequestModel, now: datetime) -> None:
        payment = await ledger.payments.get_by_id(refund.payment_history_id)
        await apply_refund_cascade(
            ledger,
            now,
            payment=payment,
            subscription_id=refund.subscription_id,
            purchase_id=refund.purchase_id,
        )
