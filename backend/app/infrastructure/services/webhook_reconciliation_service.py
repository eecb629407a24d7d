"""
Webhook Reconciler

Applies signature-verified gateway events to the ledger.

Every handler looks its row up by gateway id and moves it only from a legal
predecessor status, so redelivered and out-of-order events are harmless.
Handlers never create rows for unknown orders or subscriptions; the one
exception is refund.created, which records gateway-initiated refunds.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional

from app.domain.billing import (
    OPEN_REFUND_STATUSES,
    PaymentStatus,
    PaymentType,
    RefType,
    RefundStatus,
    SubscriptionStatus,
    WebhookOutcome,
)
from app.domain.gateway_events import (
    GatewayEvent,
    GatewayEventType,
    OBSERVED_ONLY_EVENTS,
)
from app.domain.proration import advance_period, from_minor_units, from_timestamp, utcnow
from app.infrastructure.db.ledger import Ledger, LedgerStore
from app.infrastructure.db.models import (
    PaymentHistoryModel,
    RefundRequestModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import InvalidSignatureError
from app.infrastructure.payments.gateway_client import GatewayClient
from app.infrastructure.services.settlement import (
    append_note,
    apply_refund_cascade,
    fail_payment,
    merge_metadata,
    record_payment,
    settle_payment,
)


logger = logging.getLogger(__name__)

EventHandler = Callable[[Ledger, GatewayEvent, datetime], Awaitable[WebhookOutcome]]

_OPEN_REFUND_VALUES = [status.value for status in OPEN_REFUND_STATUSES]
_PAUSABLE = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PENDING_DOWNGRADE.value)
_LIVE = _PAUSABLE + (SubscriptionStatus.PAUSED.value,)


class WebhookReconciliationService:
    """
    Gateway-path reconciliation.

    Args:
        store: Ledger store
        gateway: Gateway client (holds the webhook secret)
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
        self._handlers: Dict[GatewayEventType, EventHandler] = {
            GatewayEventType.PAYMENT_AUTHORIZED: self._on_payment_authorized,
            GatewayEventType.PAYMENT_CAPTURED: self._on_payment_captured,
            GatewayEventType.ORDER_PAID: self._on_payment_captured,
            GatewayEventType.PAYMENT_FAILED: self._on_payment_failed,
            GatewayEventType.REFUND_CREATED: self._on_refund_created,
            GatewayEventType.REFUND_PROCESSED: self._on_refund_processed,
            GatewayEventType.REFUND_FAILED: self._on_refund_failed,
            GatewayEventType.REFUND_SPEED_CHANGED: self._on_refund_speed_changed,
            GatewayEventType.SUBSCRIPTION_ACTIVATED: self._on_subscription_activated,
            GatewayEventType.SUBSCRIPTION_CHARGED: self._on_subscription_charged,
            GatewayEventType.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            GatewayEventType.SUBSCRIPTION_PENDING: self._on_subscription_paused,
            GatewayEventType.SUBSCRIPTION_HALTED: self._on_subscription_paused,
            GatewayEventType.SUBSCRIPTION_CANCELLED: self._on_subscription_cancelled,
            GatewayEventType.SUBSCRIPTION_COMPLETED: self._on_subscription_completed,
            GatewayEventType.INVOICE_PAID: self._on_invoice_paid,
            GatewayEventType.INVOICE_EXPIRED: self._on_invoice_expired,
        }

    @property
    def handled_event_types(self) -> frozenset:
        """Event types with a ledger effect."""
        return frozenset(self._handlers)

    # =========================================================================
    # Entry Points
    # =========================================================================

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            InvalidSignatureError: body was not signed with the webhook secret
        """
        if not self._gateway.verify_webhook_signature(body, signature):
            raise InvalidSignatureError("Invalid webhook signature", source="webhook")

    async def is_event_processed(self, event_id: Optional[str]) -> bool:
        """Check whether a delivery with this event id was already reconciled."""
        if not event_id:
            return False
        async with self._store.transaction() as ledger:
            return await ledger.webhook_events.is_processed(event_id)

    async def record_event(
        self,
        event_id: Optional[str],
        event_type: str,
        outcome: WebhookOutcome,
        error: Optional[str] = None,
    ) -> None:
        """Write the delivery to the webhook audit log."""
        async with self._store.transaction() as ledger:
            await ledger.webhook_events.record(event_id, event_type, outcome, error)

    async def record_failure(self, event: GatewayEvent, error: Exception) -> None:
        """Record a failed delivery so a redelivery is processed again."""
        try:
            await self.record_event(event.event_id, event.raw_type, WebhookOutcome.FAILED, str(error))
        except Exception as e:
            logger.error(f"Could not record failed webhook {event.event_id}: {e}")

    async def process(self, event: GatewayEvent) -> WebhookOutcome:
        """
        Dispatch one event to its handler inside a single transaction.

        Returns:
            PROCESSED when the ledger changed, IGNORED otherwise
        """
        if event.type in OBSERVED_ONLY_EVENTS:
            logger.info(f"Observed gateway event {event.raw_type}; no ledger effect")
            return WebhookOutcome.IGNORED

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.warning(f"Unhandled gateway event type: {event.raw_type or '<missing>'}")
            return WebhookOutcome.IGNORED

        now = self._now()
        async with self._store.transaction() as ledger:
            outcome = await handler(ledger, event, now)

        logger.info(f"Gateway event {event.raw_type} ({event.event_id}) -> {outcome.value}")
        return outcome

    # =========================================================================
    # Payments
    # =========================================================================

    async def _payment_for_order(
        self,
        ledger: Ledger,
        event: GatewayEvent,
    ) -> Optional[PaymentHistoryModel]:
        order_id = event.entity("payment").get("order_id") or event.entity("order").get("id")
        payment = await ledger.payments.get_by_gateway_order_id(order_id, for_update=True)
        if payment is None:
            logger.info(f"{event.raw_type}: no ledger entry for order {order_id}; skipping")
        return payment

    async def _on_payment_authorized(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        payment = await self._payment_for_order(ledger, event)
        if payment is None or payment.status != PaymentStatus.PENDING.value:
            return WebhookOutcome.IGNORED

        entity = event.entity("payment")
        merge_metadata(
            payment,
            authorized_payment_id=entity.get("id"),
            payment_method=entity.get("method"),
            authorized_at=now.isoformat(),
        )
        ledger.session.add(payment)
        return WebhookOutcome.PROCESSED

    async def _on_payment_captured(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        payment = await self._payment_for_order(ledger, event)
        if payment is None:
            return WebhookOutcome.IGNORED

        result = await settle_payment(
            ledger,
            payment,
            gateway_payment_id=event.entity("payment").get("id"),
            now=now,
        )
        return WebhookOutcome.PROCESSED if result.applied else WebhookOutcome.IGNORED

    async def _on_payment_failed(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        payment = await self._payment_for_order(ledger, event)
        if payment is None:
            return WebhookOutcome.IGNORED

        entity = event.entity("payment")
        reason = entity.get("error_description") or entity.get("error_code") or "payment_failed"
        changed = await fail_payment(ledger, payment, reason=reason, gateway_payment_id=entity.get("id"))
        return WebhookOutcome.PROCESSED if changed else WebhookOutcome.IGNORED

    # =========================================================================
    # Refunds
    # =========================================================================

    async def _refund_for_event(
        self,
        ledger: Ledger,
        entity: dict,
    ) -> tuple[Optional[RefundRequestModel], Optional[PaymentHistoryModel]]:
        """Find the refund request (by refund id, then open request on the payment)."""
        payment = await ledger.payments.get_by_gateway_payment_id(entity.get("payment_id"))
        refund = await ledger.refunds.get_by_gateway_refund_id(entity.get("id"))
        if refund is None and payment is not None:
            refund = await ledger.refunds.get_open_for_payment(payment.id)
            if refund is not None and not refund.gateway_refund_id:
                refund.gateway_refund_id = entity.get("id")
                ledger.session.add(refund)
        if payment is None and refund is not None:
            payment = await ledger.payments.get_by_id(refund.payment_history_id)
        return refund, payment

    async def _on_refund_created(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        entity = event.entity("refund")
        if await ledger.refunds.get_by_gateway_refund_id(entity.get("id")):
            return WebhookOutcome.IGNORED

        refund, payment = await self._refund_for_event(ledger, entity)
        if refund is not None:
            logger.info(f"Refund {entity.get('id')} linked to request {refund.id}")
            return WebhookOutcome.PROCESSED
        if payment is None:
            logger.info(f"refund.created for unknown payment {entity.get('payment_id')}; skipping")
            return WebhookOutcome.IGNORED

        already_refunded = payment.status == PaymentStatus.REFUNDED.value
        amount = (
            from_minor_units(entity["amount"]) if entity.get("amount") is not None else payment.amount
        )
        refund = RefundRequestModel(
            user_id=payment.user_id,
            payment_history_id=payment.id,
            subscription_id=payment.ref_id if payment.ref_type == RefType.SUBSCRIPTION.value else None,
            purchase_id=payment.ref_id if payment.ref_type == RefType.PURCHASE.value else None,
            amount=amount,
            currency=entity.get("currency") or payment.currency,
            reason="Refund initiated at the payment gateway",
            status=(RefundStatus.PROCESSED if already_refunded else RefundStatus.APPROVED).value,
            gateway_refund_id=entity.get("id"),
            processed_at=now if already_refunded else None,
        )
        await ledger.refunds.add(refund)
        logger.info(f"Recorded gateway-initiated refund {entity.get('id')} as {refund.status}")
        return WebhookOutcome.PROCESSED

    async def _on_refund_processed(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        entity = event.entity("refund")
        refund, payment = await self._refund_for_event(ledger, entity)
        if refund is None and payment is None:
            logger.info(f"refund.processed for unknown refund {entity.get('id')}; skipping")
            return WebhookOutcome.IGNORED

        changed = False
        if refund is not None:
            if refund.status in _OPEN_REFUND_VALUES:
                refund.status = RefundStatus.PROCESSED.value
                refund.processed_at = now
                refund.gateway_refund_id = refund.gateway_refund_id or entity.get("id")
                ledger.session.add(refund)
                changed = True
            elif refund.status == RefundStatus.REJECTED.value:
                logger.warning(f"Gateway processed refund {entity.get('id')} for rejected request {refund.id}")

        cascaded = await apply_refund_cascade(
            ledger,
            now,
            payment=payment,
            subscription_id=refund.subscription_id if refund else None,
            purchase_id=refund.purchase_id if refund else None,
        )
        return WebhookOutcome.PROCESSED if changed or cascaded else WebhookOutcome.IGNORED

    async def _on_refund_failed(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        entity = event.entity("refund")
        refund, _ = await self._refund_for_event(ledger, entity)
        if refund is None or refund.status not in _OPEN_REFUND_VALUES:
            return WebhookOutcome.IGNORED

        reason = entity.get("error_description") or entity.get("status") or "failed"
        refund.status = RefundStatus.REJECTED.value
        refund.processed_at = now
        refund.admin_notes = append_note(refund.admin_notes, f"Gateway refund failed: {reason}")
        ledger.session.add(refund)
        logger.warning(f"Refund {entity.get('id')} failed at gateway: {reason}")
        return WebhookOutcome.PROCESSED

    async def _on_refund_speed_changed(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        entity = event.entity("refund")
        refund = await ledger.refunds.get_by_gateway_refund_id(entity.get("id"))
        if refund is None:
            return WebhookOutcome.IGNORED

        speed = entity.get("speed_processed") or entity.get("speed_requested") or "unknown"
        refund.admin_notes = append_note(refund.admin_notes, f"Refund speed changed to {speed}")
        ledger.session.add(refund)
        return WebhookOutcome.PROCESSED

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def _subscription_for_event(
        self,
        ledger: Ledger,
        event: GatewayEvent,
        gateway_subscription_id: Optional[str] = None,
    ) -> Optional[SubscriptionModel]:
        gateway_subscription_id = gateway_subscription_id or event.entity("subscription").get("id")
        subscription = await ledger.subscriptions.get_by_gateway_subscription_id(gateway_subscription_id)
        if subscription is None:
            logger.info(
                f"{event.raw_type}: no subscription for gateway id {gateway_subscription_id}; skipping"
            )
        return subscription

    @staticmethod
    def _move_period_end_forward(subscription: SubscriptionModel, entity: dict) -> bool:
        current_end = entity.get("current_end")
        if not current_end:
            return False
        new_end = from_timestamp(current_end)
        if new_end <= subscription.current_period_end:
            return False
        if entity.get("current_start"):
            subscription.current_period_start = from_timestamp(entity["current_start"])
        subscription.current_period_end = new_end
        return True

    async def _on_subscription_activated(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        if subscription is None:
            return WebhookOutcome.IGNORED

        changed = self._move_period_end_forward(subscription, event.entity("subscription"))
        if subscription.status == SubscriptionStatus.PAUSED.value:
            subscription.status = SubscriptionStatus.ACTIVE.value
            changed = True
        if changed:
            ledger.session.add(subscription)
        return WebhookOutcome.PROCESSED if changed else WebhookOutcome.IGNORED

    async def _on_subscription_charged(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        if subscription is None:
            return WebhookOutcome.IGNORED

        payment_entity = event.entity("payment")
        payment_id = payment_entity.get("id")
        if payment_id and await ledger.payments.get_by_gateway_payment_id(payment_id):
            logger.info(f"Renewal payment {payment_id} already recorded")
            return WebhookOutcome.IGNORED

        if subscription.status in _LIVE:
            entity = event.entity("subscription")
            if not self._move_period_end_forward(subscription, entity):
                plan = await ledger.plans.get_by_id(subscription.plan_id)
                interval = plan.interval if plan else "month"
                subscription.current_period_start = subscription.current_period_end
                subscription.current_period_end = advance_period(
                    subscription.current_period_end, interval
                )
            if subscription.status == SubscriptionStatus.PAUSED.value:
                subscription.status = SubscriptionStatus.ACTIVE.value
            ledger.session.add(subscription)
        else:
            logger.warning(
                f"Renewal charged for {subscription.status} subscription {subscription.id}"
            )

        amount = (
            from_minor_units(payment_entity["amount"])
            if payment_entity.get("amount") is not None else subscription.amount
        )
        await record_payment(
            ledger,
            user_id=subscription.user_id,
            payment_type=PaymentType.SUBSCRIPTION_RENEWAL,
            amount=amount,
            currency=payment_entity.get("currency") or subscription.currency,
            status=PaymentStatus.COMPLETED,
            ref_type=RefType.SUBSCRIPTION,
            ref_id=subscription.id,
            gateway_order_id=payment_entity.get("order_id"),
            gateway_payment_id=payment_id,
            metadata={"period_end": subscription.current_period_end.isoformat()},
        )
        return WebhookOutcome.PROCESSED

    async def _on_subscription_updated(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        if subscription is None or subscription.status not in _LIVE:
            return WebhookOutcome.IGNORED

        if self._move_period_end_forward(subscription, event.entity("subscription")):
            ledger.session.add(subscription)
            return WebhookOutcome.PROCESSED
        return WebhookOutcome.IGNORED

    async def _on_subscription_paused(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        return self._transition(ledger, subscription, _PAUSABLE, SubscriptionStatus.PAUSED)

    async def _on_subscription_cancelled(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        outcome = self._transition(ledger, subscription, _LIVE, SubscriptionStatus.CANCELLED)
        if outcome == WebhookOutcome.PROCESSED:
            subscription.cancelled_at = now
        return outcome

    async def _on_subscription_completed(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        subscription = await self._subscription_for_event(ledger, event)
        return self._transition(ledger, subscription, _LIVE, SubscriptionStatus.EXPIRED)

    @staticmethod
    def _transition(
        ledger: Ledger,
        subscription: Optional[SubscriptionModel],
        allowed_from: tuple,
        target: SubscriptionStatus,
    ) -> WebhookOutcome:
        if subscription is None or subscription.status not in allowed_from:
            return WebhookOutcome.IGNORED
        subscription.status = target.value
        ledger.session.add(subscription)
        return WebhookOutcome.PROCESSED

    # =========================================================================
    # Invoices
    # =========================================================================

    async def _on_invoice_paid(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        invoice = event.entity("invoice")
        payment_id = invoice.get("payment_id") or event.entity("payment").get("id")
        if payment_id and await ledger.payments.get_by_gateway_payment_id(payment_id):
            return WebhookOutcome.IGNORED

        subscription = await self._subscription_for_event(ledger, event, invoice.get("subscription_id"))
        if subscription is None:
            return WebhookOutcome.IGNORED

        raw_amount = invoice.get("amount_paid", invoice.get("amount"))
        await record_payment(
            ledger,
            user_id=subscription.user_id,
            payment_type=PaymentType.INVOICE,
            amount=from_minor_units(raw_amount) if raw_amount is not None else Decimal("0.00"),
            currency=invoice.get("currency") or subscription.currency,
            status=PaymentStatus.COMPLETED,
            ref_type=RefType.SUBSCRIPTION,
            ref_id=subscription.id,
            gateway_order_id=invoice.get("order_id"),
            gateway_payment_id=payment_id,
            metadata={"invoice_id": invoice.get("id")},
        )
        return WebhookOutcome.PROCESSED

    async def _on_invoice_expired(self, ledger: Ledger, event: GatewayEvent, now: datetime) -> WebhookOutcome:
        invoice = event.entity("invoice")
        subscription = await self._subscription_for_event(ledger, event, invoice.get("subscription_id"))
        return self._transition(ledger, subscription, _PAUSABLE, SubscriptionStatus.PAUSED)
