"""
Payment Settlement

Ledger transitions shared by the payment verifier, the webhook reconciler,
the order orchestrator and the refund workflow.

Every function runs inside the caller's ledger transaction and only moves
rows forward from a legal predecessor status, so applying the same event
twice, or from both the client and the gateway, converges on one state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from app.domain.billing import (
    MerchOrderStatus,
    PaymentStatus,
    PaymentType,
    PurchaseStatus,
    RefType,
    SubscriptionStatus,
)
from app.domain.proration import advance_period
from app.infrastructure.db.ledger import Ledger
from app.infrastructure.db.models import (
    MerchOrderModel,
    PaymentHistoryModel,
    PricingPlanModel,
    PurchaseModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import NotFoundError


logger = logging.getLogger(__name__)

_REVOCABLE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PENDING_DOWNGRADE.value,
    SubscriptionStatus.PAUSED.value,
)


@dataclass
class SettlementResult:
    """Outcome of applying a successful payment."""
    payment: PaymentHistoryModel
    applied: bool
    entity_type: Optional[RefType] = None
    entity_id: Optional[UUID] = None


def merge_metadata(payment: PaymentHistoryModel, **values: Any) -> None:
    """Add keys to a payment's metadata (assigns a new dict so the change is tracked)."""
    payment.payment_metadata = {**(payment.payment_metadata or {}), **values}


def append_note(current: Optional[str], note: str) -> str:
    """Append a line to free-text admin notes."""
    return f"{current}\n{note}" if current else note


async def record_payment(
    ledger: Ledger,
    user_id: str,
    payment_type: PaymentType,
    amount: Decimal,
    currency: str,
    status: PaymentStatus,
    ref_type: Optional[RefType] = None,
    ref_id: Optional[UUID] = None,
    gateway_order_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> PaymentHistoryModel:
    """Append a payment history entry."""
    return await ledger.payments.add(
        PaymentHistoryModel(
            user_id=user_id,
            type=payment_type.value,
            amount=amount,
            currency=currency,
            status=status.value,
            ref_type=ref_type.value if ref_type else None,
            ref_id=ref_id,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            payment_metadata=dict(metadata or {}),
        )
    )


# =============================================================================
# Subscriptions
# =============================================================================

async def activate_subscription(
    ledger: Ledger,
    user_id: str,
    plan: PricingPlanModel,
    now: datetime,
    gateway_order_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
) -> SubscriptionModel:
    """
    Supersede every grant-access subscription of the user, then insert a new
    active one on ``plan`` for ``[now, advance_period(now)]``.
    """
    superseded = await ledger.subscriptions.list_grant_access(user_id, for_update=True)
    for old in superseded:
        old.status = SubscriptionStatus.CANCELLED.value
        old.cancelled_at = now
        old.pending_plan_id = None
        old.cancel_at_period_end = False
        ledger.session.add(old)
    if superseded:
        # The partial unique index must see the old rows leave before the insert.
        await ledger.flush()
        logger.info(f"Superseded {len(superseded)} subscription(s) for user {user_id}")

    subscription = SubscriptionModel(
        user_id=user_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        amount=plan.price,
        currency=plan.currency,
        current_period_start=now,
        current_period_end=advance_period(now, plan.interval),
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
    )
    await ledger.subscriptions.add(subscription)
    logger.info(f"Activated subscription {subscription.id} on plan {plan.slug} for user {user_id}")
    return subscription


async def schedule_downgrade(
    ledger: Ledger,
    subscription: SubscriptionModel,
    plan: PricingPlanModel,
    now: datetime,
) -> bool:
    """
    Schedule a move to a cheaper plan at the end of the current period.

    Returns:
        False when the same downgrade was already scheduled
    """
    if (
        subscription.status == SubscriptionStatus.PENDING_DOWNGRADE.value
        and subscription.pending_plan_id == plan.id
    ):
        return False

    from_plan_id = subscription.plan_id
    subscription.pending_plan_id = plan.id
    subscription.status = SubscriptionStatus.PENDING_DOWNGRADE.value
    subscription.cancel_at_period_end = False
    ledger.session.add(subscription)

    await record_payment(
        ledger,
        user_id=subscription.user_id,
        payment_type=PaymentType.DOWNGRADE,
        amount=Decimal("0.00"),
        currency=plan.currency,
        status=PaymentStatus.COMPLETED,
        ref_type=RefType.SUBSCRIPTION,
        ref_id=subscription.id,
        metadata={
            "from_plan_id": str(from_plan_id),
            "plan_id": str(plan.id),
            "effective_date": subscription.current_period_end.isoformat(),
            "scheduled_at": now.isoformat(),
        },
    )
    logger.info(
        f"Scheduled downgrade of subscription {subscription.id} to plan {plan.slug} "
        f"effective {subscription.current_period_end.isoformat()}"
    )
    return True


# =============================================================================
# Successful Payments
# =============================================================================

async def settle_payment(
    ledger: Ledger,
    payment: PaymentHistoryModel,
    gateway_payment_id: Optional[str],
    now: datetime,
    gateway_signature: Optional[str] = None,
) -> SettlementResult:
    """
    Apply a successful payment to the ledger.

    pending|failed -> completed, then the entity transition for the payment type.
    Completed or refunded entries are left untouched.
    """
    if payment.status == PaymentStatus.COMPLETED.value:
        return _result(payment, applied=False)
    if payment.status == PaymentStatus.REFUNDED.value:
        logger.warning(f"Ignoring settlement of refunded payment {payment.id}")
        return _result(payment, applied=False)

    payment_type = PaymentType(payment.type)
    if payment_type in (PaymentType.PURCHASE, PaymentType.PLAYLIST):
        await _complete_purchase(ledger, payment, gateway_payment_id, gateway_signature)
    elif payment_type == PaymentType.MERCH:
        await _mark_merch_paid(ledger, payment, gateway_payment_id)
    elif payment_type in (PaymentType.SUBSCRIPTION, PaymentType.UPGRADE):
        await _activate_from_payment(ledger, payment, gateway_payment_id, now)
    else:
        logger.warning(f"Payment {payment.id} of type {payment.type} has no settlement")
        return _result(payment, applied=False)

    payment.status = PaymentStatus.COMPLETED.value
    payment.gateway_payment_id = gateway_payment_id or payment.gateway_payment_id
    payment.gateway_signature = gateway_signature or payment.gateway_signature
    ledger.session.add(payment)
    await ledger.flush()

    logger.info(f"Settled {payment.type} payment {payment.id} (order {payment.gateway_order_id})")
    return _result(payment, applied=True)


def _result(payment: PaymentHistoryModel, applied: bool) -> SettlementResult:
    return SettlementResult(
        payment=payment,
        applied=applied,
        entity_type=RefType(payment.ref_type) if payment.ref_type else None,
        entity_id=payment.ref_id,
    )


async def _complete_purchase(
    ledger: Ledger,
    payment: PaymentHistoryModel,
    gateway_payment_id: Optional[str],
    gateway_signature: Optional[str],
) -> None:
    purchase = await ledger.purchases.get_by_id(payment.ref_id)
    if purchase is None:
        raise NotFoundError(
            f"Purchase for payment {payment.id} not found",
            operation="settle",
            table="purchases",
        )

    if purchase.status not in (PurchaseStatus.PENDING.value, PurchaseStatus.FAILED.value):
        return

    owned = await ledger.purchases.get_completed(
        purchase.user_id,
        podcast_id=purchase.podcast_id,
        playlist_id=purchase.playlist_id,
    )
    if owned is not None and owned.id != purchase.id:
        # Already owned: the payment stays completed so it can be refunded.
        purchase.status = PurchaseStatus.FAILED.value
        purchase.gateway_payment_id = gateway_payment_id
        ledger.session.add(purchase)
        merge_metadata(payment, duplicate_purchase=True, owned_purchase_id=str(owned.id))
        logger.warning(
            f"Purchase {purchase.id} duplicates completed purchase {owned.id} of user "
            f"{purchase.user_id}; payment {gateway_payment_id} needs a refund"
        )
        return

    purchase.status = PurchaseStatus.COMPLETED.value
    purchase.gateway_payment_id = gateway_payment_id
    purchase.gateway_signature = gateway_signature or purchase.gateway_signature
    ledger.session.add(purchase)
    logger.info(f"Purchase {purchase.id} completed")


async def _mark_merch_paid(
    ledger: Ledger,
    payment: PaymentHistoryModel,
    gateway_payment_id: Optional[str],
) -> None:
    order = await ledger.merch_orders.get_by_id(payment.ref_id, for_update=True)
    if order is None:
        raise NotFoundError(
            f"Merch order for payment {payment.id} not found",
            operation="settle",
            table="merch_orders",
        )

    if order.status not in (MerchOrderStatus.PENDING.value, MerchOrderStatus.CANCELLED.value):
        return

    order.status = MerchOrderStatus.PAID.value
    order.gateway_payment_id = gateway_payment_id
    ledger.session.add(order)

    lines = await ledger.merch_orders.list_items(order.id)
    items = {
        item.id: item
        for item in await ledger.merch_items.get_many(
            [line.merch_item_id for line in lines], for_update=True
        )
    }
    for line in lines:
        item = items.get(line.merch_item_id)
        if item is None:
            continue
        item.stock_quantity = max(0, item.stock_quantity - line.quantity)
        item.in_stock = item.stock_quantity > 0
        ledger.session.add(item)
    logger.info(f"Merch order {order.id} paid; stock updated for {len(lines)} line(s)")


async def _activate_from_payment(
    ledger: Ledger,
    payment: PaymentHistoryModel,
    gateway_payment_id: Optional[str],
    now: datetime,
) -> None:
    if payment.ref_id is not None:
        # Already activated by an earlier delivery.
        return

    plan_id = (payment.payment_metadata or {}).get("plan_id")
    plan = await ledger.plans.get_by_id(UUID(plan_id)) if plan_id else None
    if plan is None:
        raise NotFoundError(
            f"Pricing plan for payment {payment.id} not found",
            operation="settle",
            table="pricing_plans",
        )

    subscription = await activate_subscription(
        ledger,
        user_id=payment.user_id,
        plan=plan,
        now=now,
        gateway_order_id=payment.gateway_order_id,
        gateway_payment_id=gateway_payment_id,
    )
    payment.ref_type = RefType.SUBSCRIPTION.value
    payment.ref_id = subscription.id


# =============================================================================
# Failed Payments
# =============================================================================

async def fail_payment(
    ledger: Ledger,
    payment: PaymentHistoryModel,
    reason: str,
    gateway_payment_id: Optional[str] = None,
) -> bool:
    """
    pending -> failed for the entry and its purchase; pending merch orders are cancelled.

    Returns:
        True if anything changed
    """
    if payment.status != PaymentStatus.PENDING.value:
        return False

    payment.status = PaymentStatus.FAILED.value
    payment.gateway_payment_id = gateway_payment_id or payment.gateway_payment_id
    merge_metadata(payment, failure_reason=reason)
    ledger.session.add(payment)

    if payment.ref_type == RefType.PURCHASE.value:
        purchase = await ledger.purchases.get_by_id(payment.ref_id)
        if purchase is not None and purchase.status == PurchaseStatus.PENDING.value:
            purchase.status = PurchaseStatus.FAILED.value
            ledger.session.add(purchase)
    elif payment.ref_type == RefType.MERCH_ORDER.value:
        order = await ledger.merch_orders.get_by_id(payment.ref_id)
        if order is not None and order.status == MerchOrderStatus.PENDING.value:
            order.status = MerchOrderStatus.CANCELLED.value
            ledger.session.add(order)

    logger.warning(f"Payment {payment.id} (order {payment.gateway_order_id}) failed: {reason}")
    return True


# =============================================================================
# Refunds
# =============================================================================

async def apply_refund_cascade(
    ledger: Ledger,
    now: datetime,
    payment: Optional[PaymentHistoryModel] = None,
    subscription_id: Optional[UUID] = None,
    purchase_id: Optional[UUID] = None,
) -> bool:
    """
    Reflect money returned to the user.

    Payment completed -> refunded; subscription -> cancelled; purchase -> refunded;
    merch order paid -> cancelled.

    Returns:
        True if anything changed
    """
    changed = False
    merch_order_id: Optional[UUID] = None

    if payment is not None:
        if payment.status == PaymentStatus.COMPLETED.value:
            payment.status = PaymentStatus.REFUNDED.value
            ledger.session.add(payment)
            changed = True
        if payment.ref_type == RefType.SUBSCRIPTION.value:
            subscription_id = subscription_id or payment.ref_id
        elif payment.ref_type == RefType.PURCHASE.value:
            purchase_id = purchase_id or payment.ref_id
        elif payment.ref_type == RefType.MERCH_ORDER.value:
            merch_order_id = payment.ref_id

    if subscription_id is not None:
        subscription = await ledger.subscriptions.get_by_id(subscription_id)
        if subscription is not None and subscription.status in _REVOCABLE_SUBSCRIPTION_STATUSES:
            subscription.status = SubscriptionStatus.CANCELLED.value
            subscription.cancelled_at = now
            subscription.pending_plan_id = None
            subscription.cancel_at_period_end = False
            ledger.session.add(subscription)
            changed = True
            logger.info(f"Subscription {subscription.id} cancelled after refund")

    if purchase_id is not None:
        purchase: Optional[PurchaseModel] = await ledger.purchases.get_by_id(purchase_id)
        if purchase is not None and purchase.status == PurchaseStatus.COMPLETED.value:
            purchase.status = PurchaseStatus.REFUNDED.value
            ledger.session.add(purchase)
            changed = True
            logger.info(f"Purchase {purchase.id} refunded")

    if merch_order_id is not None:
        order: Optional[MerchOrderModel] = await ledger.merch_orders.get_by_id(merch_order_id)
        if order is not None and order.status == MerchOrderStatus.PAID.value:
            order.status = MerchOrderStatus.CANCELLED.value
            ledger.session.add(order)
            changed = True

    return changed
