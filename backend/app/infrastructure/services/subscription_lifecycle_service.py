"""
Subscription Lifecycle

Cancellation, reactivation and the period-boundary job that applies
scheduled downgrades and cancellations.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from app.config.settings import Settings
from app.domain.billing import (
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    PaymentStatus,
    PaymentType,
    RefType,
    SubscriptionRead,
    SubscriptionStatus,
)
from app.domain.proration import advance_period, elapsed_days, utcnow
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.db.models import SubscriptionModel
from app.infrastructure.exceptions import InvalidStateError, NotFoundError
from app.infrastructure.services.settlement import record_payment


logger = logging.getLogger(__name__)


@dataclass
class DueChangesSummary:
    """Counts from one apply_due_changes run."""
    downgraded: int = 0
    expired: int = 0


class SubscriptionLifecycleService:
    """
    User-driven subscription changes that need no payment.

    Args:
        store: Ledger store
        settings: Application settings (refund window)
        now_provider: Clock returning naive UTC
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Settings,
        now_provider: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._window_days = settings.refund_window_days
        self._now = now_provider

    async def current_subscription(self, user_id: str) -> Optional[SubscriptionModel]:
        """The subscription granting access, if any."""
        async with self._store.transaction() as ledger:
            return await ledger.subscriptions.get_current(user_id)

    async def cancel(self, user_id: str, request: CancelSubscriptionRequest) -> CancelSubscriptionResponse:
        """
        Cancel now or at the end of the period.

        Raises:
            NotFoundError: user has no subscription granting access
        """
        now = self._now()
        async with self._store.transaction() as ledger:
            subscription = await ledger.subscriptions.get_current(user_id)
            if subscription is None:
                raise NotFoundError("No active subscription", table="subscriptions")

            if request.immediate:
                subscription.status = SubscriptionStatus.CANCELLED.value
                subscription.cancelled_at = now
                subscription.cancel_at_period_end = False
            else:
                subscription.cancel_at_period_end = True
                subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.pending_plan_id = None
            ledger.session.add(subscription)

            await record_payment(
                ledger,
                user_id=user_id,
                payment_type=PaymentType.CANCELLATION,
                amount=Decimal("0.00"),
                currency=subscription.currency,
                status=PaymentStatus.COMPLETED,
                ref_type=RefType.SUBSCRIPTION,
                ref_id=subscription.id,
                metadata={
                    "immediate": request.immediate,
                    "reason": request.reason,
                    "effective_date": (now if request.immediate else subscription.current_period_end).isoformat(),
                },
            )

        days = elapsed_days(subscription.created_at, now)
        refund_eligible = days <= self._window_days
        logger.info(
            f"Subscription {subscription.id} cancelled "
            f"({'immediately' if request.immediate else 'at period end'}) by user {user_id}"
        )
        if request.immediate:
            message = "Subscription cancelled"
        else:
            message = f"Subscription will end on {subscription.current_period_end.date().isoformat()}"
        if refund_eligible:
            message += "; you can still request a refund"

        return CancelSubscriptionResponse(
            subscription=SubscriptionRead.model_validate(subscription),
            refund_eligible=refund_eligible,
            days_elapsed=days,
            message=message,
        )

    async def reactivate(self, user_id: str) -> SubscriptionModel:
        """
        Undo a cancel-at-period-end before the period is over.

        Raises:
            InvalidStateError: nothing is scheduled for cancellation
        """
        now = self._now()
        async with self._store.transaction() as ledger:
            subscription = await ledger.subscriptions.get_scheduled_for_cancellation(user_id, now)
            if subscription is None:
                raise InvalidStateError("No subscription scheduled for cancellation")

            subscription.cancel_at_period_end = False
            subscription.status = SubscriptionStatus.ACTIVE.value
            ledger.session.add(subscription)

            await record_payment(
                ledger,
                user_id=user_id,
                payment_type=PaymentType.REACTIVATION,
                amount=Decimal("0.00"),
                currency=subscription.currency,
                status=PaymentStatus.COMPLETED,
                ref_type=RefType.SUBSCRIPTION,
                ref_id=subscription.id,
            )

        logger.info(f"Subscription {subscription.id} reactivated by user {user_id}")
        return subscription

    async def apply_due_changes(self, now: Optional[datetime] = None) -> DueChangesSummary:
        """
        Apply scheduled changes whose period has ended.

        pending_downgrade -> active on the pending plan, new period from the old end.
        cancel_at_period_end -> expired.
        """
        now = now or self._now()
        summary = DueChangesSummary()

        async with self._store.transaction() as ledger:
            for subscription in await ledger.subscriptions.list_due_for_change(now):
                if subscription.cancel_at_period_end:
                    subscription.status = SubscriptionStatus.EXPIRED.value
                    subscription.cancel_at_period_end = False
                    subscription.pending_plan_id = None
                    ledger.session.add(subscription)
                    summary.expired += 1
                    logger.info(f"Subscription {subscription.id} expired at period end")
                    continue

                plan = await ledger.plans.get_by_id(subscription.pending_plan_id)
                if plan is None:
                    logger.error(
                        f"Pending plan {subscription.pending_plan_id} of subscription "
                        f"{subscription.id} not found; leaving it unchanged"
                    )
                    continue

                start = subscription.current_period_end
                subscription.plan_id = plan.id
                subscription.amount = plan.price
                subscription.currency = plan.currency
                subscription.current_period_start = start
                subscription.current_period_end = advance_period(start, plan.interval)
                subscription.pending_plan_id = None
                subscription.status = SubscriptionStatus.ACTIVE.value
                ledger.session.add(subscription)
                summary.downgraded += 1
                logger.info(f"Subscription {subscription.id} moved to plan {plan.slug}")

        return summary
