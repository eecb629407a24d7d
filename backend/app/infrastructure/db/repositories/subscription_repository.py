"""
Subscription Repository

Data access layer for subscription persistence.
Follows Repository pattern for Clean Architecture.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlmodel import select

from app.domain.billing import GRANT_ACCESS_STATUSES, SubscriptionStatus
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)

_GRANT_ACCESS_VALUES = [status.value for status in GRANT_ACCESS_STATUSES]


class SubscriptionRepository(BaseRepository[SubscriptionModel]):
    """
    Repository for subscription data access.

    Lookups by user and by gateway id; state changes are made on the returned
    rows and flushed by the enclosing transaction.
    """

    model = SubscriptionModel

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_for_user(
        self,
        subscription_id: UUID,
        user_id: str,
    ) -> Optional[SubscriptionModel]:
        """Get a subscription only if it belongs to the user."""
        subscription = await self.get_by_id(subscription_id)
        if subscription is None or subscription.user_id != user_id:
            return None
        return subscription

    async def get_current(self, user_id: str) -> Optional[SubscriptionModel]:
        """
        Get the subscription that currently grants access.

        Args:
            user_id: Identity provider user id

        Returns:
            Active or pending-downgrade subscription, or None
        """
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .where(SubscriptionModel.status.in_(_GRANT_ACCESS_VALUES))
            .order_by(SubscriptionModel.created_at.desc())
        )
        return await self._first(stmt)

    async def get_latest_for_user(self, user_id: str) -> Optional[SubscriptionModel]:
        """Get the user's most recently created subscription, whatever its status."""
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.created_at.desc())
        )
        return await self._first(stmt)

    async def list_grant_access(
        self,
        user_id: str,
        for_update: bool = False,
    ) -> List[SubscriptionModel]:
        """All grant-access rows of a user, optionally locked for superseding."""
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .where(SubscriptionModel.status.in_(_GRANT_ACCESS_VALUES))
        )
        if for_update:
            stmt = stmt.with_for_update()
        return await self._all(stmt)

    async def get_by_gateway_subscription_id(
        self,
        gateway_subscription_id: str,
    ) -> Optional[SubscriptionModel]:
        """Get subscription by gateway subscription ID."""
        if not gateway_subscription_id:
            return None
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.gateway_subscription_id == gateway_subscription_id
        ).order_by(SubscriptionModel.created_at.desc())
        return await self._first(stmt)

    async def get_by_gateway_payment_id(
        self,
        gateway_payment_id: str,
    ) -> Optional[SubscriptionModel]:
        """Get subscription by the gateway payment that activated it."""
        if not gateway_payment_id:
            return None
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.gateway_payment_id == gateway_payment_id
        )
        return await self._first(stmt)

    async def get_scheduled_for_cancellation(
        self,
        user_id: str,
        now: datetime,
    ) -> Optional[SubscriptionModel]:
        """Grant-access subscription set to end at period end, still in its period."""
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .where(SubscriptionModel.status.in_(_GRANT_ACCESS_VALUES))
            .where(SubscriptionModel.cancel_at_period_end.is_(True))
            .where(SubscriptionModel.current_period_end > now)
            .order_by(SubscriptionModel.created_at.desc())
        )
        return await self._first(stmt)

    async def list_due_for_change(self, now: datetime) -> List[SubscriptionModel]:
        """
        Subscriptions whose period ended with a scheduled downgrade or cancellation.

        Args:
            now: Evaluation time

        Returns:
            Rows locked for update, oldest period end first
        """
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.status.in_(_GRANT_ACCESS_VALUES))
            .where(SubscriptionModel.current_period_end <= now)
            .where(
                or_(
                    SubscriptionModel.cancel_at_period_end.is_(True),
                    SubscriptionModel.status == SubscriptionStatus.PENDING_DOWNGRADE.value,
                )
            )
            .order_by(SubscriptionModel.current_period_end)
            .with_for_update()
        )
        return await self._all(stmt)
