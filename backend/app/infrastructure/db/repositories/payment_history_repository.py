"""
PaymentHistory Repository

Lookups of audit entries by gateway ids and by the entity they concern.
"""

from typing import Iterable, Optional
from uuid import UUID

from sqlmodel import select

from app.domain.billing import PaymentStatus, RefType
from app.infrastructure.db.models.payment_history import PaymentHistoryModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class PaymentHistoryRepository(BaseRepository[PaymentHistoryModel]):
    """Repository for payment history entries."""

    model = PaymentHistoryModel

    async def get_by_gateway_order_id(
        self,
        gateway_order_id: str,
        for_update: bool = False,
    ) -> Optional[PaymentHistoryModel]:
        """Get the entry written when the gateway order was created."""
        if not gateway_order_id:
            return None
        stmt = (
            select(PaymentHistoryModel)
            .where(PaymentHistoryModel.gateway_order_id == gateway_order_id)
            .order_by(PaymentHistoryModel.created_at)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return await self._first(stmt)

    async def get_by_gateway_payment_id(
        self,
        gateway_payment_id: str,
    ) -> Optional[PaymentHistoryModel]:
        """Get the entry that recorded a gateway payment."""
        if not gateway_payment_id:
            return None
        stmt = (
            select(PaymentHistoryModel)
            .where(PaymentHistoryModel.gateway_payment_id == gateway_payment_id)
            .order_by(PaymentHistoryModel.created_at)
        )
        return await self._first(stmt)

    async def get_latest_for(
        self,
        ref_type: RefType,
        ref_id: UUID,
        statuses: Iterable[PaymentStatus] = (PaymentStatus.COMPLETED,),
    ) -> Optional[PaymentHistoryModel]:
        """
        Get the most recent non-zero payment for an entity.

        Args:
            ref_type: subscription / purchase / merch_order
            ref_id: Entity id
            statuses: Payment statuses to consider (completed only by default)

        Returns:
            PaymentHistoryModel or None
        """
        stmt = (
            select(PaymentHistoryModel)
            .where(PaymentHistoryModel.ref_type == ref_type.value)
            .where(PaymentHistoryModel.ref_id == ref_id)
            .where(PaymentHistoryModel.status.in_([status.value for status in statuses]))
            .where(PaymentHistoryModel.amount > 0)
            .order_by(PaymentHistoryModel.created_at.desc())
        )
        return await self._first(stmt)
