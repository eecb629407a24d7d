"""
RefundRequest Repository

Data access for the refund workflow.
"""

from typing import List, Optional
from uuid import UUID

from sqlmodel import select

from app.domain.billing import OPEN_REFUND_STATUSES, RefundStatus
from app.infrastructure.db.models.refund_request import RefundRequestModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


_OPEN_VALUES = [status.value for status in OPEN_REFUND_STATUSES]


class RefundRequestRepository(BaseRepository[RefundRequestModel]):
    """Repository for refund requests."""

    model = RefundRequestModel

    async def get_by_gateway_refund_id(
        self,
        gateway_refund_id: str,
    ) -> Optional[RefundRequestModel]:
        if not gateway_refund_id:
            return None
        stmt = select(RefundRequestModel).where(
            RefundRequestModel.gateway_refund_id == gateway_refund_id
        )
        return await self._first(stmt)

    async def get_open_for(
        self,
        subscription_id: Optional[UUID] = None,
        purchase_id: Optional[UUID] = None,
    ) -> Optional[RefundRequestModel]:
        """Get a pending or approved request for a subscription or a purchase."""
        return await self._get_for(_OPEN_VALUES, subscription_id, purchase_id)

    async def get_processed_for(
        self,
        subscription_id: Optional[UUID] = None,
        purchase_id: Optional[UUID] = None,
    ) -> Optional[RefundRequestModel]:
        """Get a request that already returned money for a subscription or a purchase."""
        return await self._get_for(
            [RefundStatus.PROCESSED.value], subscription_id, purchase_id
        )

    async def _get_for(
        self,
        statuses: List[str],
        subscription_id: Optional[UUID],
        purchase_id: Optional[UUID],
    ) -> Optional[RefundRequestModel]:
        stmt = select(RefundRequestModel).where(RefundRequestModel.status.in_(statuses))
        if subscription_id is not None:
            stmt = stmt.where(RefundRequestModel.subscription_id == subscription_id)
        elif purchase_id is not None:
            stmt = stmt.where(RefundRequestModel.purchase_id == purchase_id)
        else:
            return None
        return await self._first(stmt)

    async def get_open_for_payment(
        self,
        payment_history_id: UUID,
    ) -> Optional[RefundRequestModel]:
        """Get a pending or approved request against a payment history entry."""
        stmt = (
            select(RefundRequestModel)
            .where(RefundRequestModel.payment_history_id == payment_history_id)
            .where(RefundRequestModel.status.in_(_OPEN_VALUES))
            .order_by(RefundRequestModel.created_at)
        )
        return await self._first(stmt)

    async def list_by_status(
        self,
        status: Optional[RefundStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[RefundRequestModel]:
        """List requests, newest first, optionally filtered by status."""
        stmt = select(RefundRequestModel)
        if status is not None:
            stmt = stmt.where(RefundRequestModel.status == status.value)
        stmt = stmt.order_by(RefundRequestModel.created_at.desc()).offset(skip).limit(limit)
        return await self._all(stmt)
