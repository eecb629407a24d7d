"""
Merchandise Order Repository

Orders and their line items.
"""

from typing import List, Optional
from uuid import UUID

from sqlmodel import select

from app.infrastructure.db.models.merch_order import MerchOrderItemModel, MerchOrderModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class MerchOrderRepository(BaseRepository[MerchOrderModel]):
    """Repository for merchandise orders."""

    model = MerchOrderModel

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[MerchOrderModel]:
        stmt = select(MerchOrderModel).where(MerchOrderModel.gateway_order_id == gateway_order_id)
        return await self._first(stmt)

    async def add_item(self, item: MerchOrderItemModel) -> MerchOrderItemModel:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_items(self, order_id: UUID) -> List[MerchOrderItemModel]:
        stmt = select(MerchOrderItemModel).where(MerchOrderItemModel.order_id == order_id)
        return await self._all(stmt)
