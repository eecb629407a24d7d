"""
Purchase Repository

Data access for podcast and playlist purchases.
"""

from typing import Optional
from uuid import UUID

from sqlmodel import select

from app.domain.billing import PurchaseStatus
from app.infrastructure.db.models.purchase import PurchaseModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class PurchaseRepository(BaseRepository[PurchaseModel]):
    """Repository for per-item purchases."""

    model = PurchaseModel

    async def get_for_user(self, purchase_id: UUID, user_id: str) -> Optional[PurchaseModel]:
        """Get a purchase only if it belongs to the user."""
        purchase = await self.get_by_id(purchase_id)
        if purchase is None or purchase.user_id != user_id:
            return None
        return purchase

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[PurchaseModel]:
        stmt = select(PurchaseModel).where(PurchaseModel.gateway_order_id == gateway_order_id)
        return await self._first(stmt)

    async def get_completed(
        self,
        user_id: str,
        podcast_id: Optional[UUID] = None,
        playlist_id: Optional[UUID] = None,
    ) -> Optional[PurchaseModel]:
        """
        Get the user's completed purchase of a podcast or a playlist.

        Args:
            user_id: Buyer
            podcast_id: Podcast to check (or None)
            playlist_id: Playlist to check (or None)
        """
        stmt = (
            select(PurchaseModel)
            .where(PurchaseModel.user_id == user_id)
            .where(PurchaseModel.status == PurchaseStatus.COMPLETED.value)
        )
        if podcast_id is not None:
            stmt = stmt.where(PurchaseModel.podcast_id == podcast_id)
        else:
            stmt = stmt.where(PurchaseModel.playlist_id == playlist_id)
        return await self._first(stmt)
