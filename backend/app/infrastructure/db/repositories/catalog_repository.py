"""
Catalog Repositories

Read access to users, plans, podcasts, playlists and merch items.
"""

from typing import Iterable, List, Optional
from uuid import UUID

from sqlmodel import select

from app.domain.billing import UserRole
from app.infrastructure.db.models.catalog import (
    MerchItemModel,
    PlaylistModel,
    PodcastModel,
    PricingPlanModel,
    UserModel,
)
from app.infrastructure.db.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[UserModel]):
    """Users keyed by identity provider subject id."""

    model = UserModel

    async def is_admin(self, user_id: str) -> bool:
        user = await self.get_by_id(user_id)
        return user is not None and user.role == UserRole.ADMIN.value


class PricingPlanRepository(BaseRepository[PricingPlanModel]):
    """Subscription pricing plans."""

    model = PricingPlanModel

    async def get_active(self, plan_id: UUID) -> Optional[PricingPlanModel]:
        """Return the plan only if it is still offered."""
        plan = await self.get_by_id(plan_id)
        if plan is None or not plan.is_active:
            return None
        return plan


class PodcastRepository(BaseRepository[PodcastModel]):
    model = PodcastModel


class PlaylistRepository(BaseRepository[PlaylistModel]):
    model = PlaylistModel


class MerchItemRepository(BaseRepository[MerchItemModel]):
    """Merchandise items with stock."""

    model = MerchItemModel

    async def get_many(
        self,
        item_ids: Iterable[UUID],
        for_update: bool = False,
    ) -> List[MerchItemModel]:
        """Load several items at once, optionally locking them for a stock update."""
        ids = list(item_ids)
        if not ids:
            return []
        stmt = select(MerchItemModel).where(MerchItemModel.id.in_(ids))
        if for_update:
            stmt = stmt.with_for_update()
        return await self._all(stmt)
