"""
Purchase Database Model

Per-item purchases of podcasts and playlists.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import Index, text
from sqlmodel import Field

from app.domain.billing import PurchaseStatus
from app.infrastructure.db.models.base import BaseModel, money_field


_COMPLETED_CLAUSE = text("status = 'completed'")


class PurchaseModel(BaseModel, table=True):
    """
    A podcast or playlist purchase.

    Exactly one of podcast_id / playlist_id is set. A user owns an item
    through at most one completed purchase.
    """

    __tablename__ = "purchases"
    __table_args__ = (
        Index(
            "uq_purchases_user_podcast_completed",
            "user_id",
            "podcast_id",
            unique=True,
            postgresql_where=_COMPLETED_CLAUSE,
            sqlite_where=_COMPLETED_CLAUSE,
        ),
        Index(
            "uq_purchases_user_playlist_completed",
            "user_id",
            "playlist_id",
            unique=True,
            postgresql_where=_COMPLETED_CLAUSE,
            sqlite_where=_COMPLETED_CLAUSE,
        ),
    )

    user_id: str = Field(foreign_key="users.id", index=True, max_length=255)
    podcast_id: Optional[UUID] = Field(default=None, foreign_key="podcasts.id", index=True)
    playlist_id: Optional[UUID] = Field(default=None, foreign_key="playlists.id", index=True)

    amount: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    status: str = Field(default=PurchaseStatus.PENDING.value, max_length=20, index=True)

    gateway_order_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_signature: Optional[str] = Field(default=None, max_length=255)
