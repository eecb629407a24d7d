"""
Catalog SQLModels for Podcast Billing

Users, pricing plans, podcasts, playlists and merchandise.
The billing engine only reads these rows for prices, stock and roles;
catalog management lives elsewhere.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, String
from sqlmodel import Field

from app.domain.billing import PlanInterval, UserRole
from app.infrastructure.db.models.base import BaseModel, TimestampMixin, money_field


class UserModel(TimestampMixin, table=True):
    """Platform user. ``id`` is the opaque subject id from the identity provider."""

    __tablename__ = "users"

    id: str = Field(
        sa_column=Column(String(255), primary_key=True),
        description="Identity provider subject id"
    )
    email: Optional[str] = Field(default=None, max_length=255, index=True)
    name: Optional[str] = Field(default=None, max_length=255)
    role: str = Field(default=UserRole.USER.value, max_length=20)


class PricingPlanModel(BaseModel, table=True):
    """Subscription plan."""

    __tablename__ = "pricing_plans"

    name: str = Field(max_length=100)
    slug: str = Field(max_length=100, unique=True, index=True)
    price: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    interval: str = Field(default=PlanInterval.MONTH.value, max_length=10)
    is_active: bool = Field(default=True)


class PodcastModel(BaseModel, table=True):
    """Podcast episode sold per item unless free."""

    __tablename__ = "podcasts"

    title: str = Field(max_length=255)
    is_free: bool = Field(default=False)
    price: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)


class PlaylistModel(BaseModel, table=True):
    """Curated playlist sold as a bundle."""

    __tablename__ = "playlists"

    title: str = Field(max_length=255)
    price: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    is_public: bool = Field(default=True)


class MerchItemModel(BaseModel, table=True):
    """Merchandise product with stock tracking."""

    __tablename__ = "merch_items"

    name: str = Field(max_length=255)
    price: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    in_stock: bool = Field(default=True)
    stock_quantity: int = Field(default=0, ge=0)
    is_active: bool = Field(default=True)
