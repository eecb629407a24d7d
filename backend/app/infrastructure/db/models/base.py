"""
Base Model for SQLModel ORM

Provides common fields and behavior for all ledger tables.
Timestamps are naive UTC for TIMESTAMP WITHOUT TIME ZONE compatibility.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from app.domain.proration import utcnow


class TimestampMixin(SQLModel):
    """
    Mixin providing timestamp fields for models.
    """

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        description="Record creation timestamp (UTC)"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
        description="Last update timestamp (UTC)"
    )


class UUIDMixin(SQLModel):
    """
    Mixin providing UUID primary key.
    """

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        nullable=False,
        description="Unique identifier (UUID v4)"
    )


class BaseModel(UUIDMixin, TimestampMixin):
    """
    Base model combining UUID and timestamp mixins.

    All ledger tables inherit from this class.
    Provides: id, created_at, updated_at
    """
    pass


def money_field(default: Decimal = Decimal("0.00"), **kwargs) -> Any:
    """NUMERIC(10, 2) column in major currency units."""
    return Field(default=default, max_digits=10, decimal_places=2, **kwargs)
