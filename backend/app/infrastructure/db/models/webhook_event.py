"""
WebhookEvent Database Model

Audit log of signature-valid webhook deliveries, keyed by the gateway event id.
"""

from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field

from app.domain.billing import WebhookOutcome
from app.infrastructure.db.models.base import BaseModel


class WebhookEventModel(BaseModel, table=True):
    """One reconciled webhook delivery."""

    __tablename__ = "webhook_events"

    event_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    event_type: str = Field(max_length=100)
    outcome: str = Field(default=WebhookOutcome.PROCESSED.value, max_length=20)
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
