"""
WebhookEvent Repository

Idempotency and audit for webhook deliveries.
"""

from typing import Optional

from sqlmodel import select

from app.domain.billing import WebhookOutcome
from app.infrastructure.db.models.webhook_event import WebhookEventModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class WebhookEventRepository(BaseRepository[WebhookEventModel]):
    """Repository for reconciled webhook events."""

    model = WebhookEventModel

    async def get_by_event_id(self, event_id: str) -> Optional[WebhookEventModel]:
        if not event_id:
            return None
        stmt = select(WebhookEventModel).where(WebhookEventModel.event_id == event_id)
        return await self._first(stmt)

    async def is_processed(self, event_id: Optional[str]) -> bool:
        """True when the event id was already reconciled (processed or ignored)."""
        if not event_id:
            return False
        event = await self.get_by_event_id(event_id)
        return event is not None and event.outcome != WebhookOutcome.FAILED.value

    async def record(
        self,
        event_id: Optional[str],
        event_type: str,
        outcome: WebhookOutcome,
        error: Optional[str] = None,
    ) -> WebhookEventModel:
        """
        Record the outcome of a delivery.

        A redelivery of a failed event updates the existing row.
        """
        existing = await self.get_by_event_id(event_id) if event_id else None
        if existing is not None:
            existing.outcome = outcome.value
            existing.error = error
            self._session.add(existing)
            await self._session.flush()
            return existing

        return await self.add(
            WebhookEventModel(
                event_id=event_id,
                event_type=event_type,
                outcome=outcome.value,
                error=error,
            )
        )
