"""
Tests for constraints and column types the ledger tables enforce.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.domain.billing import PurchaseStatus
from app.infrastructure.db.models import PurchaseModel
from app.infrastructure.exceptions import InvalidStateError

from conftest import add_rows, fetch_one


def _purchase(catalog, status=PurchaseStatus.COMPLETED, **fields) -> PurchaseModel:
    values = {
        "user_id": "user-1",
        "podcast_id": catalog.podcast.id,
        "amount": Decimal("49.00"),
        "status": status.value,
    }
    values.update(fields)
    return PurchaseModel(**values)


async def test_one_completed_purchase_per_podcast(store, catalog):
    await add_rows(store, _purchase(catalog))

    with pytest.raises(InvalidStateError) as exc_info:
        await add_rows(store, _purchase(catalog))
    assert isinstance(exc_info.value.original_error, IntegrityError)


async def test_one_completed_purchase_per_playlist(store, catalog):
    await add_rows(store, _purchase(catalog, podcast_id=None, playlist_id=catalog.playlist.id))

    with pytest.raises(InvalidStateError) as exc_info:
        await add_rows(store, _purchase(catalog, podcast_id=None, playlist_id=catalog.playlist.id))
    assert isinstance(exc_info.value.original_error, IntegrityError)


async def test_repeat_attempts_and_other_buyers_are_allowed(store, catalog):
    await add_rows(
        store,
        _purchase(catalog),
        _purchase(catalog, status=PurchaseStatus.FAILED),
        _purchase(catalog, status=PurchaseStatus.PENDING),
        _purchase(catalog, user_id="user-2"),
        _purchase(catalog, podcast_id=None, playlist_id=catalog.playlist.id),
    )


async def test_timestamps_are_stored_as_naive_utc(store, catalog, clock):
    purchase = await add_rows(store, _purchase(catalog, created_at=clock.now))

    stored = await fetch_one(store, PurchaseModel, id=purchase.id)

    assert stored.created_at == clock.now
    assert stored.created_at.tzinfo is None
    assert stored.updated_at.tzinfo is None
