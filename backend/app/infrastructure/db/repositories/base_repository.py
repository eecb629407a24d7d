"""
Base Repository for Podcast Billing

Generic async repository over an injected AsyncSession.
The ledger is append-mostly: there is no generic delete, and commits belong
to the surrounding LedgerStore transaction, never to a repository.
"""

from typing import Any, TypeVar, Generic, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with read and insert operations.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    model: Type[ModelType]

    def __init__(self, session: AsyncSession, model: Optional[Type[ModelType]] = None):
        self._model = model or self.model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    async def get_by_id(self, id: Any, for_update: bool = False) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Args:
            id: Primary key
            for_update: Lock the row until the transaction ends

        Returns:
            Model instance or None if not found
        """
        if id is None:
            return None
        if for_update:
            return await self._session.get(self._model, id, with_for_update=True)
        return await self._session.get(self._model, id)

    async def add(self, obj: ModelType) -> ModelType:
        """
        Insert a new record and flush so generated values are visible.

        Args:
            obj: Model instance to insert

        Returns:
            The same instance, now persistent
        """
        self._session.add(obj)
        await self._session.flush()
        return obj

    async def _first(self, stmt) -> Optional[ModelType]:
        result = await self._session.execute(stmt.limit(1))
        return result.scalars().first()

    async def _all(self, stmt) -> List[ModelType]:
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
