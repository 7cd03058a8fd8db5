"""
Generic async repository.

Repositories hold no session state: every method takes the caller's
``AsyncSession`` so the caller decides the transaction boundary.
"""

import uuid
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.engine import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Common lookups shared by every aggregate repository."""

    model: Type[ModelT]

    def __init__(self, model: Optional[Type[ModelT]] = None):
        if model is not None:
            self.model = model

    async def add(self, db: AsyncSession, **values: Any) -> ModelT:
        """Insert a new row and flush so generated defaults are populated."""
        obj = self.model(**values)
        db.add(obj)
        await db.flush()
        return obj

    async def get_by_id(self, db: AsyncSession, id: uuid.UUID) -> Optional[ModelT]:
        return await db.get(self.model, id)

    async def reload(self, db: AsyncSession, id: uuid.UUID) -> Optional[ModelT]:
        """Re-read a row after a conditional UPDATE, bypassing the identity map."""
        return await db.get(self.model, id, populate_existing=True)

    async def list_where(self, db: AsyncSession, *criteria: Any) -> Sequence[ModelT]:
        result = await db.execute(select(self.model).where(*criteria))
        return result.scalars().all()
