"""Project event log (append-only) and its processing marker."""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.models import ProjectEvent
from sitegate.db.repositories.base import BaseRepository
from sitegate.enums import EventType


class EventRepository(BaseRepository[ProjectEvent]):
    model = ProjectEvent

    async def append(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        event_type: EventType | str,
        payload: Optional[dict[str, Any]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProjectEvent:
        return await self.add(
            db,
            project_id=project_id,
            event_type=str(event_type),
            payload=payload or {},
            user_id=user_id,
        )

    async def mark_processed(self, db: AsyncSession, event_id: uuid.UUID, at: datetime) -> bool:
        """Set features_extracted once. False if it was already set."""
        result = await db.execute(
            update(ProjectEvent)
            .where(ProjectEvent.id == event_id, ProjectEvent.features_extracted.is_(False))
            .values(features_extracted=True, processed_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_unprocessed(self, db: AsyncSession, limit: int = 100) -> Sequence[ProjectEvent]:
        result = await db.execute(
            select(ProjectEvent)
            .where(ProjectEvent.features_extracted.is_(False))
            .order_by(ProjectEvent.timestamp)
            .limit(limit)
        )
        return result.scalars().all()

    async def list_for_project(
        self, db: AsyncSession, project_id: uuid.UUID, event_type: Optional[str] = None
    ) -> Sequence[ProjectEvent]:
        stmt = select(ProjectEvent).where(ProjectEvent.project_id == project_id)
        if event_type is not None:
            stmt = stmt.where(ProjectEvent.event_type == str(event_type))
        result = await db.execute(stmt.order_by(ProjectEvent.timestamp))
        return result.scalars().all()

    async def count_by_type(self, db: AsyncSession, project_id: uuid.UUID, event_type: str) -> int:
        return await db.scalar(
            select(func.count())
            .select_from(ProjectEvent)
            .where(ProjectEvent.project_id == project_id, ProjectEvent.event_type == str(event_type))
        ) or 0


event_repo = EventRepository()
