"""Subcontractor invites. Status moves only out of PENDING, each at most once."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.models import SubcontractorInvite
from sitegate.db.repositories.base import BaseRepository
from sitegate.enums import InviteStatus


class InviteRepository(BaseRepository[SubcontractorInvite]):
    model = SubcontractorInvite

    async def get_by_token(self, db: AsyncSession, token: str) -> Optional[SubcontractorInvite]:
        result = await db.execute(
            select(SubcontractorInvite).where(SubcontractorInvite.token == token)
        )
        return result.scalar_one_or_none()

    async def expire_if_pending(self, db: AsyncSession, invite_id: uuid.UUID) -> bool:
        """PENDING → EXPIRED. Repeated calls are no-ops returning False."""
        return await self._from_pending(db, invite_id, status=InviteStatus.EXPIRED)

    async def accept_if_pending(
        self, db: AsyncSession, invite_id: uuid.UUID, user_id: uuid.UUID, at: datetime
    ) -> bool:
        """PENDING → ACCEPTED, consuming the single-use token."""
        return await self._from_pending(
            db, invite_id, status=InviteStatus.ACCEPTED, accepted_by=user_id, accepted_at=at
        )

    async def _from_pending(self, db: AsyncSession, invite_id: uuid.UUID, **values) -> bool:
        result = await db.execute(
            update(SubcontractorInvite)
            .where(
                SubcontractorInvite.id == invite_id,
                SubcontractorInvite.status == InviteStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


invite_repo = InviteRepository()
