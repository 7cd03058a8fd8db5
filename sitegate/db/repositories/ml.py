"""Feature snapshots, model scores and recommendations."""

import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.models import MLFeatureSnapshot, ModelScore, Recommendation
from sitegate.db.repositories.base import BaseRepository
from sitegate.enums import RecommendationStatus

# Forward-only status moves for recommendations
_RECOMMENDATION_TRANSITIONS = {
    RecommendationStatus.ACTIVE: {
        RecommendationStatus.ACCEPTED,
        RecommendationStatus.REJECTED,
        RecommendationStatus.EXPIRED,
    },
}


class MLRepository(BaseRepository[MLFeatureSnapshot]):
    model = MLFeatureSnapshot

    async def add_snapshot(self, db: AsyncSession, **values) -> MLFeatureSnapshot:
        return await self.add(db, **values)

    async def add_score(self, db: AsyncSession, **values) -> ModelScore:
        score = ModelScore(**values)
        db.add(score)
        await db.flush()
        return score

    async def add_recommendation(self, db: AsyncSession, **values) -> Recommendation:
        rec = Recommendation(**values)
        db.add(rec)
        await db.flush()
        return rec

    async def list_snapshots(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[MLFeatureSnapshot]:
        result = await db.execute(
            select(MLFeatureSnapshot)
            .where(MLFeatureSnapshot.project_id == project_id)
            .order_by(MLFeatureSnapshot.created_at)
        )
        return result.scalars().all()

    async def list_scores(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[ModelScore]:
        result = await db.execute(
            select(ModelScore).where(ModelScore.project_id == project_id).order_by(ModelScore.created_at)
        )
        return result.scalars().all()

    async def list_recommendations(
        self, db: AsyncSession, project_id: uuid.UUID, status: Optional[RecommendationStatus] = None
    ) -> Sequence[Recommendation]:
        stmt = select(Recommendation).where(Recommendation.project_id == project_id)
        if status is not None:
            stmt = stmt.where(Recommendation.status == status)
        result = await db.execute(stmt.order_by(Recommendation.created_at))
        return result.scalars().all()

    async def set_recommendation_status(
        self, db: AsyncSession, rec_id: uuid.UUID, target: RecommendationStatus
    ) -> bool:
        """Move a recommendation forward. False if the current status does not allow it."""
        allowed_from = [
            src for src, targets in _RECOMMENDATION_TRANSITIONS.items() if target in targets
        ]
        if not allowed_from:
            return False
        result = await db.execute(
            update(Recommendation)
            .where(Recommendation.id == rec_id, Recommendation.status.in_(allowed_from))
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_stale(self, db: AsyncSession, now: datetime) -> int:
        """ACTIVE recommendations past expires_at → EXPIRED. Returns count."""
        result = await db.execute(
            update(Recommendation)
            .where(
                Recommendation.status == RecommendationStatus.ACTIVE,
                Recommendation.expires_at.is_not(None),
                Recommendation.expires_at < now,
            )
            .values(status=RecommendationStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


ml_repo = MLRepository()
