"""
Batch sweeps over active projects.

Scheduler-independent entry points; ``sitegate.scheduler`` only calls them
on a timer. Each project runs in its own unit of work: one project's
failure is logged and counted, and the sweep continues.
"""

import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.clock import utcnow
from sitegate.db.engine import unit_of_work
from sitegate.db.repositories.ml import MLRepository, ml_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import ProjectStatus, SnapshotReason
from sitegate.events.processor import EventProcessor
from sitegate.ml.features import FeatureExtractor
from sitegate.ml.recommendations import RecommendationGenerator
from sitegate.ml.scoring import RiskScorer

logger = structlog.get_logger(__name__)

DAILY_SCORING_STATUSES = (
    ProjectStatus.DESIGN,
    ProjectStatus.READINESS,
    ProjectStatus.CONTRACT_NEGOTIATION,
    ProjectStatus.CONSTRUCTION,
    ProjectStatus.PERMIT_SUBMISSION,
)

WEEKLY_RECOMMENDATION_STATUSES = (
    ProjectStatus.DESIGN,
    ProjectStatus.READINESS,
    ProjectStatus.CONTRACT_NEGOTIATION,
    ProjectStatus.CONSTRUCTION,
)


@dataclass
class BatchResult:
    job: str
    processed: int = 0
    failed: int = 0
    failures: dict[str, str] = field(default_factory=dict)


class BatchProcessor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        extractor: Optional[FeatureExtractor] = None,
        scorer: Optional[RiskScorer] = None,
        recommender: Optional[RecommendationGenerator] = None,
        event_processor: Optional[EventProcessor] = None,
        projects: Optional[ProjectRepository] = None,
        ml: Optional[MLRepository] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.extractor = extractor or FeatureExtractor(clock=clock)
        self.scorer = scorer or RiskScorer(extractor=self.extractor)
        self.recommender = recommender or RecommendationGenerator(extractor=self.extractor, clock=clock)
        self.event_processor = event_processor or EventProcessor(
            session_factory,
            extractor=self.extractor,
            scorer=self.scorer,
            recommender=self.recommender,
            clock=clock,
        )
        self.projects = projects or project_repo
        self.ml = ml or ml_repo
        self.clock = clock

    async def run_daily_scoring(self) -> BatchResult:
        """Feature snapshot + permit risk score for every active project."""
        return await self._sweep("daily_scoring", DAILY_SCORING_STATUSES, self._score_project)

    async def run_weekly_recommendations(self) -> BatchResult:
        """One fresh recommendation per active project."""
        return await self._sweep(
            "weekly_recommendations", WEEKLY_RECOMMENDATION_STATUSES, self._recommend_project
        )

    async def expire_stale_recommendations(self) -> int:
        """ACTIVE recommendations past expires_at → EXPIRED."""
        async with unit_of_work(self.session_factory) as session:
            expired = await self.ml.expire_stale(session, self.clock())
        logger.info("recommendations_expired", count=expired)
        return expired

    async def process_pending_events(self, limit: int = 100) -> int:
        """Retry events that were never marked processed."""
        return await self.event_processor.process_pending(limit)

    async def _score_project(self, session: AsyncSession, project_id: uuid.UUID) -> None:
        extraction = await self.extractor.extract(session, project_id, SnapshotReason.SCHEDULED)
        await self.scorer.score(
            session, project_id, features=extraction.features, snapshot_id=extraction.snapshot.id
        )

    async def _recommend_project(self, session: AsyncSession, project_id: uuid.UUID) -> None:
        await self.recommender.generate(session, project_id, reason=SnapshotReason.SCHEDULED)

    async def _sweep(
        self,
        job: str,
        statuses: Sequence[ProjectStatus],
        work: Callable[[AsyncSession, uuid.UUID], Awaitable[None]],
    ) -> BatchResult:
        logger.info("batch_started", job=job)
        async with self.session_factory() as session:
            project_ids = [p.id for p in await self.projects.list_by_status(session, statuses)]

        result = BatchResult(job=job)
        for project_id in project_ids:
            try:
                async with unit_of_work(self.session_factory) as session:
                    await work(session, project_id)
                result.processed += 1
            except Exception as e:
                result.failed += 1
                result.failures[str(project_id)] = str(e)
                logger.error("batch_project_failed", job=job, project_id=str(project_id), error=str(e))

        logger.info("batch_completed", job=job, processed=result.processed, failed=result.failed)
        return result
