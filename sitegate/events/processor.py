"""
Event Processor.

Consumes one ProjectEvent per unit of work:

    extract features  (always)
    score risk        (contract signed, design approved, readiness item done, status change)
    recommend         (project created, status change, milestone overdue, payment delayed)
    mark processed    (same transaction as the outputs above)

Processing is best-effort. Any failure rolls back that event's unit of work,
is logged, and is not re-raised; the event stays unprocessed for the next
drain.
"""

import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.clock import utcnow
from sitegate.db.engine import unit_of_work
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.enums import EventType, SnapshotReason
from sitegate.errors import ConflictError
from sitegate.ml.features import FeatureExtractor
from sitegate.ml.recommendations import RecommendationGenerator
from sitegate.ml.scoring import RiskScorer

logger = structlog.get_logger(__name__)

SCORING_EVENTS = frozenset({
    EventType.CONTRACT_SIGNED,
    EventType.DESIGN_APPROVED,
    EventType.READINESS_ITEM_COMPLETED,
    EventType.STATUS_CHANGE,
})

RECOMMENDATION_EVENTS = frozenset({
    EventType.PROJECT_CREATED,
    EventType.STATUS_CHANGE,
    EventType.MILESTONE_OVERDUE,
    EventType.PAYMENT_DELAYED,
})


class EventProcessor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        extractor: Optional[FeatureExtractor] = None,
        scorer: Optional[RiskScorer] = None,
        recommender: Optional[RecommendationGenerator] = None,
        events: Optional[EventRepository] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.extractor = extractor or FeatureExtractor(clock=clock)
        self.scorer = scorer or RiskScorer(extractor=self.extractor)
        self.recommender = recommender or RecommendationGenerator(extractor=self.extractor, clock=clock)
        self.events = events or event_repo
        self.clock = clock

    async def process(self, event_id: uuid.UUID) -> bool:
        """
        Process one event. Returns True if it was processed by this call,
        False if it was missing, already processed, or failed.
        """
        try:
            async with unit_of_work(self.session_factory) as session:
                return await self._process(session, event_id)
        except Exception as e:
            logger.error("event_processing_failed", event_id=str(event_id), error=str(e))
            return False

    async def _process(self, session: AsyncSession, event_id: uuid.UUID) -> bool:
        event = await self.events.get_by_id(session, event_id)
        if event is None:
            logger.warning("event_not_found", event_id=str(event_id))
            return False
        if event.features_extracted:
            logger.debug("event_already_processed", event_id=str(event_id))
            return False

        extraction = await self.extractor.extract(session, event.project_id, SnapshotReason.EVENT)
        ran = ["features"]

        if event.event_type in SCORING_EVENTS:
            await self.scorer.score(
                session,
                event.project_id,
                features=extraction.features,
                snapshot_id=extraction.snapshot.id,
            )
            ran.append("risk")

        if event.event_type in RECOMMENDATION_EVENTS:
            await self.recommender.generate(session, event.project_id, features=extraction.features)
            ran.append("recommendation")

        # Conditional update: a concurrent processor that got here first wins,
        # and this transaction's outputs are discarded with the rollback.
        if not await self.events.mark_processed(session, event.id, self.clock()):
            raise ConflictError("Event was processed concurrently", event_id=str(event.id))

        logger.info(
            "event_processed",
            event_id=str(event.id),
            event_type=event.event_type,
            project_id=str(event.project_id),
            ran=ran,
        )
        return True

    async def process_pending(self, limit: int = 100) -> int:
        """Drain unprocessed events oldest-first. Returns how many succeeded."""
        async with self.session_factory() as session:
            pending = [e.id for e in await self.events.list_unprocessed(session, limit)]

        processed = 0
        for event_id in pending:
            if await self.process(event_id):
                processed += 1
        logger.info("pending_events_drained", found=len(pending), processed=processed)
        return processed
