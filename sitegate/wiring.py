"""
Service wiring for a running process.

Builds every service around one session factory with database-backed
audit and notification sinks. Tests construct services directly with
fakes instead.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.db.engine import get_session_factory
from sitegate.escrow.payment_rail import HttpPaymentRail, PaymentRail
from sitegate.escrow.service import EscrowReleaseService
from sitegate.events.processor import EventProcessor
from sitegate.ml.features import FeatureExtractor
from sitegate.ml.recommendations import RecommendationGenerator
from sitegate.ml.scoring import RiskScorer
from sitegate.policy.gates import PolicyGate
from sitegate.services.audit import AuditLogger, DatabaseAuditSink
from sitegate.services.batch import BatchProcessor
from sitegate.services.contractors import ContractorService
from sitegate.services.disputes import DisputeService
from sitegate.services.notifications import DatabaseNotificationSink, Notifier
from sitegate.services.projects import ProjectService


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    gate: PolicyGate
    projects: ProjectService
    escrow: EscrowReleaseService
    disputes: DisputeService
    contractors: ContractorService
    events: EventProcessor
    batch: BatchProcessor


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    payment_rail: Optional[PaymentRail] = None,
) -> Services:
    factory = session_factory or get_session_factory()
    audit = AuditLogger(DatabaseAuditSink(factory))
    notifier = Notifier(DatabaseNotificationSink(factory))
    gate = PolicyGate()

    extractor = FeatureExtractor()
    scorer = RiskScorer(extractor=extractor)
    recommender = RecommendationGenerator(extractor=extractor)
    events = EventProcessor(factory, extractor=extractor, scorer=scorer, recommender=recommender)

    return Services(
        session_factory=factory,
        gate=gate,
        projects=ProjectService(gate=gate, audit=audit),
        escrow=EscrowReleaseService(
            payment_rail or HttpPaymentRail(), gate=gate, audit=audit, notifier=notifier
        ),
        disputes=DisputeService(audit=audit),
        contractors=ContractorService(factory, gate=gate, audit=audit),
        events=events,
        batch=BatchProcessor(
            factory,
            extractor=extractor,
            scorer=scorer,
            recommender=recommender,
            event_processor=events,
        ),
    )
