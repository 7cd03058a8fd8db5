"""
Feature Extractor.

Reads live project state and produces a ProjectFeatures value in five
groups (timeline, financial, team, progress, risk). The computation is a
pure function of persisted state plus the injected clock: identical state
and clock give identical feature_data. Every extraction persists a new
MLFeatureSnapshot; snapshots are never deduplicated.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.db.models import MLFeatureSnapshot
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.db.repositories.ml import MLRepository, ml_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import (
    ContractStatus,
    DesignStatus,
    EventType,
    MemberRole,
    MilestoneStatus,
    PermitStatus,
    ReadinessStatus,
    SnapshotReason,
)
from sitegate.errors import NotFoundError
from sitegate.ml.schemas import (
    FinancialFeatures,
    ProgressFeatures,
    ProjectFeatures,
    RiskFeatures,
    TeamFeatures,
    TimelineFeatures,
)

logger = structlog.get_logger(__name__)

FEATURE_VERSION = "1.0"

_DONE_MILESTONE = (MilestoneStatus.COMPLETED, MilestoneStatus.PAID)


def _days_between(later: datetime, earlier: datetime) -> int:
    return max(0, (later - earlier).days)


def _ratio(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole > 0 else 0.0


@dataclass
class Extraction:
    snapshot: MLFeatureSnapshot
    features: ProjectFeatures


class FeatureExtractor:
    """Derives and persists feature snapshots."""

    def __init__(
        self,
        projects: Optional[ProjectRepository] = None,
        events: Optional[EventRepository] = None,
        ml: Optional[MLRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.projects = projects or project_repo
        self.events = events or event_repo
        self.ml = ml or ml_repo
        self.clock = clock

    async def compute(self, db: AsyncSession, project_id: uuid.UUID) -> ProjectFeatures:
        """Read-only feature computation."""
        project = await self.projects.get_by_id(db, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        now = self.clock()

        contracts = await self.projects.list_contracts(db, project_id)
        designs = await self.projects.list_design_versions(db, project_id)
        readiness = await self.projects.list_readiness_items(db, project_id)
        permits = await self.projects.list_permit_sets(db, project_id)
        members = await self.projects.list_members(db, project_id)
        milestones = await self.projects.list_milestones(db, project_id)
        escrow = await self.projects.get_escrow_for_project(db, project_id)
        transitions = await self.events.count_by_type(db, project_id, EventType.STATUS_CHANGE)

        timeline = TimelineFeatures(
            days_active=_days_between(now, project.created_at),
            days_since_last_update=_days_between(now, project.updated_at),
            current_phase=project.status.value,
            phase_transitions=transitions,
        )

        completed = sum(1 for m in milestones if m.status in _DONE_MILESTONE)
        financial = FinancialFeatures(
            total_milestones=len(milestones),
            completed_milestones=completed,
            milestone_completion_rate=_ratio(completed, len(milestones)),
            escrow_funded=bool(escrow and escrow.funded),
            escrow_funded_amount=float(escrow.funded_amount) if escrow else 0.0,
        )

        roles = {m.role for m in members}
        team = TeamFeatures(
            team_size=len(members),
            has_contractor=bool(contracts) or MemberRole.PRIME_CONTRACTOR in roles,
            has_pm=MemberRole.PROJECT_MANAGER in roles,
            has_designer=bool(roles & {MemberRole.DESIGNER, MemberRole.ARCHITECT}),
        )

        readiness_done = sum(1 for i in readiness if i.status == ReadinessStatus.COMPLETED)
        approved_designs = sum(1 for d in designs if d.status == DesignStatus.APPROVED_FOR_PERMIT)
        progress = ProgressFeatures(
            readiness_progress=_ratio(readiness_done, len(readiness)),
            design_versions=len(designs),
            approved_designs=approved_designs,
            permit_sets=len(permits),
            issued_permits=sum(1 for p in permits if p.status == PermitStatus.APPROVED),
        )

        risk = RiskFeatures(
            overdue_milestones=sum(
                1 for m in milestones
                if m.due_date is not None and m.due_date < now and m.status not in _DONE_MILESTONE
            ),
            contracts_not_signed=sum(1 for c in contracts if c.status != ContractStatus.FULLY_SIGNED),
            designs_not_approved=len(designs) - approved_designs,
            incomplete_required_readiness=sum(
                1 for i in readiness if i.required and i.status != ReadinessStatus.COMPLETED
            ),
        )

        return ProjectFeatures(
            project_id=project.id,
            feature_version=FEATURE_VERSION,
            project_type=project.project_type,
            category=project.category,
            complexity=project.complexity.value,
            timeline=timeline,
            financial=financial,
            team=team,
            progress=progress,
            risk=risk,
        )

    async def extract(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        reason: SnapshotReason = SnapshotReason.SCHEDULED,
    ) -> Extraction:
        """Compute features and persist one immutable snapshot."""
        features = await self.compute(db, project_id)
        data = features.to_feature_data()
        snapshot = await self.ml.add_snapshot(
            db,
            project_id=project_id,
            feature_version=FEATURE_VERSION,
            snapshot_reason=reason,
            feature_data=data,
            timeline_features=data["timeline"],
            financial_features=data["financial"],
            team_features=data["team"],
            progress_features=data["progress"],
            risk_features=data["risk"],
        )
        logger.info(
            "features_extracted",
            project_id=str(project_id),
            snapshot_id=str(snapshot.id),
            reason=reason.value,
        )
        return Extraction(snapshot=snapshot, features=features)
