"""
Feature Extractor Tests.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from sitegate.db.models import Milestone
from sitegate.db.repositories.events import event_repo
from sitegate.db.repositories.ml import ml_repo
from sitegate.db.repositories.projects import project_repo
from sitegate.enums import (
    ContractStatus,
    DesignStatus,
    EventType,
    MemberRole,
    MilestoneStatus,
    ProjectStatus,
    ReadinessStatus,
    SnapshotReason,
)
from sitegate.errors import NotFoundError
from sitegate.ml.features import FEATURE_VERSION, FeatureExtractor
from tests.factories import (
    FIXED_NOW,
    add_contract,
    add_design,
    add_readiness_item,
    create_escrow_setup,
    create_project,
)


async def _populated_project(db):
    project = await create_project(db, status=ProjectStatus.CONSTRUCTION)
    setup = await create_escrow_setup(db, project=project)

    db.add(Milestone(
        project_id=project.id,
        escrow_id=setup.escrow.id,
        name="Drywall",
        amount=Decimal("8000.00"),
        status=MilestoneStatus.PENDING,
        due_date=FIXED_NOW - timedelta(days=3),
    ))
    db.add(Milestone(
        project_id=project.id,
        escrow_id=setup.escrow.id,
        name="Foundation",
        amount=Decimal("9000.00"),
        status=MilestoneStatus.PAID,
        due_date=FIXED_NOW - timedelta(days=30),
    ))
    await db.flush()

    await add_contract(db, project, ContractStatus.FULLY_SIGNED)
    await add_contract(db, project, ContractStatus.DRAFT)
    await add_design(db, project, DesignStatus.APPROVED_FOR_PERMIT, version_number=1)
    await add_design(db, project, DesignStatus.DRAFT, version_number=2)
    await add_readiness_item(db, project, "Soil report", status=ReadinessStatus.COMPLETED, order=1)
    await add_readiness_item(db, project, "Utility locate", order=2)
    await add_readiness_item(db, project, "Neighbour notice", required=False, order=3)

    await project_repo.add_member(db, project.id, uuid.uuid4(), MemberRole.PROJECT_MANAGER)
    await project_repo.add_member(db, project.id, uuid.uuid4(), MemberRole.ARCHITECT)

    await event_repo.append(db, project.id, EventType.STATUS_CHANGE, {"from": "PLANNING", "to": "DESIGN"})
    await event_repo.append(db, project.id, EventType.STATUS_CHANGE, {"from": "DESIGN", "to": "READINESS"})
    return project


class TestFeatureExtractor:
    def setup_method(self):
        self.extractor = FeatureExtractor(clock=lambda: FIXED_NOW)

    @pytest.mark.asyncio
    async def test_groups_reflect_project_state(self, db):
        project = await _populated_project(db)

        features = await self.extractor.compute(db, project.id)

        assert features.feature_version == FEATURE_VERSION
        assert features.timeline.current_phase == "CONSTRUCTION"
        assert features.timeline.days_active == 56
        assert features.timeline.phase_transitions == 2

        assert features.financial.total_milestones == 3
        assert features.financial.completed_milestones == 2
        assert features.financial.milestone_completion_rate == 0.6667
        assert features.financial.escrow_funded is True
        assert features.financial.escrow_funded_amount == 50000.0

        assert features.team.team_size == 2
        assert features.team.has_contractor is True
        assert features.team.has_pm is True
        assert features.team.has_designer is True

        assert features.progress.readiness_progress == 0.3333
        assert features.progress.design_versions == 2
        assert features.progress.approved_designs == 1

        assert features.risk.overdue_milestones == 1
        assert features.risk.contracts_not_signed == 1
        assert features.risk.designs_not_approved == 1
        assert features.risk.incomplete_required_readiness == 1

    @pytest.mark.asyncio
    async def test_empty_project_has_zero_ratios(self, db):
        project = await create_project(db, status=ProjectStatus.PLANNING)

        features = await self.extractor.compute(db, project.id)

        assert features.financial.milestone_completion_rate == 0.0
        assert features.progress.readiness_progress == 0.0
        assert features.team.has_contractor is False
        assert features.financial.escrow_funded is False

    @pytest.mark.asyncio
    async def test_extraction_is_deterministic_but_not_deduplicated(self, db):
        project = await _populated_project(db)

        first = await self.extractor.extract(db, project.id)
        second = await self.extractor.extract(db, project.id, SnapshotReason.MANUAL)

        assert first.snapshot.id != second.snapshot.id
        assert first.snapshot.feature_data == second.snapshot.feature_data
        assert second.snapshot.snapshot_reason == SnapshotReason.MANUAL
        assert len(await ml_repo.list_snapshots(db, project.id)) == 2

    @pytest.mark.asyncio
    async def test_snapshot_stores_each_group(self, db):
        project = await _populated_project(db)

        extraction = await self.extractor.extract(db, project.id)

        data = extraction.snapshot.feature_data
        assert extraction.snapshot.risk_features == data["risk"]
        assert extraction.snapshot.timeline_features == data["timeline"]
        assert data["project_id"] == str(project.id)

    @pytest.mark.asyncio
    async def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            await self.extractor.compute(db, uuid.uuid4())
