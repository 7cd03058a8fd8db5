"""
Project Service Tests.

Covers:
- Creation with suggested complexity, checklist and owner membership
- One-step phase transitions, hold/resume, cancel, terminal states
- Permit gate and guardrail on entering PERMIT_SUBMISSION
- Readiness completion, contract signing, design approval, reviews
"""

import uuid

import pytest
from hypothesis import given, strategies as st

from sitegate.db.models import Project
from sitegate.db.repositories.events import event_repo
from sitegate.db.repositories.projects import project_repo
from sitegate.enums import (
    PHASE_SEQUENCE,
    CloseoutStatus,
    ContractStatus,
    DesignStatus,
    EventType,
    MemberRole,
    PermitStatus,
    ProjectComplexity,
    ProjectStatus,
    ReadinessStatus,
)
from sitegate.errors import (
    ConflictError,
    GuardrailCode,
    GuardrailError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from sitegate.policy.schemas import ViolationType
from sitegate.services.audit import AuditLogger
from sitegate.services.projects import ProjectService, allowed_transition, suggest_complexity
from tests.factories import (
    FIXED_NOW,
    RecordingAuditSink,
    add_closeout,
    add_contract,
    add_design,
    add_readiness_item,
    create_project,
    make_permit_ready,
)

ACTOR = uuid.UUID("00000000-0000-0000-0000-0000000000c1")


def _service(audit_sink=None):
    return ProjectService(audit=AuditLogger(audit_sink or RecordingAuditSink()), clock=lambda: FIXED_NOW)


# ── Complexity & transitions (pure) ──────────────────────────────────────


class TestSuggestComplexity:
    @pytest.mark.parametrize(
        "project_type,expected",
        [
            ("NEW_CONSTRUCTION_RESIDENTIAL", ProjectComplexity.MAJOR),
            ("HEALTHCARE_FACILITY", ProjectComplexity.MAJOR),
            ("ADDITION_EXPANSION", ProjectComplexity.COMPLEX),
            ("COMMERCIAL_RENOVATION", ProjectComplexity.COMPLEX),
            ("INTERIOR_RENOVATION_LIGHT", ProjectComplexity.SIMPLE),
            ("KITCHEN_BATH_REMODEL", ProjectComplexity.SIMPLE),
            ("ROOF_REPLACEMENT", ProjectComplexity.MODERATE),
        ],
    )
    def test_suggestion(self, project_type, expected):
        assert suggest_complexity(project_type) == expected


def _project(status, before_hold=None) -> Project:
    return Project(status=status, status_before_hold=before_hold)


class TestAllowedTransition:
    def test_one_step_forward_only(self):
        assert allowed_transition(_project(ProjectStatus.PLANNING), ProjectStatus.DESIGN)
        assert not allowed_transition(_project(ProjectStatus.PLANNING), ProjectStatus.READINESS)
        assert not allowed_transition(_project(ProjectStatus.DESIGN), ProjectStatus.PLANNING)

    def test_hold_resumes_only_to_previous_phase(self):
        held = _project(ProjectStatus.ON_HOLD, before_hold=ProjectStatus.CONSTRUCTION)
        assert allowed_transition(held, ProjectStatus.CONSTRUCTION)
        assert not allowed_transition(held, ProjectStatus.CLOSEOUT)
        assert not allowed_transition(held, ProjectStatus.ON_HOLD)

    @given(st.sampled_from([s for s in ProjectStatus]))
    def test_terminal_states_never_move(self, target):
        for terminal in (ProjectStatus.COMPLETED, ProjectStatus.CANCELLED):
            assert not allowed_transition(_project(terminal), target)

    @given(st.sampled_from(PHASE_SEQUENCE[:-1]))
    def test_cancel_and_hold_from_any_live_phase(self, phase):
        assert allowed_transition(_project(phase), ProjectStatus.CANCELLED)
        assert allowed_transition(_project(phase), ProjectStatus.ON_HOLD)


# ── Creation ─────────────────────────────────────────────────────────────


class TestCreateProject:
    @pytest.mark.asyncio
    async def test_creates_checklist_owner_and_event(self, db):
        audit = RecordingAuditSink()
        project = await _service(audit).create_project(
            db, "Smith Residence", "RESIDENTIAL", "NEW_CONSTRUCTION_RESIDENTIAL", ACTOR
        )

        assert project.status == ProjectStatus.PLANNING
        assert project.complexity == ProjectComplexity.MAJOR
        assert await project_repo.get_checklist(db, project.id) is not None

        members = await project_repo.list_members(db, project.id)
        assert [(m.user_id, m.role) for m in members] == [(ACTOR, MemberRole.OWNER)]

        events = await event_repo.list_for_project(db, project.id, EventType.PROJECT_CREATED)
        assert events[0].payload == {
            "projectType": "NEW_CONSTRUCTION_RESIDENTIAL",
            "complexity": "MAJOR",
        }
        assert audit.actions == ["PROJECT_CREATED"]

    @pytest.mark.asyncio
    async def test_explicit_complexity_wins(self, db):
        project = await _service().create_project(
            db, "Shed", "RESIDENTIAL", "NEW_CONSTRUCTION_RESIDENTIAL", ACTOR,
            complexity=ProjectComplexity.SIMPLE,
        )
        assert project.complexity == ProjectComplexity.SIMPLE

    @pytest.mark.asyncio
    async def test_project_type_required(self, db):
        with pytest.raises(ValidationError):
            await _service().create_project(db, "Nameless", "RESIDENTIAL", "", ACTOR)


# ── Phase transitions ────────────────────────────────────────────────────


class TestTransitionPhase:
    @pytest.mark.asyncio
    async def test_forward_step_emits_status_change(self, db):
        project = await create_project(db, status=ProjectStatus.PLANNING)

        moved = await _service().transition_phase(db, project.id, ProjectStatus.DESIGN, ACTOR)

        assert moved.status == ProjectStatus.DESIGN
        events = await event_repo.list_for_project(db, project.id, EventType.STATUS_CHANGE)
        assert events[0].payload == {"from": "PLANNING", "to": "DESIGN"}

    @pytest.mark.asyncio
    async def test_skipping_a_phase_conflicts(self, db):
        project = await create_project(db, status=ProjectStatus.PLANNING)

        with pytest.raises(ConflictError):
            await _service().transition_phase(db, project.id, ProjectStatus.CONSTRUCTION, ACTOR)

    @pytest.mark.asyncio
    async def test_permit_phase_requires_gate(self, db):
        project = await create_project(db, status=ProjectStatus.CONTRACT_NEGOTIATION)

        with pytest.raises(PolicyViolationError):
            await _service().transition_phase(db, project.id, ProjectStatus.PERMIT_SUBMISSION, ACTOR)
        assert project.status == ProjectStatus.CONTRACT_NEGOTIATION

    @pytest.mark.asyncio
    async def test_permit_phase_after_gate_passes(self, db):
        project = await create_project(db, status=ProjectStatus.CONTRACT_NEGOTIATION)
        await make_permit_ready(db, project)

        moved = await _service().transition_phase(db, project.id, ProjectStatus.PERMIT_SUBMISSION, ACTOR)

        assert moved.status == ProjectStatus.PERMIT_SUBMISSION

    @pytest.mark.asyncio
    async def test_automated_permit_phase_blocked_even_when_ready(self, db):
        project = await create_project(db, status=ProjectStatus.CONTRACT_NEGOTIATION)
        await make_permit_ready(db, project)

        with pytest.raises(GuardrailError) as exc_info:
            await _service().transition_phase(
                db, project.id, ProjectStatus.PERMIT_SUBMISSION, None, automated=True
            )
        assert exc_info.value.code == GuardrailCode.AUTOMATION_ACTION_BLOCKED

    @pytest.mark.asyncio
    async def test_completion_requires_closeout(self, db):
        project = await create_project(db, status=ProjectStatus.CLOSEOUT)
        await add_closeout(db, project, CloseoutStatus.IN_PROGRESS)

        with pytest.raises(PolicyViolationError) as exc_info:
            await _service().transition_phase(db, project.id, ProjectStatus.COMPLETED, ACTOR)
        assert exc_info.value.violation_types == [ViolationType.CLOSEOUT_REQUIRED.value]

    @pytest.mark.asyncio
    async def test_hold_and_resume(self, db):
        project = await create_project(db, status=ProjectStatus.CONSTRUCTION)
        service = _service()

        held = await service.transition_phase(db, project.id, ProjectStatus.ON_HOLD, ACTOR)
        assert held.status_before_hold == ProjectStatus.CONSTRUCTION

        with pytest.raises(ConflictError):
            await service.transition_phase(db, project.id, ProjectStatus.CLOSEOUT, ACTOR)

        resumed = await service.transition_phase(db, project.id, ProjectStatus.CONSTRUCTION, ACTOR)
        assert resumed.status == ProjectStatus.CONSTRUCTION
        assert resumed.status_before_hold is None

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, db):
        project = await create_project(db, status=ProjectStatus.DESIGN)
        service = _service()
        await service.transition_phase(db, project.id, ProjectStatus.CANCELLED, ACTOR)

        with pytest.raises(ConflictError):
            await service.transition_phase(db, project.id, ProjectStatus.READINESS, ACTOR)

    @pytest.mark.asyncio
    async def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            await _service().transition_phase(db, uuid.uuid4(), ProjectStatus.DESIGN, ACTOR)


# ── Readiness, contracts, design ─────────────────────────────────────────


class TestPreConstructionActions:
    @pytest.mark.asyncio
    async def test_complete_readiness_item_is_idempotent(self, db):
        project = await create_project(db)
        item = await add_readiness_item(db, project, "Soil report")
        service = _service()

        done = await service.complete_readiness_item(db, item.id, ACTOR)
        await service.complete_readiness_item(db, item.id, ACTOR)

        assert done.status == ReadinessStatus.COMPLETED
        assert done.completed_by == ACTOR
        assert done.completed_at == FIXED_NOW
        events = await event_repo.list_for_project(db, project.id, EventType.READINESS_ITEM_COMPLETED)
        assert len(events) == 1
        assert events[0].payload["title"] == "Soil report"

    @pytest.mark.asyncio
    async def test_sign_contract(self, db):
        project = await create_project(db)
        contract = await add_contract(db, project, ContractStatus.SENT)

        signed = await _service().sign_contract(db, contract.id, ACTOR)

        assert signed.status == ContractStatus.FULLY_SIGNED
        assert signed.signed_at == FIXED_NOW
        assert await event_repo.count_by_type(db, project.id, EventType.CONTRACT_SIGNED) == 1

    @pytest.mark.asyncio
    async def test_automated_signing_blocked(self, db):
        project = await create_project(db)
        contract = await add_contract(db, project, ContractStatus.SENT)

        with pytest.raises(GuardrailError):
            await _service().sign_contract(db, contract.id, ACTOR, automated=True)
        assert contract.status == ContractStatus.SENT

    @pytest.mark.asyncio
    async def test_voided_contract_cannot_be_signed(self, db):
        project = await create_project(db)
        contract = await add_contract(db, project, ContractStatus.VOIDED)

        with pytest.raises(ConflictError):
            await _service().sign_contract(db, contract.id, ACTOR)

    @pytest.mark.asyncio
    async def test_approve_design_for_permit(self, db):
        project = await create_project(db)
        design = await add_design(db, project, DesignStatus.APPROVED, version_number=3)

        approved = await _service().approve_design_for_permit(db, design.id, ACTOR)

        assert approved.status == DesignStatus.APPROVED_FOR_PERMIT
        events = await event_repo.list_for_project(db, project.id, EventType.DESIGN_APPROVED)
        assert events[0].payload["versionNumber"] == 3


# ── Permits ──────────────────────────────────────────────────────────────


class TestSubmitPermit:
    @pytest.mark.asyncio
    async def test_blocked_submission_lists_violations(self, db):
        project = await create_project(db, status=ProjectStatus.PERMIT_SUBMISSION)
        await add_readiness_item(db, project, "Soil report")

        with pytest.raises(PolicyViolationError) as exc_info:
            await _service().submit_permit(db, project.id, ACTOR)

        assert set(exc_info.value.violation_types) == {
            "CONTRACT_NOT_SIGNED",
            "DESIGN_NOT_APPROVED",
            "READINESS_INCOMPLETE",
        }
        assert await project_repo.list_permit_sets(db, project.id) == []

    @pytest.mark.asyncio
    async def test_ready_project_submits(self, db):
        project = await create_project(db, status=ProjectStatus.PERMIT_SUBMISSION)
        await make_permit_ready(db, project)

        permit = await _service().submit_permit(db, project.id, ACTOR)

        assert permit.status == PermitStatus.SUBMITTED
        assert permit.submitted_at == FIXED_NOW
        events = await event_repo.list_for_project(db, project.id, EventType.PERMIT_SUBMITTED)
        assert events[0].payload == {"permitId": str(permit.id)}

    @pytest.mark.asyncio
    async def test_automation_blocked_before_gate(self, db):
        project = await create_project(db, status=ProjectStatus.PERMIT_SUBMISSION)

        with pytest.raises(GuardrailError):
            await _service().submit_permit(db, project.id, None, automated=True)


# ── Reviews ──────────────────────────────────────────────────────────────


class TestSubmitReview:
    @pytest.mark.asyncio
    async def test_review_after_closeout(self, db):
        project = await create_project(db, status=ProjectStatus.COMPLETED)
        await add_closeout(db, project)

        review = await _service().submit_review(db, project.id, ACTOR, 5, "Great crew")

        assert review.rating == 5
        assert await project_repo.count_reviews(db, project.id) == 1

    @pytest.mark.asyncio
    async def test_review_before_completion_blocked(self, db):
        project = await create_project(db, status=ProjectStatus.CONSTRUCTION)

        with pytest.raises(PolicyViolationError):
            await _service().submit_review(db, project.id, ACTOR, 4)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6])
    async def test_rating_out_of_range(self, db, rating):
        project = await create_project(db, status=ProjectStatus.COMPLETED)
        await add_closeout(db, project)

        with pytest.raises(ValidationError):
            await _service().submit_review(db, project.id, ACTOR, rating)

    @pytest.mark.asyncio
    async def test_one_review_per_reviewer(self, db):
        project = await create_project(db, status=ProjectStatus.COMPLETED)
        await add_closeout(db, project)
        service = _service()
        await service.submit_review(db, project.id, ACTOR, 4)

        with pytest.raises(ConflictError):
            await service.submit_review(db, project.id, ACTOR, 5)
