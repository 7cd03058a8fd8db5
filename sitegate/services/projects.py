"""
Project lifecycle service.

Owns every mutation that moves a project forward: creation, phase
transitions, readiness completion, contract signing, design approval,
permit submission and reviews. Each mutation appends the ProjectEvent the
event processor reacts to. Automated callers pass ``automated=True`` and
are checked against the guardrail before any restricted action.
"""

import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.db.models import (
    ContractAgreement,
    DesignVersion,
    PermitSet,
    Project,
    ReadinessChecklist,
    ReadinessItem,
    Review,
)
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import (
    PHASE_SEQUENCE,
    TERMINAL_STATUSES,
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
from sitegate.errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from sitegate.policy.gates import PolicyGate
from sitegate.policy.guardrail import RestrictedAction, check_automation_action
from sitegate.policy.schemas import Violation, ViolationType
from sitegate.services.audit import AuditLogger

logger = structlog.get_logger(__name__)

MAJOR_PROJECT_TYPES = frozenset({
    "NEW_CONSTRUCTION_RESIDENTIAL",
    "NEW_CONSTRUCTION_COMMERCIAL",
    "WHOLE_HOUSE_RENOVATION",
    "MIXED_USE_DEVELOPMENT",
    "MANUFACTURING_FACILITY",
    "SCHOOL_FACILITY",
    "HEALTHCARE_FACILITY",
    "GOVERNMENT_BUILDING",
})

COMPLEX_PROJECT_TYPES = frozenset({
    "ADDITION_EXPANSION",
    "INTERIOR_RENOVATION_MAJOR",
    "COMMERCIAL_RENOVATION",
    "INDUSTRIAL_RENOVATION",
})


def suggest_complexity(project_type: str) -> ProjectComplexity:
    """Heuristic complexity from project type when the creator gives none."""
    if project_type in MAJOR_PROJECT_TYPES:
        return ProjectComplexity.MAJOR
    if project_type in COMPLEX_PROJECT_TYPES:
        return ProjectComplexity.COMPLEX
    if "LIGHT" in project_type or project_type == "KITCHEN_BATH_REMODEL":
        return ProjectComplexity.SIMPLE
    return ProjectComplexity.MODERATE


def allowed_transition(project: Project, target: ProjectStatus) -> bool:
    """
    Phase moves are one step forward along PHASE_SEQUENCE.

    ON_HOLD can be entered from any live phase and only resumes to the phase
    it paused; CANCELLED can be entered from any live phase.
    """
    current = project.status
    if current in TERMINAL_STATUSES or current == target:
        return False
    if target == ProjectStatus.CANCELLED:
        return True
    if target == ProjectStatus.ON_HOLD:
        return current != ProjectStatus.ON_HOLD
    if current == ProjectStatus.ON_HOLD:
        return target == project.status_before_hold
    idx = PHASE_SEQUENCE.index(current)
    return idx + 1 < len(PHASE_SEQUENCE) and PHASE_SEQUENCE[idx + 1] == target


class ProjectService:
    def __init__(
        self,
        gate: Optional[PolicyGate] = None,
        projects: Optional[ProjectRepository] = None,
        events: Optional[EventRepository] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable = utcnow,
    ):
        self.projects = projects or project_repo
        self.events = events or event_repo
        self.gate = gate or PolicyGate(projects=self.projects, clock=clock)
        self.audit = audit or AuditLogger()
        self.clock = clock

    async def _get_project(self, db: AsyncSession, project_id: uuid.UUID) -> Project:
        project = await self.projects.get_by_id(db, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    # ── Creation ─────────────────────────────────────────────────────────

    async def create_project(
        self,
        db: AsyncSession,
        name: str,
        category: str,
        project_type: str,
        owner_id: uuid.UUID,
        complexity: Optional[ProjectComplexity] = None,
        description: Optional[str] = None,
    ) -> Project:
        if not project_type:
            raise ValidationError("project_type is required", field="project_type")

        complexity = complexity or suggest_complexity(project_type)
        project = await self.projects.add(
            db,
            name=name,
            description=description,
            category=category,
            project_type=project_type,
            complexity=complexity,
            owner_id=owner_id,
            status=ProjectStatus.PLANNING,
        )
        db.add(ReadinessChecklist(project_id=project.id))
        await self.projects.add_member(db, project.id, owner_id, MemberRole.OWNER)

        await self.events.append(
            db,
            project.id,
            EventType.PROJECT_CREATED,
            {"projectType": project_type, "complexity": complexity.value},
            user_id=owner_id,
        )
        logger.info("project_created", project_id=str(project.id), complexity=complexity.value)
        await self.audit.log("PROJECT_CREATED", "Project", project.id, user_id=owner_id)
        return project

    # ── Phase transitions ────────────────────────────────────────────────

    async def transition_phase(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        target: ProjectStatus,
        actor_id: Optional[uuid.UUID],
        automated: bool = False,
    ) -> Project:
        project = await self._get_project(db, project_id)
        previous = project.status

        if not allowed_transition(project, target):
            raise ConflictError(
                f"Cannot move project from {previous.value} to {target.value}",
                project_id=str(project_id),
                current=previous.value,
                target=target.value,
            )

        if target == ProjectStatus.PERMIT_SUBMISSION:
            if automated:
                check_automation_action(RestrictedAction.SUBMIT_PERMIT)
            await self.gate.enforce_permit_submission(db, project_id)

        if target == ProjectStatus.COMPLETED:
            closeout = await self.projects.get_closeout(db, project_id)
            if closeout is None or closeout.status != CloseoutStatus.COMPLETED:
                raise PolicyViolationError("project_completion", [Violation(
                    type=ViolationType.CLOSEOUT_REQUIRED,
                    message="Project closeout must be completed before the project is completed",
                )])

        if target == ProjectStatus.ON_HOLD:
            project.status_before_hold = previous
        elif previous == ProjectStatus.ON_HOLD:
            project.status_before_hold = None
        project.status = target
        await db.flush()

        await self.events.append(
            db,
            project_id,
            EventType.STATUS_CHANGE,
            {"from": previous.value, "to": target.value},
            user_id=actor_id,
        )
        logger.info(
            "project_phase_changed",
            project_id=str(project_id),
            from_status=previous.value,
            to_status=target.value,
        )
        await self.audit.log(
            "PROJECT_STATUS_CHANGED",
            "Project",
            project_id,
            user_id=actor_id,
            previous_data={"status": previous.value},
            new_data={"status": target.value},
        )
        return project

    # ── Readiness ────────────────────────────────────────────────────────

    async def complete_readiness_item(
        self, db: AsyncSession, item_id: uuid.UUID, completed_by: uuid.UUID
    ) -> ReadinessItem:
        """Mark an item COMPLETED. Completing it twice is a no-op."""
        item = await self.projects.get_readiness_item(db, item_id)
        if item is None:
            raise NotFoundError("ReadinessItem", item_id)
        if item.status == ReadinessStatus.COMPLETED:
            return item

        item.status = ReadinessStatus.COMPLETED
        item.completed_by = completed_by
        item.completed_at = self.clock()
        await db.flush()

        checklist = await db.get(ReadinessChecklist, item.checklist_id)
        await self.events.append(
            db,
            checklist.project_id,
            EventType.READINESS_ITEM_COMPLETED,
            {"itemId": str(item.id), "title": item.title},
            user_id=completed_by,
        )
        logger.info("readiness_item_completed", item_id=str(item.id), project_id=str(checklist.project_id))
        return item

    # ── Contracts & design ───────────────────────────────────────────────

    async def sign_contract(
        self,
        db: AsyncSession,
        contract_id: uuid.UUID,
        signed_by: uuid.UUID,
        automated: bool = False,
    ) -> ContractAgreement:
        if automated:
            check_automation_action(RestrictedAction.SIGN_CONTRACT)

        contract = await db.get(ContractAgreement, contract_id)
        if contract is None:
            raise NotFoundError("ContractAgreement", contract_id)
        if contract.status == ContractStatus.VOIDED:
            raise ConflictError("A voided contract cannot be signed", contract_id=str(contract_id))
        if contract.status == ContractStatus.FULLY_SIGNED:
            return contract

        previous = contract.status
        contract.status = ContractStatus.FULLY_SIGNED
        contract.signed_at = self.clock()
        await db.flush()

        await self.events.append(
            db,
            contract.project_id,
            EventType.CONTRACT_SIGNED,
            {"contractId": str(contract.id)},
            user_id=signed_by,
        )
        await self.audit.log(
            "CONTRACT_SIGNED",
            "ContractAgreement",
            contract.id,
            user_id=signed_by,
            previous_data={"status": previous.value},
            new_data={"status": contract.status.value},
        )
        return contract

    async def approve_design_for_permit(
        self, db: AsyncSession, design_id: uuid.UUID, approved_by: uuid.UUID
    ) -> DesignVersion:
        design = await db.get(DesignVersion, design_id)
        if design is None:
            raise NotFoundError("DesignVersion", design_id)
        if design.status == DesignStatus.APPROVED_FOR_PERMIT:
            return design

        design.status = DesignStatus.APPROVED_FOR_PERMIT
        await db.flush()
        await self.events.append(
            db,
            design.project_id,
            EventType.DESIGN_APPROVED,
            {"designVersionId": str(design.id), "versionNumber": design.version_number},
            user_id=approved_by,
        )
        await self.audit.log("DESIGN_APPROVED", "DesignVersion", design.id, user_id=approved_by)
        return design

    # ── Permits ──────────────────────────────────────────────────────────

    async def submit_permit(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        submitted_by: Optional[uuid.UUID],
        automated: bool = False,
    ) -> PermitSet:
        """Create a SUBMITTED permit set once the permit gate passes."""
        if automated:
            check_automation_action(RestrictedAction.SUBMIT_PERMIT)
        await self.gate.enforce_permit_submission(db, project_id)

        permit = PermitSet(
            project_id=project_id,
            status=PermitStatus.SUBMITTED,
            submitted_by=submitted_by,
            submitted_at=self.clock(),
        )
        db.add(permit)
        await db.flush()

        await self.events.append(
            db, project_id, EventType.PERMIT_SUBMITTED, {"permitId": str(permit.id)}, user_id=submitted_by
        )
        logger.info("permit_submitted", project_id=str(project_id), permit_id=str(permit.id))
        await self.audit.log("PERMIT_SUBMITTED", "PermitSet", permit.id, user_id=submitted_by)
        return permit

    # ── Reviews ──────────────────────────────────────────────────────────

    async def submit_review(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating", value=rating)
        await self.gate.enforce_review_submission(db, project_id)

        review = Review(project_id=project_id, reviewer_id=reviewer_id, rating=rating, comment=comment)
        db.add(review)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Reviewer has already reviewed this project",
                project_id=str(project_id),
                reviewer_id=str(reviewer_id),
            ) from e

        await self.events.append(
            db, project_id, EventType.REVIEW_SUBMITTED, {"reviewId": str(review.id), "rating": rating},
            user_id=reviewer_id,
        )
        await self.audit.log("REVIEW_SUBMITTED", "Review", review.id, user_id=reviewer_id)
        return review
