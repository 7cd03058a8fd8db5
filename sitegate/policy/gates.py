"""
Policy Gate.

Decision functions evaluated against live persisted state (never against a
cached feature snapshot). They do not mutate state, with one exception:
the registration gate flips an expired invite to EXPIRED before rejecting.

Gate styles:
- permit / review: accumulate every violation, never fail fast
- escrow release: single reason, checked in order, first failure wins
- registration: hard rejection (authorization failure, not a violation list)
"""

import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.db.models import SubcontractorInvite
from sitegate.db.repositories.escrow import EscrowRepository, escrow_repo
from sitegate.db.repositories.invites import InviteRepository, invite_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import (
    CloseoutStatus,
    InviteStatus,
    MilestoneStatus,
    ProjectStatus,
    VerificationStatus,
)
from sitegate.errors import NotFoundError, PolicyViolationError, RegistrationRejectedError
from sitegate.policy.schemas import ReleaseDecision, Violation, ViolationType

logger = structlog.get_logger(__name__)

# Escrow gate reasons
REASON_ESCROW_NOT_FOUND = "Escrow not found"
REASON_DISPUTE_FREEZE = "Escrow releases are frozen due to active dispute"
REASON_MILESTONE_NOT_FOUND = "Milestone not found"
REASON_MILESTONE_MISMATCH = "Milestone does not belong to this escrow's project"
REASON_ALREADY_RELEASED = "Milestone has already been released"
REASON_UNVERIFIED = "All verification items must be verified before release"


class PolicyGate:
    """Phase-transition, release and registration rules."""

    def __init__(
        self,
        projects: Optional[ProjectRepository] = None,
        escrow: Optional[EscrowRepository] = None,
        invites: Optional[InviteRepository] = None,
        clock: Callable = utcnow,
    ):
        self.projects = projects or project_repo
        self.escrow = escrow or escrow_repo
        self.invites = invites or invite_repo
        self.clock = clock

    # ── Permit submission ────────────────────────────────────────────────

    async def check_permit_submission(self, db: AsyncSession, project_id: uuid.UUID) -> list[Violation]:
        project = await self.projects.get_by_id(db, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)

        violations: list[Violation] = []

        if not await self.projects.has_fully_signed_contract(db, project_id):
            violations.append(Violation(
                type=ViolationType.CONTRACT_NOT_SIGNED,
                message="Contract must be fully signed before permit submission",
            ))

        if not await self.projects.has_design_approved_for_permit(db, project_id):
            violations.append(Violation(
                type=ViolationType.DESIGN_NOT_APPROVED,
                message="Design must be approved for permit before submission",
            ))

        incomplete = await self.projects.incomplete_required_items(db, project_id)
        if incomplete:
            titles = ", ".join(item.title for item in incomplete)
            violations.append(Violation(
                type=ViolationType.READINESS_INCOMPLETE,
                message=f"{len(incomplete)} required readiness items must be completed: {titles}",
            ))

        if violations:
            logger.warning(
                "permit_gate_blocked",
                project_id=str(project_id),
                violations=[v.type.value for v in violations],
            )
        else:
            logger.info("permit_gate_passed", project_id=str(project_id))
        return violations

    async def enforce_permit_submission(self, db: AsyncSession, project_id: uuid.UUID) -> None:
        violations = await self.check_permit_submission(db, project_id)
        if violations:
            raise PolicyViolationError("permit_submission", violations)

    # ── Escrow release ───────────────────────────────────────────────────

    async def check_escrow_release(
        self, db: AsyncSession, escrow_id: uuid.UUID, milestone_id: uuid.UUID
    ) -> ReleaseDecision:
        escrow = await self.escrow.get_escrow(db, escrow_id)
        if escrow is None:
            return ReleaseDecision.deny(REASON_ESCROW_NOT_FOUND)

        if await self.escrow.has_active_dispute(db, escrow.project_id):
            return ReleaseDecision.deny(REASON_DISPUTE_FREEZE)

        milestone = await self.escrow.get_milestone(db, milestone_id)
        if milestone is None:
            return ReleaseDecision.deny(REASON_MILESTONE_NOT_FOUND)
        if milestone.project_id != escrow.project_id or (
            milestone.escrow_id is not None and milestone.escrow_id != escrow.id
        ):
            return ReleaseDecision.deny(REASON_MILESTONE_MISMATCH)
        if milestone.status == MilestoneStatus.PAID or await self.escrow.has_completed_release(
            db, milestone_id
        ):
            return ReleaseDecision.deny(REASON_ALREADY_RELEASED)

        items = await self.escrow.list_verification_items(db, milestone_id)
        if any(item.status != VerificationStatus.VERIFIED for item in items):
            return ReleaseDecision.deny(REASON_UNVERIFIED)

        return ReleaseDecision.allow()

    # ── Review submission ────────────────────────────────────────────────

    async def check_review_submission(self, db: AsyncSession, project_id: uuid.UUID) -> list[Violation]:
        project = await self.projects.get_by_id(db, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)

        violations: list[Violation] = []
        if project.status != ProjectStatus.COMPLETED:
            violations.append(Violation(
                type=ViolationType.PROJECT_NOT_COMPLETED,
                message="Project must be completed before reviews can be submitted",
            ))

        closeout = await self.projects.get_closeout(db, project_id)
        if closeout is None or closeout.status != CloseoutStatus.COMPLETED:
            violations.append(Violation(
                type=ViolationType.CLOSEOUT_INCOMPLETE,
                message="Project closeout must be completed",
            ))
        if closeout is None or not closeout.final_payment_released:
            violations.append(Violation(
                type=ViolationType.FINAL_PAYMENT_NOT_RELEASED,
                message="Final payment must be released",
            ))

        if violations:
            logger.warning(
                "review_gate_blocked",
                project_id=str(project_id),
                violations=[v.type.value for v in violations],
            )
        return violations

    async def enforce_review_submission(self, db: AsyncSession, project_id: uuid.UUID) -> None:
        violations = await self.check_review_submission(db, project_id)
        if violations:
            raise PolicyViolationError("review_submission", violations)

    # ── Contractor self-registration ─────────────────────────────────────

    async def check_contractor_registration(
        self, db: AsyncSession, invite_token: Optional[str]
    ) -> SubcontractorInvite:
        """
        Resolve a usable invite or raise RegistrationRejectedError.

        An invite past ``expires_at`` is flipped to EXPIRED (conditional
        update, so at most once) and then rejected. The caller must commit
        the session even on rejection for that flip to persist.
        """
        if not invite_token:
            raise RegistrationRejectedError(
                "Contractors can only register via invite link", reason="TOKEN_MISSING"
            )

        invite = await self.invites.get_by_token(db, invite_token)
        if invite is None:
            raise RegistrationRejectedError("Invalid invite token", reason="INVALID_TOKEN")

        if invite.status != InviteStatus.PENDING:
            raise RegistrationRejectedError(
                "Invite has already been used or expired",
                reason="INVITE_NOT_PENDING",
                status=invite.status.value,
            )

        if self.clock() > invite.expires_at:
            if await self.invites.expire_if_pending(db, invite.id):
                await db.refresh(invite)
                logger.info("invite_expired", invite_id=str(invite.id))
            raise RegistrationRejectedError("Invite has expired", reason="INVITE_EXPIRED")

        return invite
