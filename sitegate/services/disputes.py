"""Disputes. An OPEN or IN_REVIEW dispute freezes escrow releases for its project."""

import uuid
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.db.models import Dispute
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import ACTIVE_DISPUTE_STATUSES, DisputeStatus
from sitegate.errors import ConflictError, NotFoundError
from sitegate.policy.guardrail import RestrictedAction, check_automation_action
from sitegate.services.audit import AuditLogger

logger = structlog.get_logger(__name__)


class DisputeService:
    def __init__(
        self,
        projects: Optional[ProjectRepository] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable = utcnow,
    ):
        self.projects = projects or project_repo
        self.audit = audit or AuditLogger()
        self.clock = clock

    async def open_dispute(
        self, db: AsyncSession, project_id: uuid.UUID, opened_by: uuid.UUID, reason: str
    ) -> Dispute:
        if await self.projects.get_by_id(db, project_id) is None:
            raise NotFoundError("Project", project_id)
        dispute = Dispute(project_id=project_id, opened_by=opened_by, reason=reason)
        db.add(dispute)
        await db.flush()
        logger.warning("dispute_opened", project_id=str(project_id), dispute_id=str(dispute.id))
        await self.audit.log("DISPUTE_OPENED", "Dispute", dispute.id, user_id=opened_by)
        return dispute

    async def resolve_dispute(
        self,
        db: AsyncSession,
        dispute_id: uuid.UUID,
        resolved_by: uuid.UUID,
        automated: bool = False,
    ) -> Dispute:
        """Resolving lifts the release freeze, so automation may never do it."""
        if automated:
            check_automation_action(RestrictedAction.RESOLVE_DISPUTE)

        dispute = await db.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute", dispute_id)
        if dispute.status not in ACTIVE_DISPUTE_STATUSES:
            raise ConflictError(
                f"Dispute is already {dispute.status.value}", dispute_id=str(dispute_id)
            )

        previous = dispute.status
        dispute.status = DisputeStatus.RESOLVED
        dispute.resolved_at = self.clock()
        await db.flush()
        logger.info("dispute_resolved", dispute_id=str(dispute_id))
        await self.audit.log(
            "DISPUTE_RESOLVED",
            "Dispute",
            dispute.id,
            user_id=resolved_by,
            previous_data={"status": previous.value},
            new_data={"status": dispute.status.value},
        )
        return dispute
