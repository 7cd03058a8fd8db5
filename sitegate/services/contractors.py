"""
Contractor invites and invite-only registration.

Contractors cannot self-register without a single-use invite token. The
registration gate may flip an expired invite to EXPIRED while rejecting;
``accept_invite`` commits that flip before re-raising the rejection.
"""

import secrets
import uuid
from datetime import timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.clock import utcnow
from sitegate.config import settings
from sitegate.db.models import SubcontractorInvite
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.db.repositories.invites import InviteRepository, invite_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import EventType, MemberRole, ProjectComplexity
from sitegate.errors import NotFoundError, RegistrationRejectedError
from sitegate.policy.gates import PolicyGate
from sitegate.services.audit import AuditLogger

logger = structlog.get_logger(__name__)


def should_show_subcontractor_management(role: str, complexity: str) -> bool:
    """Subcontractor management is for prime contractors on MAJOR projects only."""
    return role == MemberRole.PRIME_CONTRACTOR and complexity == ProjectComplexity.MAJOR


class ContractorService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gate: Optional[PolicyGate] = None,
        invites: Optional[InviteRepository] = None,
        projects: Optional[ProjectRepository] = None,
        events: Optional[EventRepository] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.invites = invites or invite_repo
        self.projects = projects or project_repo
        self.events = events or event_repo
        self.gate = gate or PolicyGate(invites=self.invites, clock=clock)
        self.audit = audit or AuditLogger()
        self.clock = clock

    async def create_invite(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        email: str,
        invited_by: uuid.UUID,
        ttl_days: Optional[int] = None,
    ) -> SubcontractorInvite:
        if await self.projects.get_by_id(db, project_id) is None:
            raise NotFoundError("Project", project_id)
        ttl = timedelta(days=ttl_days if ttl_days is not None else settings.invite_ttl_days)
        invite = await self.invites.add(
            db,
            project_id=project_id,
            email=email,
            token=secrets.token_urlsafe(32),
            invited_by=invited_by,
            expires_at=self.clock() + ttl,
        )
        logger.info("contractor_invite_created", invite_id=str(invite.id), project_id=str(project_id))
        await self.audit.log(
            "CONTRACTOR_INVITE_CREATED",
            "SubcontractorInvite",
            invite.id,
            user_id=invited_by,
            metadata={"email": email},
        )
        return invite

    async def accept_invite(self, invite_token: Optional[str], user_id: uuid.UUID) -> SubcontractorInvite:
        """
        Register a contractor through an invite, in its own unit of work.

        On rejection the session is still committed so an expiry flip
        performed by the gate persists; nothing else was written.
        """
        async with self.session_factory() as session:
            try:
                invite = await self.gate.check_contractor_registration(session, invite_token)
            except RegistrationRejectedError as e:
                await session.commit()
                logger.warning("contractor_registration_rejected", reason=e.payload.get("reason"))
                raise

            try:
                if not await self.invites.accept_if_pending(session, invite.id, user_id, self.clock()):
                    raise RegistrationRejectedError(
                        "Invite has already been used or expired", reason="INVITE_NOT_PENDING"
                    )
                await self.projects.add_member(session, invite.project_id, user_id, MemberRole.SUBCONTRACTOR)
                await self.events.append(
                    session,
                    invite.project_id,
                    EventType.INVITE_ACCEPTED,
                    {"inviteId": str(invite.id)},
                    user_id=user_id,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            await session.refresh(invite)

        logger.info("contractor_registered", invite_id=str(invite.id), user_id=str(user_id))
        await self.audit.log("CONTRACTOR_INVITE_ACCEPTED", "SubcontractorInvite", invite.id, user_id=user_id)
        return invite
