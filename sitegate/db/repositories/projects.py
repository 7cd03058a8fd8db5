"""Project aggregate: project row plus contracts, designs, readiness, permits, team."""

import uuid
from typing import Optional, Sequence

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.models import (
    ContractAgreement,
    DesignVersion,
    EscrowAgreement,
    Milestone,
    PermitSet,
    Project,
    ProjectCloseout,
    ProjectMember,
    ReadinessChecklist,
    ReadinessItem,
    Review,
)
from sitegate.db.repositories.base import BaseRepository
from sitegate.enums import ContractStatus, DesignStatus, MemberRole, ProjectStatus, ReadinessStatus


class ProjectRepository(BaseRepository[Project]):
    model = Project

    async def list_by_status(
        self, db: AsyncSession, statuses: Sequence[ProjectStatus]
    ) -> Sequence[Project]:
        """Projects in any of the given phases (batch sweeps)."""
        result = await db.execute(
            select(Project).where(Project.status.in_(list(statuses))).order_by(Project.created_at)
        )
        return result.scalars().all()

    # ── Contracts / design ───────────────────────────────────────────────

    async def has_fully_signed_contract(self, db: AsyncSession, project_id: uuid.UUID) -> bool:
        stmt = select(
            exists().where(
                ContractAgreement.project_id == project_id,
                ContractAgreement.status == ContractStatus.FULLY_SIGNED,
            )
        )
        return bool(await db.scalar(stmt))

    async def has_design_approved_for_permit(self, db: AsyncSession, project_id: uuid.UUID) -> bool:
        stmt = select(
            exists().where(
                DesignVersion.project_id == project_id,
                DesignVersion.status == DesignStatus.APPROVED_FOR_PERMIT,
            )
        )
        return bool(await db.scalar(stmt))

    async def list_contracts(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[ContractAgreement]:
        return await self._list(db, ContractAgreement, ContractAgreement.project_id == project_id)

    async def list_design_versions(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[DesignVersion]:
        return await self._list(db, DesignVersion, DesignVersion.project_id == project_id)

    # ── Readiness ────────────────────────────────────────────────────────

    async def get_checklist(self, db: AsyncSession, project_id: uuid.UUID) -> Optional[ReadinessChecklist]:
        result = await db.execute(
            select(ReadinessChecklist).where(ReadinessChecklist.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def list_readiness_items(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[ReadinessItem]:
        result = await db.execute(
            select(ReadinessItem)
            .join(ReadinessChecklist, ReadinessItem.checklist_id == ReadinessChecklist.id)
            .where(ReadinessChecklist.project_id == project_id)
            .order_by(ReadinessItem.created_at, ReadinessItem.title)
        )
        return result.scalars().all()

    async def incomplete_required_items(
        self, db: AsyncSession, project_id: uuid.UUID
    ) -> Sequence[ReadinessItem]:
        """Required readiness items not yet COMPLETED, in checklist order."""
        result = await db.execute(
            select(ReadinessItem)
            .join(ReadinessChecklist, ReadinessItem.checklist_id == ReadinessChecklist.id)
            .where(
                ReadinessChecklist.project_id == project_id,
                ReadinessItem.required.is_(True),
                ReadinessItem.status != ReadinessStatus.COMPLETED,
            )
            .order_by(ReadinessItem.created_at, ReadinessItem.title)
        )
        return result.scalars().all()

    async def get_readiness_item(self, db: AsyncSession, item_id: uuid.UUID) -> Optional[ReadinessItem]:
        return await db.get(ReadinessItem, item_id)

    # ── Permits / closeout / reviews ─────────────────────────────────────

    async def list_permit_sets(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[PermitSet]:
        return await self._list(db, PermitSet, PermitSet.project_id == project_id)

    async def get_closeout(self, db: AsyncSession, project_id: uuid.UUID) -> Optional[ProjectCloseout]:
        result = await db.execute(
            select(ProjectCloseout).where(ProjectCloseout.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def count_reviews(self, db: AsyncSession, project_id: uuid.UUID) -> int:
        return await db.scalar(
            select(func.count()).select_from(Review).where(Review.project_id == project_id)
        ) or 0

    # ── Team / money ─────────────────────────────────────────────────────

    async def list_members(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[ProjectMember]:
        return await self._list(db, ProjectMember, ProjectMember.project_id == project_id)

    async def add_member(
        self, db: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID, role: MemberRole
    ) -> ProjectMember:
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
        db.add(member)
        await db.flush()
        return member

    async def list_milestones(self, db: AsyncSession, project_id: uuid.UUID) -> Sequence[Milestone]:
        return await self._list(db, Milestone, Milestone.project_id == project_id)

    async def get_escrow_for_project(
        self, db: AsyncSession, project_id: uuid.UUID
    ) -> Optional[EscrowAgreement]:
        """The project's escrow agreement (oldest, if several exist)."""
        result = await db.execute(
            select(EscrowAgreement)
            .where(EscrowAgreement.project_id == project_id)
            .order_by(EscrowAgreement.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _list(db: AsyncSession, model, *criteria):
        result = await db.execute(select(model).where(*criteria))
        return result.scalars().all()


project_repo = ProjectRepository()
