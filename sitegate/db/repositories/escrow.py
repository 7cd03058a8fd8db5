"""
Escrow aggregate: agreements, milestones, verification, transactions, disputes.

State transitions on EscrowTransaction are conditional UPDATEs keyed on the
expected current status. A return value of False means another writer got
there first; callers turn that into a ConflictError.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.db.models import (
    Dispute,
    EscrowAgreement,
    EscrowTransaction,
    Milestone,
    VerificationItem,
)
from sitegate.db.repositories.base import BaseRepository
from sitegate.enums import (
    ACTIVE_DISPUTE_STATUSES,
    MilestoneStatus,
    OPEN_TRANSACTION_STATUSES,
    TransactionStatus,
    TransactionType,
)
from sitegate.errors import ConflictError


class EscrowRepository(BaseRepository[EscrowTransaction]):
    model = EscrowTransaction

    async def get_escrow(self, db: AsyncSession, escrow_id: uuid.UUID) -> Optional[EscrowAgreement]:
        return await db.get(EscrowAgreement, escrow_id)

    async def get_milestone(self, db: AsyncSession, milestone_id: uuid.UUID) -> Optional[Milestone]:
        return await db.get(Milestone, milestone_id)

    async def list_verification_items(
        self, db: AsyncSession, milestone_id: uuid.UUID
    ) -> Sequence[VerificationItem]:
        result = await db.execute(
            select(VerificationItem).where(VerificationItem.milestone_id == milestone_id)
        )
        return result.scalars().all()

    async def has_active_dispute(self, db: AsyncSession, project_id: uuid.UUID) -> bool:
        """True while any dispute on the project is OPEN or IN_REVIEW."""
        stmt = select(
            exists().where(
                Dispute.project_id == project_id,
                Dispute.status.in_(list(ACTIVE_DISPUTE_STATUSES)),
            )
        )
        return bool(await db.scalar(stmt))

    async def get_open_release(
        self, db: AsyncSession, milestone_id: uuid.UUID
    ) -> Optional[EscrowTransaction]:
        result = await db.execute(
            select(EscrowTransaction).where(
                EscrowTransaction.milestone_id == milestone_id,
                EscrowTransaction.type == TransactionType.RELEASE,
                EscrowTransaction.status.in_(list(OPEN_TRANSACTION_STATUSES)),
            )
        )
        return result.scalar_one_or_none()

    async def has_completed_release(self, db: AsyncSession, milestone_id: uuid.UUID) -> bool:
        stmt = select(
            exists().where(
                EscrowTransaction.milestone_id == milestone_id,
                EscrowTransaction.type == TransactionType.RELEASE,
                EscrowTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        return bool(await db.scalar(stmt))

    # ── Transitions ──────────────────────────────────────────────────────

    async def create_release(
        self,
        db: AsyncSession,
        escrow_id: uuid.UUID,
        milestone_id: uuid.UUID,
        amount: Decimal,
        requested_by: Optional[uuid.UUID],
    ) -> EscrowTransaction:
        """
        Insert a PENDING release.

        The partial unique index on open releases per milestone rejects a
        second concurrent insert; that surfaces here as ConflictError.
        """
        tx = EscrowTransaction(
            escrow_id=escrow_id,
            milestone_id=milestone_id,
            type=TransactionType.RELEASE,
            status=TransactionStatus.PENDING,
            amount=amount,
            requested_by_id=requested_by,
        )
        db.add(tx)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError(
                "A release for this milestone is already pending",
                milestone_id=str(milestone_id),
            ) from e
        return tx

    async def mark_approved(
        self, db: AsyncSession, tx_id: uuid.UUID, approved_by: uuid.UUID, at: datetime
    ) -> bool:
        """PENDING → APPROVED. False if the row was not PENDING."""
        return await self._transition(
            db,
            tx_id,
            (TransactionStatus.PENDING,),
            status=TransactionStatus.APPROVED,
            approved_by_id=approved_by,
            approved_at=at,
        )

    async def mark_completed(
        self, db: AsyncSession, tx_id: uuid.UUID, transfer_id: str, at: datetime
    ) -> bool:
        """APPROVED → COMPLETED."""
        return await self._transition(
            db,
            tx_id,
            (TransactionStatus.APPROVED,),
            status=TransactionStatus.COMPLETED,
            transfer_id=transfer_id,
            completed_at=at,
        )

    async def mark_rejected(
        self,
        db: AsyncSession,
        tx_id: uuid.UUID,
        rejected_by: uuid.UUID,
        reason: Optional[str],
        at: datetime,
    ) -> bool:
        """PENDING/APPROVED → REJECTED."""
        return await self._transition(
            db,
            tx_id,
            OPEN_TRANSACTION_STATUSES,
            status=TransactionStatus.REJECTED,
            rejected_by_id=rejected_by,
            rejected_at=at,
            rejection_reason=reason,
        )

    async def mark_milestone_paid(
        self, db: AsyncSession, milestone_id: uuid.UUID, released_by: uuid.UUID, at: datetime
    ) -> bool:
        """Any status but PAID → PAID. False if it was already paid."""
        result = await db.execute(
            update(Milestone)
            .where(Milestone.id == milestone_id, Milestone.status != MilestoneStatus.PAID)
            .values(status=MilestoneStatus.PAID, released_at=at, released_by_id=released_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition(self, db: AsyncSession, tx_id, from_statuses, **values) -> bool:
        result = await db.execute(
            update(EscrowTransaction)
            .where(
                EscrowTransaction.id == tx_id,
                EscrowTransaction.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


escrow_repo = EscrowRepository()
