"""
Escrow Release State Machine.

    PENDING ──approve──▶ APPROVED ──transfer──▶ COMPLETED (milestone PAID)
       │                    │
       └──────reject────────┴──────────────────▶ REJECTED

All writes go into the caller's session; the caller commits. If the payment
rail fails after APPROVED was written, the raised error rolls the whole
unit of work back and the transaction is PENDING again.

Concurrency:
- request: partial unique index, one open release per milestone
- approve/reject: conditional UPDATE on the expected current status
- approve: the milestone is claimed (→ PAID) by a conditional UPDATE before
  the transfer, so it can be paid out at most once
"""

import asyncio
import uuid
from decimal import Decimal
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.config import settings
from sitegate.db.models import EscrowTransaction
from sitegate.db.repositories.escrow import EscrowRepository, escrow_repo
from sitegate.db.repositories.events import EventRepository, event_repo
from sitegate.db.repositories.projects import ProjectRepository, project_repo
from sitegate.enums import EventType, TransactionStatus, TransactionType
from sitegate.errors import (
    ConflictError,
    ExternalServiceError,
    GuardrailCode,
    GuardrailError,
    NotFoundError,
    ReleaseBlockedError,
    ValidationError,
)
from sitegate.escrow.payment_rail import PaymentRail
from sitegate.policy.gates import REASON_ALREADY_RELEASED, REASON_DISPUTE_FREEZE, PolicyGate
from sitegate.services.audit import AuditLogger
from sitegate.services.notifications import Notifier

logger = structlog.get_logger(__name__)


class EscrowReleaseService:
    """Request, approve and reject milestone releases."""

    def __init__(
        self,
        payment_rail: PaymentRail,
        gate: Optional[PolicyGate] = None,
        escrow: Optional[EscrowRepository] = None,
        events: Optional[EventRepository] = None,
        projects: Optional[ProjectRepository] = None,
        audit: Optional[AuditLogger] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable = utcnow,
        transfer_timeout: Optional[float] = None,
    ):
        self.payment_rail = payment_rail
        self.escrow = escrow or escrow_repo
        self.events = events or event_repo
        self.projects = projects or project_repo
        self.gate = gate or PolicyGate(projects=self.projects, escrow=self.escrow, clock=clock)
        self.audit = audit or AuditLogger()
        self.notifier = notifier or Notifier()
        self.clock = clock
        self.transfer_timeout = transfer_timeout or settings.payment_rail_timeout_seconds

    async def request_release(
        self,
        db: AsyncSession,
        escrow_id: uuid.UUID,
        milestone_id: uuid.UUID,
        requested_by: Optional[uuid.UUID],
    ) -> EscrowTransaction:
        """Open a PENDING release for a milestone if the release gate allows it."""
        decision = await self.gate.check_escrow_release(db, escrow_id, milestone_id)
        if not decision.allowed:
            logger.warning(
                "escrow_release_blocked",
                escrow_id=str(escrow_id),
                milestone_id=str(milestone_id),
                reason=decision.reason,
            )
            raise ReleaseBlockedError(decision.reason, escrow_id, milestone_id)

        escrow = await self.escrow.get_escrow(db, escrow_id)
        milestone = await self.escrow.get_milestone(db, milestone_id)

        tx = await self.escrow.create_release(
            db, escrow.id, milestone.id, milestone.amount, requested_by
        )
        await self.events.append(
            db,
            escrow.project_id,
            EventType.ESCROW_RELEASE_REQUESTED,
            {"transactionId": str(tx.id), "milestoneId": str(milestone.id)},
            user_id=requested_by,
        )
        logger.info(
            "escrow_release_requested",
            transaction_id=str(tx.id),
            milestone_id=str(milestone.id),
            amount=str(tx.amount),
        )

        await self.audit.log(
            "ESCROW_RELEASE_REQUESTED",
            "EscrowTransaction",
            tx.id,
            user_id=requested_by,
            new_data={"status": TransactionStatus.PENDING.value, "amount": str(tx.amount)},
            metadata={"milestone_id": str(milestone.id), "escrow_id": str(escrow.id)},
        )
        project = await self.projects.get_by_id(db, escrow.project_id)
        await self.notifier.notify(
            project.owner_id if project else None,
            "ESCROW_RELEASE_REQUESTED",
            "Escrow release awaiting approval",
            f"Release of {tx.amount} requested for milestone \"{milestone.name}\".",
        )
        return tx

    async def approve_release(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        approved_by: uuid.UUID,
        confirmed_by_human: bool = False,
    ) -> EscrowTransaction:
        """
        Approve a PENDING release and execute the transfer.

        ``confirmed_by_human`` must be explicitly True: the caller asserts a
        person (not an automated process) authorized this release. Anything
        else is refused with ESCROW_RELEASE_REQUIRES_HUMAN_APPROVAL.
        The dispute freeze is re-checked here as well as at request time.
        """
        if confirmed_by_human is not True:
            logger.warning(
                "escrow_release_requires_human_approval",
                transaction_id=str(transaction_id),
            )
            raise GuardrailError(
                GuardrailCode.ESCROW_RELEASE_REQUIRES_HUMAN_APPROVAL,
                "Escrow release requires explicit human approval",
                transaction_id=str(transaction_id),
            )

        tx = await self.escrow.get_by_id(db, transaction_id)
        if tx is None:
            raise NotFoundError("EscrowTransaction", transaction_id)
        if tx.type != TransactionType.RELEASE:
            raise ConflictError(
                "Only release transactions can be approved",
                transaction_id=str(tx.id),
                type=tx.type.value,
            )
        if tx.status != TransactionStatus.PENDING:
            raise ConflictError(
                f"Transaction is {tx.status.value}, expected PENDING",
                transaction_id=str(tx.id),
                status=tx.status.value,
            )

        escrow = await self.escrow.get_escrow(db, tx.escrow_id)
        if escrow is None:
            raise NotFoundError("EscrowAgreement", tx.escrow_id)
        if await self.escrow.has_active_dispute(db, escrow.project_id):
            logger.warning("escrow_approval_frozen", transaction_id=str(tx.id))
            raise GuardrailError(
                GuardrailCode.DISPUTE_FREEZE,
                REASON_DISPUTE_FREEZE,
                transaction_id=str(tx.id),
                project_id=str(escrow.project_id),
            )
        if not escrow.destination_account:
            raise ValidationError(
                "Escrow has no destination account for transfers", field="destination_account"
            )

        if not await self.escrow.mark_approved(db, tx.id, approved_by, self.clock()):
            raise ConflictError(
                "Transaction was approved or rejected concurrently", transaction_id=str(tx.id)
            )
        # Claim the milestone before money moves; a rail failure rolls the claim back too
        if tx.milestone_id and not await self.escrow.mark_milestone_paid(
            db, tx.milestone_id, approved_by, self.clock()
        ):
            raise ConflictError(
                REASON_ALREADY_RELEASED,
                transaction_id=str(tx.id),
                milestone_id=str(tx.milestone_id),
            )

        transfer_id = await self._execute_transfer(
            escrow.destination_account, tx.amount, f"Escrow release {tx.id}"
        )

        if not await self.escrow.mark_completed(db, tx.id, transfer_id, self.clock()):
            raise ConflictError("Transaction left APPROVED unexpectedly", transaction_id=str(tx.id))
        tx = await self.escrow.reload(db, tx.id)

        await self.events.append(
            db,
            escrow.project_id,
            EventType.ESCROW_RELEASE_APPROVED,
            {
                "transactionId": str(tx.id),
                "milestoneId": str(tx.milestone_id) if tx.milestone_id else None,
                "transferId": transfer_id,
            },
            user_id=approved_by,
        )
        logger.info(
            "escrow_release_completed",
            transaction_id=str(tx.id),
            transfer_id=transfer_id,
            amount=str(tx.amount),
        )

        await self.audit.log(
            "ESCROW_RELEASE_APPROVED",
            "EscrowTransaction",
            tx.id,
            user_id=approved_by,
            previous_data={"status": TransactionStatus.PENDING.value},
            new_data={"status": tx.status.value, "transfer_id": transfer_id},
        )
        await self.notifier.notify(
            tx.requested_by_id,
            "ESCROW_RELEASE_COMPLETED",
            "Escrow release completed",
            f"{tx.amount} has been released (transfer {transfer_id}).",
        )
        return tx

    async def reject_release(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        rejected_by: uuid.UUID,
        reason: Optional[str] = None,
    ) -> EscrowTransaction:
        """PENDING/APPROVED → REJECTED (terminal). Frees the milestone for a new request."""
        tx = await self.escrow.get_by_id(db, transaction_id)
        if tx is None:
            raise NotFoundError("EscrowTransaction", transaction_id)
        previous = tx.status

        if not await self.escrow.mark_rejected(db, tx.id, rejected_by, reason, self.clock()):
            raise ConflictError(
                f"Transaction is {previous.value} and can no longer be rejected",
                transaction_id=str(tx.id),
                status=previous.value,
            )
        tx = await self.escrow.reload(db, tx.id)

        escrow = await self.escrow.get_escrow(db, tx.escrow_id)
        await self.events.append(
            db,
            escrow.project_id,
            EventType.ESCROW_RELEASE_REJECTED,
            {"transactionId": str(tx.id), "reason": reason},
            user_id=rejected_by,
        )
        logger.info("escrow_release_rejected", transaction_id=str(tx.id), reason=reason)

        await self.audit.log(
            "ESCROW_RELEASE_REJECTED",
            "EscrowTransaction",
            tx.id,
            user_id=rejected_by,
            previous_data={"status": previous.value},
            new_data={"status": tx.status.value},
            metadata={"reason": reason} if reason else None,
        )
        await self.notifier.notify(
            tx.requested_by_id,
            "ESCROW_RELEASE_REJECTED",
            "Escrow release rejected",
            reason or "Your release request was rejected.",
        )
        return tx

    async def _execute_transfer(self, destination: str, amount: Decimal, description: str) -> str:
        """Call the payment rail with a hard timeout. Never returns an empty id."""
        try:
            transfer_id = await asyncio.wait_for(
                self.payment_rail.create_transfer(destination, amount, description),
                timeout=self.transfer_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("payment_rail_timeout", timeout=self.transfer_timeout)
            raise ExternalServiceError("payment_rail", "transfer timed out", timeout=True) from e
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error("payment_rail_failed", error=str(e))
            raise ExternalServiceError("payment_rail", str(e)) from e

        if not transfer_id:
            raise ExternalServiceError("payment_rail", "empty transfer id")
        return transfer_id
