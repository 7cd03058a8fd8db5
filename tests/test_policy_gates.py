"""
Policy Gate Tests.

Covers:
- Permit submission accumulates every violation
- Readiness violation names the incomplete items and clears once they are done
- Escrow release gate: first failing check wins
- Review gate after closeout
- Invite-only contractor registration, including the expiry flip
"""

import uuid
from datetime import timedelta

import pytest

from sitegate.db.repositories.invites import invite_repo
from sitegate.enums import (
    CloseoutStatus,
    ContractStatus,
    DesignStatus,
    DisputeStatus,
    InviteStatus,
    MilestoneStatus,
    ProjectStatus,
    ReadinessStatus,
    TransactionStatus,
    TransactionType,
    VerificationStatus,
)
from sitegate.errors import ErrorKind, NotFoundError, PolicyViolationError, RegistrationRejectedError
from sitegate.db.models import Dispute, EscrowTransaction, Milestone
from sitegate.policy.gates import (
    REASON_ALREADY_RELEASED,
    REASON_DISPUTE_FREEZE,
    REASON_ESCROW_NOT_FOUND,
    REASON_MILESTONE_MISMATCH,
    REASON_MILESTONE_NOT_FOUND,
    REASON_UNVERIFIED,
    PolicyGate,
)
from sitegate.policy.schemas import ViolationType

from tests.factories import (
    FIXED_NOW,
    add_closeout,
    add_contract,
    add_design,
    add_invite,
    add_readiness_item,
    create_escrow_setup,
    create_project,
    make_permit_ready,
)


# ── Permit submission ────────────────────────────────────────────────────


class TestPermitSubmissionGate:
    @pytest.mark.asyncio
    async def test_blank_project_reports_every_violation(self, db):
        project = await create_project(db)
        await add_readiness_item(db, project, "Soil report")

        violations = await PolicyGate().check_permit_submission(db, project.id)

        types = {v.type for v in violations}
        assert types == {
            ViolationType.CONTRACT_NOT_SIGNED,
            ViolationType.DESIGN_NOT_APPROVED,
            ViolationType.READINESS_INCOMPLETE,
        }

    @pytest.mark.asyncio
    async def test_ready_project_passes(self, db):
        project = await create_project(db)
        await make_permit_ready(db, project)

        assert await PolicyGate().check_permit_submission(db, project.id) == []

    @pytest.mark.asyncio
    async def test_partially_signed_contract_does_not_count(self, db):
        project = await create_project(db)
        await add_contract(db, project, ContractStatus.PARTIALLY_SIGNED)
        await add_design(db, project, DesignStatus.APPROVED_FOR_PERMIT)

        violations = await PolicyGate().check_permit_submission(db, project.id)

        assert [v.type for v in violations] == [ViolationType.CONTRACT_NOT_SIGNED]

    @pytest.mark.asyncio
    async def test_approved_design_is_not_approved_for_permit(self, db):
        project = await create_project(db)
        await add_contract(db, project, ContractStatus.FULLY_SIGNED)
        await add_design(db, project, DesignStatus.APPROVED)

        violations = await PolicyGate().check_permit_submission(db, project.id)

        assert [v.type for v in violations] == [ViolationType.DESIGN_NOT_APPROVED]

    @pytest.mark.asyncio
    async def test_readiness_message_names_items_and_count(self, db):
        project = await create_project(db)
        await add_contract(db, project, ContractStatus.FULLY_SIGNED)
        await add_design(db, project, DesignStatus.APPROVED_FOR_PERMIT)
        await add_readiness_item(db, project, "Soil report", order=1)
        await add_readiness_item(db, project, "Utility locate", order=2)
        await add_readiness_item(db, project, "Optional photos", required=False, order=3)

        violations = await PolicyGate().check_permit_submission(db, project.id)

        assert len(violations) == 1
        message = violations[0].message
        assert message.startswith("2 required readiness items")
        assert "Soil report" in message
        assert "Utility locate" in message
        assert "Optional photos" not in message

    @pytest.mark.asyncio
    async def test_readiness_violation_clears_when_item_completed(self, db):
        project = await create_project(db)
        await add_contract(db, project, ContractStatus.FULLY_SIGNED)
        await add_design(db, project, DesignStatus.APPROVED_FOR_PERMIT)
        item = await add_readiness_item(db, project, "Soil report")
        gate = PolicyGate()

        assert [v.type for v in await gate.check_permit_submission(db, project.id)] == [
            ViolationType.READINESS_INCOMPLETE
        ]

        item.status = ReadinessStatus.COMPLETED
        await db.flush()

        assert await gate.check_permit_submission(db, project.id) == []

    @pytest.mark.asyncio
    async def test_enforce_raises_with_all_violations(self, db):
        project = await create_project(db)

        with pytest.raises(PolicyViolationError) as exc_info:
            await PolicyGate().enforce_permit_submission(db, project.id)

        err = exc_info.value
        assert err.kind == ErrorKind.POLICY_VIOLATION
        assert set(err.violation_types) == {"CONTRACT_NOT_SIGNED", "DESIGN_NOT_APPROVED"}
        assert err.payload["gate"] == "permit_submission"

    @pytest.mark.asyncio
    async def test_unknown_project_not_found(self, db):
        with pytest.raises(NotFoundError):
            await PolicyGate().check_permit_submission(db, uuid.uuid4())


# ── Escrow release ───────────────────────────────────────────────────────


class TestEscrowReleaseGate:
    @pytest.mark.asyncio
    async def test_verified_milestone_allowed(self, db):
        setup = await create_escrow_setup(db)

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_missing_escrow(self, db):
        setup = await create_escrow_setup(db)

        decision = await PolicyGate().check_escrow_release(db, uuid.uuid4(), setup.milestone.id)

        assert decision.allowed is False
        assert decision.reason == REASON_ESCROW_NOT_FOUND

    @pytest.mark.asyncio
    async def test_active_dispute_freezes_before_other_checks(self, db):
        setup = await create_escrow_setup(db, verification=(VerificationStatus.PENDING,))
        db.add(Dispute(project_id=setup.project.id, status=DisputeStatus.IN_REVIEW))
        await db.flush()

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.reason == REASON_DISPUTE_FREEZE
        assert "dispute" in decision.reason.lower()

    @pytest.mark.asyncio
    async def test_resolved_dispute_does_not_freeze(self, db):
        setup = await create_escrow_setup(db)
        db.add(Dispute(project_id=setup.project.id, status=DisputeStatus.RESOLVED))
        await db.flush()

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_missing_milestone(self, db):
        setup = await create_escrow_setup(db)

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, uuid.uuid4())

        assert decision.reason == REASON_MILESTONE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_milestone_from_another_project(self, db):
        setup = await create_escrow_setup(db)
        other = await create_escrow_setup(db)

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, other.milestone.id)

        assert decision.reason == REASON_MILESTONE_MISMATCH

    @pytest.mark.asyncio
    async def test_paid_milestone_denied(self, db):
        setup = await create_escrow_setup(db)
        setup.milestone.status = MilestoneStatus.PAID
        await db.flush()

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.reason == REASON_ALREADY_RELEASED

    @pytest.mark.asyncio
    async def test_completed_release_on_milestone_denied(self, db):
        setup = await create_escrow_setup(db)
        db.add(EscrowTransaction(
            escrow_id=setup.escrow.id,
            milestone_id=setup.milestone.id,
            type=TransactionType.RELEASE,
            status=TransactionStatus.COMPLETED,
            amount=setup.milestone.amount,
        ))
        await db.flush()

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.reason == REASON_ALREADY_RELEASED

    @pytest.mark.asyncio
    async def test_one_unverified_item_blocks(self, db):
        setup = await create_escrow_setup(
            db, verification=(VerificationStatus.VERIFIED, VerificationStatus.SUBMITTED)
        )

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.reason == REASON_UNVERIFIED

    @pytest.mark.asyncio
    async def test_milestone_without_items_passes(self, db):
        setup = await create_escrow_setup(db, verification=())

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, setup.milestone.id)

        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_milestone_on_same_project_without_escrow_link_passes(self, db):
        setup = await create_escrow_setup(db)
        loose = Milestone(project_id=setup.project.id, name="Roofing", amount=setup.milestone.amount)
        db.add(loose)
        await db.flush()

        decision = await PolicyGate().check_escrow_release(db, setup.escrow.id, loose.id)

        assert decision.allowed is True


# ── Review submission ────────────────────────────────────────────────────


class TestReviewGate:
    @pytest.mark.asyncio
    async def test_active_project_blocked_on_all_counts(self, db):
        project = await create_project(db, status=ProjectStatus.CONSTRUCTION)

        violations = await PolicyGate().check_review_submission(db, project.id)

        assert {v.type for v in violations} == {
            ViolationType.PROJECT_NOT_COMPLETED,
            ViolationType.CLOSEOUT_INCOMPLETE,
            ViolationType.FINAL_PAYMENT_NOT_RELEASED,
        }

    @pytest.mark.asyncio
    async def test_final_payment_still_outstanding(self, db):
        project = await create_project(db, status=ProjectStatus.COMPLETED)
        await add_closeout(db, project, CloseoutStatus.COMPLETED, final_payment_released=False)

        violations = await PolicyGate().check_review_submission(db, project.id)

        assert [v.type for v in violations] == [ViolationType.FINAL_PAYMENT_NOT_RELEASED]

    @pytest.mark.asyncio
    async def test_completed_and_paid_passes(self, db):
        project = await create_project(db, status=ProjectStatus.COMPLETED)
        await add_closeout(db, project)

        await PolicyGate().enforce_review_submission(db, project.id)


# ── Contractor registration ──────────────────────────────────────────────


class TestContractorRegistrationGate:
    def _gate(self):
        return PolicyGate(clock=lambda: FIXED_NOW)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token_rejected(self, db, token):
        with pytest.raises(RegistrationRejectedError) as exc_info:
            await self._gate().check_contractor_registration(db, token)
        assert exc_info.value.payload["reason"] == "TOKEN_MISSING"
        assert exc_info.value.kind == ErrorKind.REGISTRATION_REJECTED

    @pytest.mark.asyncio
    async def test_unknown_token_rejected(self, db):
        with pytest.raises(RegistrationRejectedError) as exc_info:
            await self._gate().check_contractor_registration(db, "no-such-token")
        assert exc_info.value.payload["reason"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_pending_unexpired_invite_resolves(self, db):
        project = await create_project(db)
        invite = await add_invite(db, project, expires_at=FIXED_NOW + timedelta(days=3))

        resolved = await self._gate().check_contractor_registration(db, invite.token)

        assert resolved.id == invite.id
        assert resolved.status == InviteStatus.PENDING

    @pytest.mark.asyncio
    async def test_expired_invite_flipped_once_then_not_pending(self, db):
        project = await create_project(db)
        invite = await add_invite(db, project, expires_at=FIXED_NOW - timedelta(minutes=1))
        gate = self._gate()

        with pytest.raises(RegistrationRejectedError) as first:
            await gate.check_contractor_registration(db, invite.token)
        assert first.value.payload["reason"] == "INVITE_EXPIRED"
        assert invite.status == InviteStatus.EXPIRED

        with pytest.raises(RegistrationRejectedError) as second:
            await gate.check_contractor_registration(db, invite.token)
        assert second.value.payload["reason"] == "INVITE_NOT_PENDING"

        assert await invite_repo.expire_if_pending(db, invite.id) is False

    @pytest.mark.asyncio
    async def test_accepted_invite_cannot_be_reused(self, db):
        project = await create_project(db)
        invite = await add_invite(db, project, expires_at=FIXED_NOW + timedelta(days=3))
        invite.status = InviteStatus.ACCEPTED
        await db.flush()

        with pytest.raises(RegistrationRejectedError) as exc_info:
            await self._gate().check_contractor_registration(db, invite.token)
        assert exc_info.value.payload["reason"] == "INVITE_NOT_PENDING"
        assert exc_info.value.payload["status"] == "ACCEPTED"
