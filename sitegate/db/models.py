"""
SiteGate SQLAlchemy Models.

Uses compatibility types so the same schema runs on SQLite (tests, dev)
and PostgreSQL (prod). Relationships are resolved through repositories
with explicit queries; no lazy-loaded relationship attributes.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sitegate.clock import utcnow
from sitegate.db.compat import GUID, EnumText, JSONType
from sitegate.db.engine import Base
from sitegate.enums import (
    CloseoutStatus,
    ContractStatus,
    DesignStatus,
    DisputeStatus,
    InviteStatus,
    MemberRole,
    MilestoneStatus,
    PermitStatus,
    ProjectComplexity,
    ProjectStatus,
    ReadinessStatus,
    RecommendationStatus,
    RiskLevel,
    SnapshotReason,
    TransactionStatus,
    TransactionType,
    VerificationStatus,
)


def _genuuid():
    return uuid.uuid4()


# ──────────────────────────────────────────────────────────────────────────────
# 1. Project & team
# ──────────────────────────────────────────────────────────────────────────────


class Project(Base):
    """A construction project moving through gated phases."""

    __tablename__ = "projects"
    __table_args__ = (
        Index("ix_projects_status", "status"),
        Index("ix_projects_owner_id", "owner_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    owner_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    project_type: Mapped[str] = mapped_column(String(80), nullable=False)
    complexity: Mapped[ProjectComplexity] = mapped_column(
        EnumText(ProjectComplexity), nullable=False, default=ProjectComplexity.MODERATE
    )
    status: Mapped[ProjectStatus] = mapped_column(
        EnumText(ProjectStatus), nullable=False, default=ProjectStatus.PLANNING
    )
    status_before_hold: Mapped[Optional[ProjectStatus]] = mapped_column(EnumText(ProjectStatus))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    role: Mapped[MemberRole] = mapped_column(EnumText(MemberRole), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 2. Pre-construction: contracts, design, readiness, permits
# ──────────────────────────────────────────────────────────────────────────────


class ContractAgreement(Base):
    __tablename__ = "contract_agreements"
    __table_args__ = (Index("ix_contracts_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    contractor_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    status: Mapped[ContractStatus] = mapped_column(
        EnumText(ContractStatus), nullable=False, default=ContractStatus.DRAFT
    )
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class DesignVersion(Base):
    __tablename__ = "design_versions"
    __table_args__ = (Index("ix_design_versions_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[DesignStatus] = mapped_column(
        EnumText(DesignStatus), nullable=False, default=DesignStatus.DRAFT
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ReadinessChecklist(Base):
    """One per project; owns the readiness items gating permit submission."""

    __tablename__ = "readiness_checklists"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("projects.id"), nullable=False, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ReadinessItem(Base):
    __tablename__ = "readiness_items"
    __table_args__ = (Index("ix_readiness_items_checklist_id", "checklist_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    checklist_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("readiness_checklists.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[ReadinessStatus] = mapped_column(
        EnumText(ReadinessStatus), nullable=False, default=ReadinessStatus.PENDING
    )
    completed_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PermitSet(Base):
    __tablename__ = "permit_sets"
    __table_args__ = (Index("ix_permit_sets_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    status: Mapped[PermitStatus] = mapped_column(
        EnumText(PermitStatus), nullable=False, default=PermitStatus.DRAFT
    )
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 3. Escrow
# ──────────────────────────────────────────────────────────────────────────────


class EscrowAgreement(Base):
    __tablename__ = "escrow_agreements"
    __table_args__ = (Index("ix_escrow_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    funded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    funded_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    # Payment-rail account receiving released funds (contractor's connected account)
    destination_account: Mapped[Optional[str]] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Milestone(Base):
    """A billable unit of work, paid out through one escrow release."""

    __tablename__ = "milestones"
    __table_args__ = (
        Index("ix_milestones_project_id", "project_id"),
        Index("ix_milestones_escrow_id", "escrow_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    escrow_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("escrow_agreements.id"))
    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("contract_agreements.id"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[MilestoneStatus] = mapped_column(
        EnumText(MilestoneStatus), nullable=False, default=MilestoneStatus.PENDING
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    released_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class VerificationItem(Base):
    __tablename__ = "verification_items"
    __table_args__ = (Index("ix_verification_items_milestone_id", "milestone_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    milestone_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("milestones.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[VerificationStatus] = mapped_column(
        EnumText(VerificationStatus), nullable=False, default=VerificationStatus.PENDING
    )
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    verification_item_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("verification_items.id"), nullable=False
    )
    file_key: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class EscrowTransaction(Base):
    """
    One deposit/release/refund movement.

    PENDING → APPROVED → COMPLETED, or → REJECTED. Never regresses.
    At most one open (PENDING/APPROVED) RELEASE per milestone, enforced by
    a partial unique index rather than by read-then-write checks.
    """

    __tablename__ = "escrow_transactions"
    __table_args__ = (
        Index("ix_escrow_tx_escrow_id", "escrow_id"),
        Index(
            "uq_escrow_tx_open_release_per_milestone",
            "milestone_id",
            unique=True,
            sqlite_where=text("type = 'RELEASE' AND status IN ('PENDING', 'APPROVED')"),
            postgresql_where=text("type = 'RELEASE' AND status IN ('PENDING', 'APPROVED')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    escrow_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("escrow_agreements.id"), nullable=False)
    milestone_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("milestones.id"))
    type: Mapped[TransactionType] = mapped_column(EnumText(TransactionType), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        EnumText(TransactionStatus), nullable=False, default=TransactionStatus.PENDING
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    requested_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Dispute(Base):
    __tablename__ = "disputes"
    __table_args__ = (Index("ix_disputes_project_status", "project_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(
        EnumText(DisputeStatus), nullable=False, default=DisputeStatus.OPEN
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)
    opened_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 4. Closeout, reviews, invites
# ──────────────────────────────────────────────────────────────────────────────


class ProjectCloseout(Base):
    __tablename__ = "project_closeouts"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("projects.id"), nullable=False, unique=True
    )
    status: Mapped[CloseoutStatus] = mapped_column(
        EnumText(CloseoutStatus), nullable=False, default=CloseoutStatus.NOT_STARTED
    )
    final_payment_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("project_id", "reviewer_id", name="uq_review_per_reviewer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    reviewer_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class SubcontractorInvite(Base):
    """Single-use registration token."""

    __tablename__ = "subcontractor_invites"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    status: Mapped[InviteStatus] = mapped_column(
        EnumText(InviteStatus), nullable=False, default=InviteStatus.PENDING
    )
    invited_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    accepted_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 5. Events & ML outputs (append-only)
# ──────────────────────────────────────────────────────────────────────────────


class ProjectEvent(Base):
    """Append-only lifecycle log. ``features_extracted`` is the processing marker."""

    __tablename__ = "project_events"
    __table_args__ = (
        Index("ix_project_events_project_id", "project_id"),
        Index("ix_project_events_unprocessed", "features_extracted", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    features_extracted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class MLFeatureSnapshot(Base):
    """Immutable output of one feature extraction. Not deduplicated."""

    __tablename__ = "ml_feature_snapshots"
    __table_args__ = (Index("ix_feature_snapshots_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    feature_version: Mapped[str] = mapped_column(String(20), nullable=False)
    snapshot_reason: Mapped[SnapshotReason] = mapped_column(EnumText(SnapshotReason), nullable=False)
    feature_data: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    timeline_features: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    financial_features: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    team_features: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    progress_features: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    risk_features: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ModelScore(Base):
    """Immutable output of one risk scoring run."""

    __tablename__ = "model_scores"
    __table_args__ = (Index("ix_model_scores_project_id", "project_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    snapshot_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("ml_feature_snapshots.id"))
    model_name: Mapped[str] = mapped_column(String(50), nullable=False)
    model_version: Mapped[str] = mapped_column(String(20), nullable=False)
    score_type: Mapped[str] = mapped_column(String(50), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_high_risk: Mapped[bool] = mapped_column(Boolean, nullable=False)
    risk_level: Mapped[RiskLevel] = mapped_column(EnumText(RiskLevel), nullable=False)
    explanation: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    contributing_factors: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Recommendation(Base):
    """Next-best-action. Only ``status`` changes after creation, forward only."""

    __tablename__ = "recommendations"
    __table_args__ = (
        Index("ix_recommendations_project_id", "project_id"),
        Index("ix_recommendations_status_expires", "status", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("projects.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="NEXT_ACTION")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_impact: Mapped[Optional[str]] = mapped_column(String(20))
    estimated_effort: Mapped[Optional[str]] = mapped_column(String(20))
    status: Mapped[RecommendationStatus] = mapped_column(
        EnumText(RecommendationStatus), nullable=False, default=RecommendationStatus.ACTIVE
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────────────────────────────────────────────────────────
# 6. Audit & notifications (written outside the business transaction)
# ──────────────────────────────────────────────────────────────────────────────


class AuditLog(Base):
    """Append-only audit trail. NO UPDATE, NO DELETE."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_resource", "resource", "resource_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(128))
    previous_data: Mapped[Optional[dict]] = mapped_column(JSONType())
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType())
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType())
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_id", "user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
