"""
Status and type enumerations shared by models, gates and services.

Values are the strings stored in the database.
"""

from enum import StrEnum


# ── Project ────────────────────────────────────────────────────────────


class ProjectStatus(StrEnum):
    PLANNING = "PLANNING"
    DESIGN = "DESIGN"
    READINESS = "READINESS"
    CONTRACT_NEGOTIATION = "CONTRACT_NEGOTIATION"
    PERMIT_SUBMISSION = "PERMIT_SUBMISSION"
    CONSTRUCTION = "CONSTRUCTION"
    CLOSEOUT = "CLOSEOUT"
    COMPLETED = "COMPLETED"
    ON_HOLD = "ON_HOLD"             # Side branch, resumes to the phase it left
    CANCELLED = "CANCELLED"         # Terminal side branch


PHASE_SEQUENCE: tuple[ProjectStatus, ...] = (
    ProjectStatus.PLANNING,
    ProjectStatus.DESIGN,
    ProjectStatus.READINESS,
    ProjectStatus.CONTRACT_NEGOTIATION,
    ProjectStatus.PERMIT_SUBMISSION,
    ProjectStatus.CONSTRUCTION,
    ProjectStatus.CLOSEOUT,
    ProjectStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED})


class ProjectComplexity(StrEnum):
    SIMPLE = "SIMPLE"
    MODERATE = "MODERATE"
    COMPLEX = "COMPLEX"
    MAJOR = "MAJOR"


class MemberRole(StrEnum):
    OWNER = "OWNER"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    DESIGNER = "DESIGNER"
    ARCHITECT = "ARCHITECT"
    PRIME_CONTRACTOR = "PRIME_CONTRACTOR"
    SUBCONTRACTOR = "SUBCONTRACTOR"
    INSPECTOR = "INSPECTOR"


# ── Pre-construction ───────────────────────────────────────────────────


class ContractStatus(StrEnum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    FULLY_SIGNED = "FULLY_SIGNED"
    VOIDED = "VOIDED"


class DesignStatus(StrEnum):
    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    APPROVED_FOR_PERMIT = "APPROVED_FOR_PERMIT"


class ReadinessStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class PermitStatus(StrEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# ── Escrow ─────────────────────────────────────────────────────────────


class MilestoneStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PAID = "PAID"


class VerificationStatus(StrEnum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class TransactionType(StrEnum):
    DEPOSIT = "DEPOSIT"
    RELEASE = "RELEASE"
    REFUND = "REFUND"


class TransactionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"         # Terminal
    REJECTED = "REJECTED"           # Terminal


OPEN_TRANSACTION_STATUSES = (TransactionStatus.PENDING, TransactionStatus.APPROVED)


class DisputeStatus(StrEnum):
    OPEN = "OPEN"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


ACTIVE_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.IN_REVIEW)


class CloseoutStatus(StrEnum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class InviteStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


# ── Events & ML ────────────────────────────────────────────────────────


class EventType(StrEnum):
    PROJECT_CREATED = "PROJECT_CREATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    DESIGN_APPROVED = "DESIGN_APPROVED"
    READINESS_ITEM_COMPLETED = "READINESS_ITEM_COMPLETED"
    MILESTONE_OVERDUE = "MILESTONE_OVERDUE"
    PAYMENT_DELAYED = "PAYMENT_DELAYED"
    PERMIT_SUBMITTED = "PERMIT_SUBMITTED"
    ESCROW_RELEASE_REQUESTED = "ESCROW_RELEASE_REQUESTED"
    ESCROW_RELEASE_APPROVED = "ESCROW_RELEASE_APPROVED"
    ESCROW_RELEASE_REJECTED = "ESCROW_RELEASE_REJECTED"
    INVITE_ACCEPTED = "INVITE_ACCEPTED"
    REVIEW_SUBMITTED = "REVIEW_SUBMITTED"


class SnapshotReason(StrEnum):
    SCHEDULED = "SCHEDULED"
    EVENT = "EVENT"
    MANUAL = "MANUAL"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RecommendationStatus(StrEnum):
    ACTIVE = "ACTIVE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
