"""
Custom exceptions for SiteGate.

Every error carries a machine-readable ``kind`` plus a structured payload,
so callers branch on ``err.kind`` / ``err.payload`` instead of parsing
message strings.

Two families must stay distinguishable:
- POLICY_VIOLATION: accumulated business-rule violations (user-facing, expected)
- GUARDRAIL / RELEASE_BLOCKED: policy boundaries (automation deny-list,
  missing human confirmation, dispute freeze)
"""

from enum import Enum
from typing import Any, Dict, Optional

from sitegate.clock import utcnow


class ErrorKind(str, Enum):
    """Top-level error kinds."""
    POLICY_VIOLATION = "POLICY_VIOLATION"
    RELEASE_BLOCKED = "RELEASE_BLOCKED"
    GUARDRAIL = "GUARDRAIL"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    REGISTRATION_REJECTED = "REGISTRATION_REJECTED"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    VALIDATION = "VALIDATION"


class GuardrailCode(str, Enum):
    """Specific guardrail that fired."""
    AUTOMATION_ACTION_BLOCKED = "AUTOMATION_ACTION_BLOCKED"
    ESCROW_RELEASE_REQUIRES_HUMAN_APPROVAL = "ESCROW_RELEASE_REQUIRES_HUMAN_APPROVAL"
    DISPUTE_FREEZE = "DISPUTE_FREEZE"


class SiteGateError(Exception):
    """
    Base exception for SiteGate.

    All custom exceptions inherit from this class.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.payload = payload or {}
        self.timestamp = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class ValidationError(SiteGateError):
    """Invalid input to an operation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None, **payload: Any):
        if field:
            payload["field"] = field
        super().__init__(message, payload=payload)


class PolicyViolationError(SiteGateError):
    """An accumulating gate returned one or more business-rule violations."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(self, gate: str, violations: list):
        self.gate = gate
        self.violations = list(violations)
        summary = "; ".join(v.message for v in self.violations)
        super().__init__(
            f"{gate.replace('_', ' ').capitalize()} blocked: {summary}",
            payload={
                "gate": gate,
                "violations": [v.to_dict() for v in self.violations],
            },
        )

    @property
    def violation_types(self) -> list[str]:
        return [v.type.value for v in self.violations]


class ReleaseBlockedError(SiteGateError):
    """The escrow release gate denied a release request."""

    kind = ErrorKind.RELEASE_BLOCKED

    def __init__(self, reason: str, escrow_id: Any = None, milestone_id: Any = None):
        self.reason = reason
        super().__init__(
            reason,
            payload={
                "reason": reason,
                "escrow_id": str(escrow_id) if escrow_id else None,
                "milestone_id": str(milestone_id) if milestone_id else None,
            },
        )


class GuardrailError(SiteGateError):
    """A policy boundary was hit (automation, human approval, dispute freeze)."""

    kind = ErrorKind.GUARDRAIL

    def __init__(self, code: GuardrailCode, message: Optional[str] = None, **payload: Any):
        self.code = code
        payload["code"] = code.value
        super().__init__(message or code.value, payload=payload)


class NotFoundError(SiteGateError):
    """A referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} not found",
            payload={
                "resource": resource,
                "resource_id": str(resource_id) if resource_id is not None else None,
            },
        )


class ConflictError(SiteGateError):
    """A concurrent or invalid state transition was refused."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, **payload: Any):
        super().__init__(message, payload=payload)


class RegistrationRejectedError(SiteGateError):
    """Contractor self-registration was refused (authorization failure)."""

    kind = ErrorKind.REGISTRATION_REJECTED

    def __init__(self, message: str, **payload: Any):
        super().__init__(message, payload=payload)


class ExternalServiceError(SiteGateError):
    """A collaborator (payment rail, text generation) failed or timed out."""

    kind = ErrorKind.EXTERNAL_SERVICE

    def __init__(self, service: str, message: str, timeout: bool = False):
        self.service = service
        self.timeout = timeout
        super().__init__(
            f"{service}: {message}",
            payload={"service": service, "timeout": timeout},
        )
