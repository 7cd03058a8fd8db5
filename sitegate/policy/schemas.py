"""
Gate result shapes.

Accumulating gates return ``list[Violation]`` (empty means pass).
The escrow release gate returns a single ``ReleaseDecision``.
"""

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel


class ViolationType(StrEnum):
    # Permit submission
    CONTRACT_NOT_SIGNED = "CONTRACT_NOT_SIGNED"
    DESIGN_NOT_APPROVED = "DESIGN_NOT_APPROVED"
    READINESS_INCOMPLETE = "READINESS_INCOMPLETE"
    # Review submission
    PROJECT_NOT_COMPLETED = "PROJECT_NOT_COMPLETED"
    CLOSEOUT_INCOMPLETE = "CLOSEOUT_INCOMPLETE"
    FINAL_PAYMENT_NOT_RELEASED = "FINAL_PAYMENT_NOT_RELEASED"
    # Phase transitions
    CLOSEOUT_REQUIRED = "CLOSEOUT_REQUIRED"


class Violation(BaseModel):
    """One unmet business rule."""
    type: ViolationType
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type.value, "message": self.message}


class ReleaseDecision(BaseModel):
    """Escrow release gate outcome: first failing check wins."""
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "ReleaseDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "ReleaseDecision":
        return cls(allowed=False, reason=reason)
