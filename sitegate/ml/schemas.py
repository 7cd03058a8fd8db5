"""
Feature snapshot, risk assessment and recommendation shapes.

Feature groups serialize with their snake_case field names; the same dict
is persisted on MLFeatureSnapshot.feature_data.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitegate.enums import RiskLevel


# ── Feature groups ─────────────────────────────────────────────────────


class TimelineFeatures(BaseModel):
    days_active: int = 0
    days_since_last_update: int = 0
    current_phase: str
    phase_transitions: int = 0


class FinancialFeatures(BaseModel):
    total_milestones: int = 0
    completed_milestones: int = 0
    milestone_completion_rate: float = 0.0
    escrow_funded: bool = False
    escrow_funded_amount: float = 0.0


class TeamFeatures(BaseModel):
    team_size: int = 0
    has_contractor: bool = False
    has_pm: bool = False
    has_designer: bool = False


class ProgressFeatures(BaseModel):
    readiness_progress: float = 0.0
    design_versions: int = 0
    approved_designs: int = 0
    permit_sets: int = 0
    issued_permits: int = 0


class RiskFeatures(BaseModel):
    overdue_milestones: int = 0
    contracts_not_signed: int = 0
    designs_not_approved: int = 0
    incomplete_required_readiness: int = 0


class ProjectFeatures(BaseModel):
    """Complete, deterministic summary of one project's state."""
    project_id: uuid.UUID
    feature_version: str
    project_type: str
    category: str
    complexity: str
    timeline: TimelineFeatures
    financial: FinancialFeatures
    team: TeamFeatures
    progress: ProgressFeatures
    risk: RiskFeatures

    def to_feature_data(self) -> dict:
        return self.model_dump(mode="json")


# ── Risk ───────────────────────────────────────────────────────────────


class RiskFactor(BaseModel):
    """One input that moved the score, and by how much."""
    name: str
    value: float
    contribution: float


class RiskAssessment(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    risk_level: RiskLevel
    confidence: float
    base_score: float
    factors: list[RiskFactor] = Field(default_factory=list)
    summary: str

    @property
    def is_high_risk(self) -> bool:
        return self.risk_level == RiskLevel.HIGH

    def explanation(self) -> dict:
        return {
            "summary": self.summary,
            "base_score": self.base_score,
            "factors": [f.model_dump() for f in self.factors],
        }


# ── Recommendations ────────────────────────────────────────────────────


class RecommendationDraft(BaseModel):
    """
    A proposed next-best-action before persistence.

    Accepts the camelCase keys a text-generation backend replies with.
    """
    model_config = ConfigDict(populate_by_name=True)

    type: str = "NEXT_ACTION"
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    priority: int
    reasoning: str
    confidence: float
    estimated_impact: Optional[str] = Field(default="HIGH", alias="estimatedImpact")
    estimated_effort: Optional[str] = Field(default="MEDIUM", alias="estimatedEffort")

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, v):
        return max(1, min(10, int(v)))

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return max(0.0, min(1.0, float(v)))
