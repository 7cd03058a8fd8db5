"""
Risk Scorer: permit submission risk.

Fixed, explainable rule set (not a trained model):

    score = 0.5
          + 0.20  if any contract is not fully signed
          + 0.15  if any design version is not approved for permit
          + 0.10  per incomplete required readiness item
          - 0.15  if readiness progress > 0.8
    clamped to [0, 1]

    HIGH > 0.7 ≥ MEDIUM > 0.4 ≥ LOW

The explanation lists every factor that fired with its contribution.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.config import settings
from sitegate.db.models import ModelScore
from sitegate.db.repositories.ml import MLRepository, ml_repo
from sitegate.enums import RiskLevel, SnapshotReason
from sitegate.ml.features import FeatureExtractor
from sitegate.ml.schemas import ProgressFeatures, ProjectFeatures, RiskAssessment, RiskFactor, RiskFeatures

logger = structlog.get_logger(__name__)

MODEL_NAME = "permit_risk"
MODEL_VERSION = "1.0"

BASE_SCORE = 0.5
UNSIGNED_CONTRACT_WEIGHT = 0.20
UNAPPROVED_DESIGN_WEIGHT = 0.15
READINESS_ITEM_WEIGHT = 0.10
PROGRESS_CREDIT = 0.15
PROGRESS_THRESHOLD = 0.8

HIGH_THRESHOLD = 0.7
MEDIUM_THRESHOLD = 0.4


def risk_level_for(score: float) -> RiskLevel:
    if score > HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score > MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def compute_risk(
    risk: RiskFeatures,
    progress: ProgressFeatures,
    confidence: float = 0.75,
) -> RiskAssessment:
    """Pure scoring function. Same inputs, same assessment."""
    factors: list[RiskFactor] = []

    if risk.contracts_not_signed > 0:
        factors.append(RiskFactor(
            name="contracts_not_signed",
            value=risk.contracts_not_signed,
            contribution=UNSIGNED_CONTRACT_WEIGHT,
        ))
    if risk.designs_not_approved > 0:
        factors.append(RiskFactor(
            name="designs_not_approved",
            value=risk.designs_not_approved,
            contribution=UNAPPROVED_DESIGN_WEIGHT,
        ))
    if risk.incomplete_required_readiness > 0:
        factors.append(RiskFactor(
            name="incomplete_required_readiness",
            value=risk.incomplete_required_readiness,
            contribution=round(READINESS_ITEM_WEIGHT * risk.incomplete_required_readiness, 4),
        ))
    if progress.readiness_progress > PROGRESS_THRESHOLD:
        factors.append(RiskFactor(
            name="readiness_progress",
            value=progress.readiness_progress,
            contribution=-PROGRESS_CREDIT,
        ))

    raw = BASE_SCORE + sum(f.contribution for f in factors)
    # Rounded so stored scores compare exactly (0.5 - 0.15 == 0.35)
    score = round(max(0.0, min(1.0, raw)), 4)
    level = risk_level_for(score)

    return RiskAssessment(
        score=score,
        risk_level=level,
        confidence=confidence,
        base_score=BASE_SCORE,
        factors=factors,
        summary=f"Permit submission risk is {level.value.lower()}",
    )


class RiskScorer:
    """Scores a project and persists one ModelScore per call."""

    def __init__(
        self,
        extractor: Optional[FeatureExtractor] = None,
        ml: Optional[MLRepository] = None,
        confidence: Optional[float] = None,
    ):
        self.extractor = extractor or FeatureExtractor()
        self.ml = ml or ml_repo
        self.confidence = confidence if confidence is not None else settings.risk_confidence

    async def score(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        features: Optional[ProjectFeatures] = None,
        snapshot_id: Optional[uuid.UUID] = None,
        reason: SnapshotReason = SnapshotReason.SCHEDULED,
    ) -> ModelScore:
        """
        Score from the given features, or extract a fresh snapshot first.

        Callers that already extracted (event processing, batch) pass the
        features and snapshot id so no second snapshot is written.
        """
        if features is None:
            extraction = await self.extractor.extract(db, project_id, reason)
            features, snapshot_id = extraction.features, extraction.snapshot.id

        assessment = compute_risk(features.risk, features.progress, self.confidence)
        record = await self.ml.add_score(
            db,
            project_id=project_id,
            snapshot_id=snapshot_id,
            model_name=MODEL_NAME,
            model_version=MODEL_VERSION,
            score_type=MODEL_NAME,
            score=assessment.score,
            confidence=assessment.confidence,
            is_high_risk=assessment.is_high_risk,
            risk_level=assessment.risk_level,
            explanation=assessment.explanation(),
            contributing_factors=features.risk.model_dump(),
        )
        logger.info(
            "risk_scored",
            project_id=str(project_id),
            score=assessment.score,
            risk_level=assessment.risk_level.value,
            factors=[f.name for f in assessment.factors],
        )
        return record
