"""
Recommendation Generator: one prioritized next-best-action per run.

Strategies:
- RuleBasedStrategy: deterministic, always available
- GenerativeStrategy: asks the text-generation backend; selected only when
  an API key is configured

If the generative strategy fails (timeout, HTTP error, unparseable reply)
the generator logs the failure and falls back to the rule-based strategy;
the stored reasoning records both the fallback and the failed backend.
"""

import json
import re
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from sitegate.clock import utcnow
from sitegate.config import settings
from sitegate.db.models import Recommendation
from sitegate.db.repositories.ml import MLRepository, ml_repo
from sitegate.enums import RecommendationStatus, SnapshotReason
from sitegate.errors import ConflictError, ExternalServiceError, NotFoundError
from sitegate.ml.features import FeatureExtractor
from sitegate.ml.schemas import ProjectFeatures, RecommendationDraft
from sitegate.services.llm_gateway import LLMGateway

logger = structlog.get_logger(__name__)

RULE_BASED = "rule-based"

SYSTEM_PROMPT = (
    "You advise owners of construction projects. Given project data, name the "
    "single most important next action. Respond ONLY with a JSON object."
)

RESPONSE_FORMAT = """Respond ONLY with a JSON object in this exact format:
{
  "type": "NEXT_ACTION",
  "title": "Clear action title",
  "description": "Detailed description",
  "priority": 8,
  "reasoning": "Why this is the most important action",
  "confidence": 0.85,
  "estimatedImpact": "HIGH",
  "estimatedEffort": "MEDIUM"
}"""


def build_context(features: ProjectFeatures) -> str:
    """Plain-text project summary shared by both strategies."""
    return "\n".join([
        f"Project Status: {features.timeline.current_phase}",
        f"Days Active: {features.timeline.days_active}",
        f"Readiness Progress: {features.progress.readiness_progress * 100:.0f}%",
        f"Milestone Completion: {features.financial.milestone_completion_rate * 100:.0f}%",
        f"Team Size: {features.team.team_size}",
        "",
        "Risk Indicators:",
        f"- Overdue Milestones: {features.risk.overdue_milestones}",
        f"- Unsigned Contracts: {features.risk.contracts_not_signed}",
        f"- Unapproved Designs: {features.risk.designs_not_approved}",
        f"- Incomplete Required Readiness: {features.risk.incomplete_required_readiness}",
    ])


class RecommendationStrategy(Protocol):
    name: str

    async def propose(self, features: ProjectFeatures) -> RecommendationDraft:
        ...


class RuleBasedStrategy:
    """First matching rule wins: contract (9), design (8), readiness (7)."""

    name = RULE_BASED

    def __init__(self, confidence: Optional[float] = None):
        self.confidence = confidence if confidence is not None else settings.recommendation_confidence

    async def propose(self, features: ProjectFeatures) -> RecommendationDraft:
        risk = features.risk
        if risk.contracts_not_signed > 0:
            title = "Sign Project Contract"
            description = "Complete contract signing to proceed with the project."
            priority = 9
            trigger = f"{risk.contracts_not_signed} contract(s) not fully signed"
        elif risk.designs_not_approved > 0:
            title = "Approve Design for Permit"
            description = "Review and approve design documents for permit submission."
            priority = 8
            trigger = f"{risk.designs_not_approved} design version(s) not approved for permit"
        else:
            title = "Complete Required Readiness Items"
            description = "Focus on completing required readiness checklist items to move forward."
            priority = 7
            trigger = (
                f"{risk.incomplete_required_readiness} required readiness item(s) incomplete, "
                f"readiness at {features.progress.readiness_progress * 100:.0f}%"
            )

        return RecommendationDraft(
            title=title,
            description=description,
            priority=priority,
            reasoning=f"Recommended because {trigger}.\n\n{build_context(features)}",
            confidence=self.confidence,
            estimated_impact="HIGH",
            estimated_effort="MEDIUM",
        )


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class GenerativeStrategy:
    """Delegates to the text-generation backend and validates its JSON reply."""

    def __init__(self, llm: LLMGateway):
        self.llm = llm
        self.name = llm.model

    async def propose(self, features: ProjectFeatures) -> RecommendationDraft:
        prompt = (
            "Based on this construction project data, what is the single most "
            "important next action the project owner should take?\n\n"
            f"{build_context(features)}\n\n{RESPONSE_FORMAT}"
        )
        text = await self.llm.generate(system=SYSTEM_PROMPT, user_message=prompt)
        return self.parse(text)

    @staticmethod
    def parse(text: str) -> RecommendationDraft:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ExternalServiceError("text_generation", "reply contained no JSON object")
        try:
            return RecommendationDraft.model_validate(json.loads(match.group(0)))
        except (ValueError, TypeError, PydanticValidationError) as e:
            raise ExternalServiceError("text_generation", f"unusable reply: {e}") from e


def default_strategy() -> RecommendationStrategy:
    """Generative when a backend is configured, rule-based otherwise."""
    if settings.generative_enabled:
        return GenerativeStrategy(LLMGateway())
    return RuleBasedStrategy()


class RecommendationGenerator:
    """Produces and persists ACTIVE recommendations, and records the owner's response."""

    def __init__(
        self,
        strategy: Optional[RecommendationStrategy] = None,
        fallback: Optional[RecommendationStrategy] = None,
        extractor: Optional[FeatureExtractor] = None,
        ml: Optional[MLRepository] = None,
        clock: Callable[[], datetime] = utcnow,
        ttl_days: Optional[int] = None,
    ):
        self.strategy = strategy or default_strategy()
        self.fallback = fallback if fallback is not None else RuleBasedStrategy()
        self.extractor = extractor or FeatureExtractor(clock=clock)
        self.ml = ml or ml_repo
        self.clock = clock
        self.ttl = timedelta(days=ttl_days if ttl_days is not None else settings.recommendation_ttl_days)

    async def generate(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        features: Optional[ProjectFeatures] = None,
        reason: SnapshotReason = SnapshotReason.SCHEDULED,
    ) -> Recommendation:
        if features is None:
            features = (await self.extractor.extract(db, project_id, reason)).features

        used = self.strategy
        failed_backend = None
        try:
            draft = await self.strategy.propose(features)
        except ExternalServiceError as e:
            if self.fallback is None or self.fallback is self.strategy:
                raise
            logger.warning(
                "recommendation_strategy_failed",
                project_id=str(project_id),
                strategy=self.strategy.name,
                error=str(e),
            )
            failed_backend = self.strategy.name
            used = self.fallback
            draft = await self.fallback.propose(features)

        reasoning = {
            "explanation": draft.reasoning,
            "ai_generated": used.name != RULE_BASED,
            "model": used.name,
        }
        if failed_backend:
            reasoning["fallback_from"] = failed_backend

        now = self.clock()
        rec = await self.ml.add_recommendation(
            db,
            project_id=project_id,
            type=draft.type,
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            reasoning=reasoning,
            confidence=draft.confidence,
            estimated_impact=draft.estimated_impact,
            estimated_effort=draft.estimated_effort,
            status=RecommendationStatus.ACTIVE,
            expires_at=now + self.ttl,
            created_at=now,
        )
        logger.info(
            "recommendation_generated",
            project_id=str(project_id),
            recommendation_id=str(rec.id),
            title=rec.title,
            priority=rec.priority,
            model=used.name,
        )
        return rec

    async def accept(self, db: AsyncSession, recommendation_id: uuid.UUID) -> Recommendation:
        return await self._respond(db, recommendation_id, RecommendationStatus.ACCEPTED)

    async def reject(self, db: AsyncSession, recommendation_id: uuid.UUID) -> Recommendation:
        return await self._respond(db, recommendation_id, RecommendationStatus.REJECTED)

    async def _respond(
        self, db: AsyncSession, recommendation_id: uuid.UUID, target: RecommendationStatus
    ) -> Recommendation:
        """Owner response to an ACTIVE recommendation; status only moves forward."""
        if not await self.ml.set_recommendation_status(db, recommendation_id, target):
            rec = await db.get(Recommendation, recommendation_id, populate_existing=True)
            if rec is None:
                raise NotFoundError("Recommendation", recommendation_id)
            raise ConflictError(
                f"Recommendation is {rec.status.value} and can no longer be {target.value.lower()}",
                recommendation_id=str(recommendation_id),
                status=rec.status.value,
            )
        rec = await db.get(Recommendation, recommendation_id, populate_existing=True)
        logger.info(
            "recommendation_status_changed",
            recommendation_id=str(recommendation_id),
            status=target.value,
        )
        return rec
