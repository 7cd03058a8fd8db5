"""
Recommendation Generator Tests.

Covers:
- Rule-based priorities (contract > design > readiness)
- Parsing generative replies
- Fallback to rules when the generative backend fails
- Persistence with TTL
"""

import json
import uuid
from datetime import timedelta

import pytest

from sitegate.db.repositories.ml import ml_repo
from sitegate.enums import RecommendationStatus
from sitegate.errors import ConflictError, ExternalServiceError, NotFoundError
from sitegate.ml.features import FEATURE_VERSION, FeatureExtractor
from sitegate.ml.recommendations import (
    GenerativeStrategy,
    RecommendationGenerator,
    RuleBasedStrategy,
    build_context,
)
from sitegate.ml.schemas import (
    FinancialFeatures,
    ProgressFeatures,
    ProjectFeatures,
    RiskFeatures,
    TeamFeatures,
    TimelineFeatures,
)
from tests.factories import FIXED_NOW, FakeLLM, create_project


def _features(readiness_progress: float = 0.5, **risk) -> ProjectFeatures:
    return ProjectFeatures(
        project_id=uuid.uuid4(),
        feature_version=FEATURE_VERSION,
        project_type="ADDITION_EXPANSION",
        category="RESIDENTIAL",
        complexity="COMPLEX",
        timeline=TimelineFeatures(days_active=40, current_phase="DESIGN"),
        financial=FinancialFeatures(),
        team=TeamFeatures(team_size=3),
        progress=ProgressFeatures(readiness_progress=readiness_progress),
        risk=RiskFeatures(**risk),
    )


GOOD_REPLY = "Here is my answer:\n" + json.dumps({
    "type": "NEXT_ACTION",
    "title": "Schedule soil testing",
    "description": "Book the geotechnical survey this week.",
    "priority": 15,
    "reasoning": "Readiness is blocked on the soil report.",
    "confidence": 0.9,
    "estimatedImpact": "HIGH",
    "estimatedEffort": "LOW",
}) + "\nGood luck!"


def _generator(strategy, ttl_days=7):
    return RecommendationGenerator(
        strategy=strategy,
        extractor=FeatureExtractor(clock=lambda: FIXED_NOW),
        clock=lambda: FIXED_NOW,
        ttl_days=ttl_days,
    )


class TestRuleBasedStrategy:
    def setup_method(self):
        self.strategy = RuleBasedStrategy(confidence=0.75)

    @pytest.mark.asyncio
    async def test_unsigned_contract_first(self):
        draft = await self.strategy.propose(_features(contracts_not_signed=1, designs_not_approved=2))

        assert draft.title == "Sign Project Contract"
        assert draft.priority == 9
        assert draft.confidence == 0.75

    @pytest.mark.asyncio
    async def test_unapproved_design_second(self):
        draft = await self.strategy.propose(_features(designs_not_approved=1))

        assert draft.title == "Approve Design for Permit"
        assert draft.priority == 8

    @pytest.mark.asyncio
    async def test_readiness_otherwise(self):
        draft = await self.strategy.propose(_features(incomplete_required_readiness=2))

        assert draft.title == "Complete Required Readiness Items"
        assert draft.priority == 7
        assert "readiness at 50%" in draft.reasoning

    @pytest.mark.asyncio
    async def test_reasoning_carries_trigger_and_context(self):
        features = _features(contracts_not_signed=2)

        draft = await self.strategy.propose(features)

        assert draft.reasoning.startswith("Recommended because 2 contract(s) not fully signed.")
        assert build_context(features) in draft.reasoning


class TestGenerativeParse:
    def test_extracts_json_from_prose(self):
        draft = GenerativeStrategy.parse(GOOD_REPLY)

        assert draft.title == "Schedule soil testing"
        assert draft.estimated_effort == "LOW"
        assert draft.priority == 10

    @pytest.mark.parametrize(
        "reply",
        ["No JSON here", "{not valid json}", json.dumps({"title": "Missing fields"})],
    )
    def test_unusable_reply_raises(self, reply):
        with pytest.raises(ExternalServiceError) as exc_info:
            GenerativeStrategy.parse(reply)
        assert exc_info.value.service == "text_generation"


class TestRecommendationGenerator:
    @pytest.mark.asyncio
    async def test_generative_recommendation_persisted(self, db):
        project = await create_project(db)
        llm = FakeLLM(reply=GOOD_REPLY)

        rec = await _generator(GenerativeStrategy(llm)).generate(db, project.id)

        assert rec.title == "Schedule soil testing"
        assert rec.status == RecommendationStatus.ACTIVE
        assert rec.reasoning["ai_generated"] is True
        assert rec.reasoning["model"] == "fake-llm"
        assert "fallback_from" not in rec.reasoning
        assert "Readiness Progress" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_backend_failure_falls_back_to_rules(self, db):
        project = await create_project(db)
        llm = FakeLLM(error=ExternalServiceError("text_generation", "request timed out", timeout=True))

        rec = await _generator(GenerativeStrategy(llm)).generate(db, project.id)

        assert rec.reasoning["ai_generated"] is False
        assert rec.reasoning["model"] == "rule-based"
        assert rec.reasoning["fallback_from"] == "fake-llm"
        assert rec.priority == 7

    @pytest.mark.asyncio
    async def test_unparseable_reply_falls_back_to_rules(self, db):
        project = await create_project(db)

        rec = await _generator(GenerativeStrategy(FakeLLM(reply="Sorry, I cannot help."))).generate(
            db, project.id
        )

        assert rec.reasoning["fallback_from"] == "fake-llm"

    @pytest.mark.asyncio
    async def test_rule_based_expiry_and_snapshot(self, db):
        project = await create_project(db)

        rec = await _generator(RuleBasedStrategy(), ttl_days=7).generate(db, project.id)

        assert rec.created_at == FIXED_NOW
        assert rec.expires_at == FIXED_NOW + timedelta(days=7)
        assert rec.reasoning["ai_generated"] is False
        assert len(await ml_repo.list_snapshots(db, project.id)) == 1
        active = await ml_repo.list_recommendations(db, project.id, RecommendationStatus.ACTIVE)
        assert [r.id for r in active] == [rec.id]

    @pytest.mark.asyncio
    async def test_status_moves_forward_only(self, db):
        project = await create_project(db)
        rec = await _generator(RuleBasedStrategy()).generate(db, project.id)

        assert await ml_repo.set_recommendation_status(db, rec.id, RecommendationStatus.ACCEPTED)
        assert not await ml_repo.set_recommendation_status(db, rec.id, RecommendationStatus.EXPIRED)
        assert not await ml_repo.set_recommendation_status(db, rec.id, RecommendationStatus.ACTIVE)

    @pytest.mark.asyncio
    async def test_owner_accepts_active_recommendation(self, db):
        project = await create_project(db)
        generator = _generator(RuleBasedStrategy())
        rec = await generator.generate(db, project.id)

        accepted = await generator.accept(db, rec.id)

        assert accepted.status == RecommendationStatus.ACCEPTED
        with pytest.raises(ConflictError) as exc_info:
            await generator.reject(db, rec.id)
        assert exc_info.value.payload["status"] == "ACCEPTED"

    @pytest.mark.asyncio
    async def test_owner_rejects_active_recommendation(self, db):
        project = await create_project(db)
        generator = _generator(RuleBasedStrategy())
        rec = await generator.generate(db, project.id)

        rejected = await generator.reject(db, rec.id)

        assert rejected.status == RecommendationStatus.REJECTED
        assert await ml_repo.list_recommendations(db, project.id, RecommendationStatus.ACTIVE) == []

    @pytest.mark.asyncio
    async def test_respond_to_unknown_recommendation(self, db):
        with pytest.raises(NotFoundError):
            await _generator(RuleBasedStrategy()).accept(db, uuid.uuid4())
