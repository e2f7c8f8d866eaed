"""Tests for LLM-graded response validation."""

from __future__ import annotations

import json

import pytest

from app.core.exceptions import LlmProviderError
from app.gateway.types import LlmProvider
from app.prompt_engine.types import ToolCallLog, Tracing, ValidationMetrics
from app.prompt_engine.validation import VALIDATION_RESPONSE_FORMAT, ValidationScorer, build_score
from tests.fakes import ScriptedLlm, text_response


def _payload(relevance=80, tool_usage=80, clarity=80, accuracy=80, critical=None) -> dict:
    return {
        "metrics": {
            "relevanceScore": relevance,
            "toolUsageScore": tool_usage,
            "clarityScore": clarity,
            "accuracyScore": accuracy,
        },
        "analysis": {"relevanceAnalysis": {"strengths": ["on topic"]}},
        "criticalIssues": critical or [],
    }


class TestBuildScore:
    def test_weighted_overall(self):
        score = build_score(_payload(relevance=100, tool_usage=0, clarity=60, accuracy=40), threshold=70)
        # 100*.35 + 0*.15 + 60*.25 + 40*.25
        assert score.overall_score == pytest.approx(60.0)
        assert score.passed is False

    def test_passes_at_threshold(self):
        score = build_score(_payload(70, 70, 70, 70), threshold=70)
        assert score.overall_score == pytest.approx(70.0)
        assert score.passed is True

    def test_critical_issue_blocks_pass(self):
        score = build_score(_payload(95, 95, 95, 95, critical=[{"issue": "wrong total"}]), threshold=70)
        assert score.overall_score >= 90
        assert score.passed is False
        assert score.critical_issues == [{"issue": "wrong total"}]

    def test_missing_or_garbage_metrics_count_as_zero(self):
        score = build_score({"metrics": {"relevanceScore": "n/a"}}, threshold=70)
        assert score.metrics == ValidationMetrics(0.0, 0.0, 0.0, 0.0)
        assert score.passed is False

    def test_to_dict(self):
        data = build_score(_payload(), threshold=75).to_dict()
        assert data["threshold"] == 75
        assert data["metrics"]["tool_usage"] == 80
        assert data["explanations"]["relevanceAnalysis"]["strengths"] == ["on topic"]


class TestValidationScorer:
    @pytest.mark.asyncio
    async def test_scores_structured_response(self):
        llm = ScriptedLlm(text_response(_payload(90, 90, 90, 90)))
        scorer = ValidationScorer(llm, threshold=70)
        tracing = Tracing(trace_id="t1", span_id="s1")

        score = await scorer.score(
            original_prompts={"systemPrompt": "You are a tutor", "userPrompt": "2+2?"},
            tool_call_history=[ToolCallLog("calc", {"a": 2, "b": 2}, {"result": 4}, 5)],
            final_response="4",
            tracing=tracing,
        )

        assert score.passed is True
        request = llm.requests[0]
        assert request.response_format == VALIDATION_RESPONSE_FORMAT
        assert request.tracing.span_name == "response_validation"
        assert request.tracing.parent_span_id == "s1"
        body = json.loads(request.user_prompt)
        assert body["finalResponse"] == "4"
        assert body["toolCallHistory"][0]["tool_name"] == "calc"
        assert body["originalRequest"]["userPrompt"] == "2+2?"

    @pytest.mark.asyncio
    async def test_accepts_json_string_content(self):
        llm = ScriptedLlm(text_response(json.dumps(_payload(50, 50, 50, 50))))
        score = await ValidationScorer(llm, threshold=70).score({}, [], "x", Tracing(trace_id="t"))
        assert score.overall_score == pytest.approx(50.0)
        assert score.passed is False

    @pytest.mark.asyncio
    async def test_invalid_json_raises_provider_error(self):
        llm = ScriptedLlm(text_response("I think it's fine"))
        with pytest.raises(LlmProviderError):
            await ValidationScorer(llm).score({}, [], "x", Tracing(trace_id="t"))

    @pytest.mark.asyncio
    async def test_non_object_payload_raises(self):
        llm = ScriptedLlm(text_response("[1, 2]"))
        with pytest.raises(LlmProviderError, match="unexpected shape"):
            await ValidationScorer(llm).score({}, [], "x", Tracing(trace_id="t"))

    def test_defaults_from_settings(self):
        scorer = ValidationScorer(ScriptedLlm())
        assert scorer.threshold == 70
        assert scorer.config.provider == LlmProvider.OPENAI
        assert scorer.config.temperature == pytest.approx(0.1)
