"""LLM-graded quality check of a final response.

One structured-output call rates four dimensions 0-100; the weighted sum
plus the absence of critical issues decides pass/fail. The call is out of
band: it never counts against an execution's LLM-call budget.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from app.core.config import settings
from app.core.exceptions import LlmProviderError
from app.gateway.types import LlmConfig, LlmProvider, LlmRequest
from app.prompt_engine.ports import LlmClient
from app.prompt_engine.types import ToolCallLog, Tracing, ValidationMetrics, ValidationScore

logger = logging.getLogger(__name__)


VALIDATION_SYSTEM_PROMPT = """You review assistant responses before they are delivered to a user.
You receive the original request, the history of tool calls made while answering it, and the final response.

Score each dimension from 0 to 100:

1. RELEVANCE & COMPLETENESS: does the response answer the actual request, every part of it, without losing context?
2. TOOL USAGE: were the tool calls necessary, used in a sensible order, and were their results interpreted correctly?
3. CLARITY: is the response well organized, at the right level of detail, and actionable?
4. ACCURACY: is it consistent with the tool results and free of contradictions or unsupported claims?

Scale: 90-100 exceptional, 80-89 strong, 70-79 acceptable, 60-69 needs review, 0-59 not ready.

The overall score is weighted: relevance 35%, tool usage 15%, clarity 25%, accuracy 25%.

List as critical issues anything that must block delivery: missing critical information, wrong conclusions,
misleading statements, incomplete processes or logical inconsistencies. Return an empty list when there are none."""


def _string_list() -> dict:
    return {"type": "array", "items": {"type": "string"}}


VALIDATION_RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "validation_score",
        "schema": {
            "type": "object",
            "properties": {
                "metrics": {
                    "type": "object",
                    "properties": {
                        "relevanceScore": {"type": "number"},
                        "toolUsageScore": {"type": "number"},
                        "clarityScore": {"type": "number"},
                        "accuracyScore": {"type": "number"},
                    },
                    "required": ["relevanceScore", "toolUsageScore", "clarityScore", "accuracyScore"],
                },
                "analysis": {
                    "type": "object",
                    "properties": {
                        "relevanceAnalysis": {
                            "type": "object",
                            "properties": {
                                "strengths": _string_list(),
                                "weaknesses": _string_list(),
                                "userImpact": {"type": "string"},
                            },
                        },
                        "toolUsageAnalysis": {
                            "type": "object",
                            "properties": {
                                "toolEffectiveness": _string_list(),
                                "unnecessaryTools": _string_list(),
                                "missingTools": _string_list(),
                            },
                        },
                        "clarityAnalysis": {
                            "type": "object",
                            "properties": {
                                "readabilityIssues": _string_list(),
                                "structureIssues": _string_list(),
                                "improvementSuggestions": _string_list(),
                            },
                        },
                        "accuracyAnalysis": {
                            "type": "object",
                            "properties": {
                                "verifiedFacts": _string_list(),
                                "uncertainClaims": _string_list(),
                                "contradictions": _string_list(),
                            },
                        },
                    },
                    "required": ["relevanceAnalysis", "toolUsageAnalysis", "clarityAnalysis", "accuracyAnalysis"],
                },
                "criticalIssues": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "issue": {"type": "string"},
                            "impact": {"type": "string"},
                            "recommendation": {"type": "string"},
                        },
                    },
                },
            },
            "required": ["metrics", "analysis", "criticalIssues"],
            "additionalProperties": False,
        },
    },
}


def _score(metrics: dict, key: str) -> float:
    value = metrics.get(key, 0)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def build_score(payload: dict[str, Any], threshold: float) -> ValidationScore:
    """Turn the grader's structured output into a ValidationScore."""
    raw = payload.get("metrics") or {}
    metrics = ValidationMetrics(
        relevance=_score(raw, "relevanceScore"),
        tool_usage=_score(raw, "toolUsageScore"),
        clarity=_score(raw, "clarityScore"),
        accuracy=_score(raw, "accuracyScore"),
    )
    critical = list(payload.get("criticalIssues") or [])
    overall = metrics.weighted()
    return ValidationScore(
        metrics=metrics,
        explanations=payload.get("analysis") or {},
        critical_issues=critical,
        overall_score=overall,
        passed=overall >= threshold and not critical,
        threshold=threshold,
    )


class ValidationScorer:
    def __init__(
        self,
        llm: LlmClient,
        threshold: float | None = None,
        config: LlmConfig | None = None,
    ):
        self.llm = llm
        self.threshold = settings.validation_threshold if threshold is None else threshold
        self.config = config or LlmConfig(
            provider=LlmProvider(settings.validation_provider),
            model=settings.validation_model,
            temperature=settings.validation_temperature,
        )

    async def score(
        self,
        original_prompts: dict[str, Any],
        tool_call_history: list[ToolCallLog],
        final_response: Any,
        tracing: Tracing,
        request_metadata: dict[str, Any] | None = None,
    ) -> ValidationScore:
        span = tracing.child("response_validation")
        request = LlmRequest(
            config=self.config,
            tracing=span,
            system_prompt=VALIDATION_SYSTEM_PROMPT,
            user_prompt=json.dumps(
                {
                    "originalRequest": original_prompts,
                    "toolCallHistory": [log.to_dict() for log in tool_call_history],
                    "finalResponse": final_response,
                },
                ensure_ascii=False,
                default=str,
            ),
            response_format=VALIDATION_RESPONSE_FORMAT,
            request_metadata=request_metadata or {},
        )

        response = await self.llm.complete(request)
        payload = response.content
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise LlmProviderError(f"Validation response is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise LlmProviderError("Validation response has an unexpected shape")

        result = build_score(payload, self.threshold)
        logger.info(
            "Validation score %.2f (threshold %.0f, %d critical issue(s)) → %s",
            result.overall_score,
            result.threshold,
            len(result.critical_issues),
            "passed" if result.passed else "failed",
            extra=span.log_extra(),
        )
        return result
