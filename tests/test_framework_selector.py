"""Tests for framework selection by model analysis and keyword rules."""

from __future__ import annotations

import json

import pytest

from src.llm_gateway import LLMRateLimitError
from src.slide_generation.framework_selector import (
    FrameworkSelector,
    SelectionStrategy,
    match_framework_keyword,
    parse_framework_response,
    select_by_rules,
)
from src.slide_generation.models import GenerationRequest

from .conftest import ScriptedGateway


def _request(prompt: str, audience: str = "Team") -> GenerationRequest:
    return GenerationRequest(prompt=prompt, slide_count=5, audience=audience)


class TestRules:
    @pytest.mark.parametrize(
        "prompt, audience, expected, confidence",
        [
            ("A case study of our migration", "Team", "star", 85),
            ("Compare three CRM vendors", "Team", "comparison", 90),
            ("Quarterly update", "Board of directors", "pyramid", 80),
            ("We recommend a new pricing model", "Team", "prep", 75),
            ("Our onboarding challenge", "Team", "problem-solution", 75),
            ("Company picnic plans", "Team", "scqa", 70),
        ],
    )
    def test_keyword_table(self, prompt, audience, expected, confidence):
        selection = select_by_rules(_request(prompt, audience))
        assert selection.framework.id == expected
        assert selection.confidence == confidence
        assert selection.strategy == "rules"

    def test_first_matching_rule_wins(self):
        """A case study that also compares options still maps to STAR."""
        assert select_by_rules(_request("Case study: compare two options")).framework.id == "star"


class TestParsing:
    def test_json_recommendation(self):
        text = json.dumps({"recommendation": "PREP", "confidence": 88, "rationale": "Clear argument"})
        selection = parse_framework_response(text)
        assert selection.framework.id == "prep"
        assert selection.confidence == 88
        assert selection.rationale == "Clear argument"

    def test_keyword_in_prose(self):
        selection = parse_framework_response("I would go with the Pyramid approach here.")
        assert selection.framework.id == "pyramid"
        assert selection.confidence == 70

    def test_unknown_defaults_to_scqa(self):
        assert parse_framework_response("no idea").framework.id == "scqa"

    def test_keyword_boundaries(self):
        """'prep' inside 'preparation' must not select PREP."""
        assert match_framework_keyword("careful preparation") is None
        assert match_framework_keyword("problem-solution fits").id == "problem-solution"


class TestSelector:
    async def test_llm_selection_above_threshold(self, gen_log):
        gateway = ScriptedGateway(
            {"framework_selection": json.dumps({"recommendation": "problem-solution", "confidence": 85})}
        )
        selection = await FrameworkSelector(gateway, log=gen_log).select(_request("Fix churn"))
        assert selection.framework.id == "problem-solution"
        assert selection.confidence == 85
        assert selection.strategy == "llm"
        assert gen_log.fallbacks == []

    async def test_low_confidence_falls_back_to_rules(self, gen_log):
        gateway = ScriptedGateway({"framework_selection": json.dumps({"recommendation": "prep", "confidence": 40})})
        selection = await FrameworkSelector(gateway, log=gen_log).select(_request("Compare vendors"))
        assert selection.framework.id == "comparison"
        assert selection.strategy == "rules"
        assert [f.fallback_method for f in gen_log.fallbacks] == ["keyword_rules"]
        assert gen_log.fallbacks[0].impact.value == "minor"

    async def test_gateway_failure_falls_back_to_rules(self, gen_log):
        gateway = ScriptedGateway({"framework_selection": LLMRateLimitError("busy")})
        selection = await FrameworkSelector(gateway, log=gen_log).select(_request("A success story"))
        assert selection.framework.id == "star"
        assert len(gen_log.fallbacks) == 1

    async def test_rules_strategy_skips_model(self):
        gateway = ScriptedGateway()
        await FrameworkSelector(gateway).select(_request("Fix churn"), SelectionStrategy.RULES)
        assert gateway.calls == []

    async def test_request_override(self):
        gateway = ScriptedGateway()
        request = GenerationRequest(prompt="Anything", slide_count=3, framework="star")
        selection = await FrameworkSelector(gateway).select(request)
        assert selection.framework.id == "star"
        assert selection.confidence == 100
        assert gateway.calls == []
