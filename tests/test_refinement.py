"""Tests for the validate -> refine -> re-validate loop."""

from __future__ import annotations

import pytest

from src.slide_generation.cancellation import CancellationToken
from src.slide_generation.config import PipelineConfig
from src.slide_generation.errors import GenerationCancelled
from src.validation.refinement import (
    RefinementEngine,
    RefinementStage,
    StopReason,
    combined_score,
    new_session_id,
)
from src.validation.deck_validator import parse_deck_feedback
from src.validation.slide_validator import parse_slide_feedback

from .conftest import ScriptedGateway, deck_feedback_json, revision_writer, slide_feedback_json


def _gateway(deck_scores, slide_score: int = 60) -> ScriptedGateway:
    return ScriptedGateway(
        {
            "deck_validation": [deck_feedback_json(s) for s in deck_scores],
            "slide_validation": slide_feedback_json(slide_score),
            "slide_refinement": revision_writer(),
        }
    )


class TestHelpers:
    def test_session_id_format(self):
        sid = new_session_id()
        prefix, millis, suffix = sid.split("_")
        assert prefix == "ref"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_combined_score(self, presentation):
        deck = parse_deck_feedback(deck_feedback_json(70))
        slides = {
            s.id: parse_slide_feedback(slide_feedback_json(score), s, PipelineConfig())
            for s, score in zip(presentation.slides, (80, 81, 80, 80, 80))
        }
        # deck 70, slide mean 80.2 -> 75.1
        assert combined_score(deck, slides) == 75
        assert combined_score(deck, {}) == 70

    def test_engine_needs_a_generator_source(self):
        with pytest.raises(ValueError):
            RefinementEngine(None)


class TestRefinementLoop:
    async def test_target_already_met_skips_refinement(self, presentation, gen_request):
        gateway = _gateway([90], slide_score=90)
        result = await RefinementEngine(gateway).refine_presentation(presentation, gen_request)
        assert result.stop_reason is StopReason.TARGET_ACHIEVED
        assert result.total_rounds == 0
        assert result.target_achieved is True
        assert gateway.count("slide_refinement") == 0

    async def test_score_never_decreases(self, presentation, gen_request, gen_log):
        """A worse candidate is rolled back and the loop converges."""
        # combined: initial (60+60)/2=60, round 1 (70+60)/2=65 accepted, round 2 (64+60)/2=62 rolled back
        gateway = _gateway([60, 70, 64])
        events = []
        result = await RefinementEngine(gateway, log=gen_log).refine_presentation(
            presentation, gen_request, events.append
        )

        assert result.initial_score == 60
        assert result.final_score == 65
        assert result.total_rounds == 2
        assert [r.accepted for r in result.rounds] == [True, False]
        assert result.rounds[1].candidate_score == 62
        assert result.rounds[1].score_after == 65
        assert result.stop_reason is StopReason.CONVERGED

        # The kept deck is the round-1 candidate, not the rolled-back one.
        titles = [s.title for s in result.presentation.slides]
        assert titles[:3] == ["Revised Cloud Costs 1", "Revised Cloud Costs 2", "Revised Cloud Costs 3"]

        applied = [e.current_score for e in events if e.stage is RefinementStage.APPLYING]
        assert applied == sorted(applied)
        assert events[-1].stage is RefinementStage.COMPLETED
        assert events[-1].percentage == 100
        assert gen_log.progress

    async def test_rounds_are_bounded(self, presentation, gen_request):
        gateway = _gateway([50, 60, 66, 72, 78])
        result = await RefinementEngine(gateway).refine_presentation(presentation, gen_request)
        assert result.total_rounds == 3
        assert result.stop_reason is StopReason.EXHAUSTED
        assert result.final_score == 66
        assert result.target_achieved is False
        assert all(r.accepted for r in result.rounds)

    async def test_configured_round_limit(self, presentation, gen_request):
        gateway = _gateway([50, 60, 66, 72])
        engine = RefinementEngine(gateway, PipelineConfig(max_refinement_rounds=1))
        result = await engine.refine_presentation(presentation, gen_request)
        assert result.total_rounds == 1
        assert result.stop_reason is StopReason.EXHAUSTED

    async def test_target_reached_mid_loop(self, presentation, gen_request):
        gateway = _gateway([60, 100], slide_score=70)
        result = await RefinementEngine(gateway).refine_presentation(presentation, gen_request)
        assert result.final_score == 85
        assert result.total_rounds == 1
        assert result.stop_reason is StopReason.TARGET_ACHIEVED

    async def test_targets_are_capped(self, presentation, gen_request):
        gateway = _gateway([60, 61])
        engine = RefinementEngine(gateway, PipelineConfig(max_refinement_targets=2))
        result = await engine.refine_presentation(presentation, gen_request)
        assert len(result.rounds[0].targets) == 2

    async def test_cancellation_discards_the_round(self, presentation, gen_request):
        token = CancellationToken()
        writer = revision_writer()

        def cancel_then_write(prompt: str) -> str:
            token.cancel("user left")
            return writer(prompt)

        gateway = _gateway([60, 90])
        gateway.script["slide_refinement"] = [cancel_then_write]

        result = await RefinementEngine(gateway).refine_presentation(
            presentation, gen_request, cancellation=token
        )
        assert result.stop_reason is StopReason.CANCELLED
        assert result.total_rounds == 0
        assert result.final_score == result.initial_score
        assert result.presentation == presentation
        assert gateway.count("slide_refinement") == 1

    async def test_cancellation_keeps_the_accepted_round(self, presentation, gen_request):
        token = CancellationToken()
        writer = revision_writer()
        calls = []

        def write_then_cancel_in_round_two(prompt: str) -> str:
            calls.append(prompt)
            if len(calls) == 4:
                token.cancel("user left")
            return writer(prompt)

        gateway = _gateway([60, 70, 75])
        gateway.script["slide_refinement"] = [write_then_cancel_in_round_two]

        result = await RefinementEngine(gateway, PipelineConfig(max_refinement_targets=3)).refine_presentation(
            presentation, gen_request, cancellation=token
        )
        assert result.stop_reason is StopReason.CANCELLED
        assert result.total_rounds == 1
        assert result.initial_score == 60
        # deck 70, slides 60 after round one
        assert result.final_score == 65
        assert result.rounds[0].accepted is True
        assert len(result.rounds[0].targets) == 3
        assert result.presentation != presentation

    async def test_cancelled_before_scoring_raises(self, presentation, gen_request):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(GenerationCancelled):
            await RefinementEngine(_gateway([60])).refine_presentation(presentation, gen_request, cancellation=token)

    async def test_result_payload(self, presentation, gen_request):
        result = await RefinementEngine(_gateway([60, 70, 64])).refine_presentation(presentation, gen_request)
        payload = result.to_payload(include_presentation=False)
        assert payload["totalImprovement"] == 5
        assert payload["stopReason"] == "converged"
        assert "presentation" not in payload
        assert payload["rounds"][0]["accepted"] is True
