"""Tests for the shared data model, frameworks and pipeline config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.slide_generation.config import PipelineConfig
from src.slide_generation.frameworks import all_frameworks, get_framework, require_framework
from src.slide_generation.models import (
    BulletsContent,
    GenerationRequest,
    PresentationData,
    SectionsContent,
    Slide,
    SlideLayout,
    SlideOutline,
    SlideType,
)

from .conftest import make_presentation


class TestGenerationRequest:
    def test_defaults(self):
        req = GenerationRequest(prompt="  Quarterly review  ", slide_count=4)
        assert req.prompt == "Quarterly review"
        assert req.audience == "General business audience"
        assert req.presentation_type.value == "business"
        assert req.tone.value == "professional"

    @pytest.mark.parametrize("count", [0, 31])
    def test_slide_count_bounds(self, count):
        with pytest.raises(ValidationError):
            GenerationRequest(prompt="x", slide_count=count)

    def test_blank_prompt_rejected(self):
        with pytest.raises(ValidationError):
            GenerationRequest(prompt="   ", slide_count=3)

    def test_camel_case_input(self):
        req = GenerationRequest.model_validate({"prompt": "x", "slideCount": 3, "presentationType": "technical"})
        assert req.slide_count == 3
        assert req.presentation_type.value == "technical"


class TestSlide:
    def test_unknown_type_becomes_custom(self):
        entry = SlideOutline(slide_number=1, type="Deep Dive")
        assert entry.type is SlideType.CUSTOM

    def test_type_spelling_is_normalized(self):
        assert SlideOutline(slide_number=1, type="Next_Steps").type is SlideType.NEXT_STEPS

    def test_layout_must_match_content_kind(self):
        with pytest.raises(ValidationError):
            Slide(
                id="s1",
                type="solution",
                title="Plan",
                layout=SlideLayout.TWO_COLUMN,
                content=BulletsContent(bullet_points=["a"]),
            )

    def test_sections_content_requires_sections(self):
        with pytest.raises(ValidationError):
            SectionsContent()

    def test_empty_content(self):
        assert BulletsContent().is_empty()
        assert not BulletsContent(main_text="hi").is_empty()


class TestPresentationData:
    def test_json_round_trip_uses_camel_case(self):
        deck = make_presentation()
        payload = deck.to_json()
        assert '"slideCount"' in payload
        assert '"bulletPoints"' in payload
        assert PresentationData.from_json(payload) == deck

    def test_with_slide_returns_copy(self):
        deck = make_presentation()
        replacement = deck.slides[0].model_copy(update={"title": "New title"})
        updated = deck.with_slide(0, replacement)
        assert updated.slides[0].title == "New title"
        assert deck.slides[0].title != "New title"

    def test_slide_index(self):
        deck = make_presentation()
        assert deck.slide_index("slide-3") == 2
        assert deck.slide_index("missing") == -1


class TestFrameworks:
    def test_registry_ids(self):
        ids = {fw.id for fw in all_frameworks()}
        assert {"scqa", "prep", "star", "pyramid", "comparison", "problem-solution"} <= ids

    def test_lookup_is_normalized(self):
        assert get_framework("Problem_Solution").id == "problem-solution"
        assert get_framework("unknown") is None
        with pytest.raises(ValueError):
            require_framework("unknown")

    @pytest.mark.parametrize("count", [1, 2, 3, 5, 9, 30])
    def test_template_length_matches_slide_count(self, count):
        template = require_framework("scqa").template_for(count)
        assert len(template) == count
        assert template[0] is SlideType.TITLE
        if count > 1:
            assert template[-1] is SlideType.CONCLUSION

    def test_template_for_native_length_is_the_sequence(self):
        fw = require_framework("problem-solution")
        assert fw.template_for(5) == list(fw.slide_sequence)


class TestPipelineConfig:
    def test_defaults(self):
        cfg = PipelineConfig()
        assert cfg.max_refinement_rounds == 3
        assert cfg.target_quality_score == 80
        assert cfg.min_confidence_threshold == 70
        assert cfg.minimum_improvement == 2

    def test_merged_accepts_snake_and_camel(self):
        cfg = PipelineConfig().merged({"target_quality_score": 90, "maxRefinementRounds": 2})
        assert cfg.target_quality_score == 90
        assert cfg.max_refinement_rounds == 2

    def test_merged_validates_ranges(self):
        with pytest.raises(ValidationError):
            PipelineConfig().merged({"maxRefinementRounds": 5})
        with pytest.raises(ValidationError):
            PipelineConfig().merged({"targetQualityScore": 40})

    def test_merged_penalties(self):
        cfg = PipelineConfig().merged({"penalties": {"emptyContent": 50}})
        assert cfg.penalties.empty_content == 50
