"""Tunable pipeline settings accepted from the API's ``config`` object."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class QuickValidationPenalties(BaseModel):
    """Score deductions used by the heuristic slide check."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    empty_content: int = Field(default=30, ge=0, le=100)
    short_title: int = Field(default=20, ge=0, le=100)
    type_mismatch: int = Field(default=30, ge=0, le=100)
    missing_field: int = Field(default=10, ge=0, le=100)
    high_cognitive_load: int = Field(default=20, ge=0, le=100)


class PipelineConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    max_refinement_rounds: int = Field(default=3, ge=1, le=3)
    target_quality_score: int = Field(default=80, ge=50, le=100)
    min_confidence_threshold: int = Field(default=70, ge=0, le=100)
    minimum_improvement: int = Field(default=2, ge=1, le=20)
    min_slide_score: int = Field(default=70, ge=0, le=100)
    min_deck_score: int = Field(default=70, ge=0, le=100)
    min_outline_score: int = Field(default=70, ge=0, le=100)
    max_slide_retries: int = Field(default=2, ge=0, le=5)
    max_refinement_targets: int = Field(default=3, ge=1, le=10)
    penalties: QuickValidationPenalties = Field(default_factory=QuickValidationPenalties)

    def merged(self, overrides: dict | None) -> "PipelineConfig":
        """Return a copy with ``overrides`` applied and re-validated."""

        if not overrides:
            return self
        data = self.model_dump(by_alias=True)
        data.update({to_camel(key) if "_" in key else key: value for key, value in overrides.items()})
        return PipelineConfig.model_validate(data)


__all__ = ["PipelineConfig", "QuickValidationPenalties"]
