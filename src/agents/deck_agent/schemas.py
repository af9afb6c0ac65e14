"""Request bodies accepted by the deck API."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.slide_generation.framework_selector import SelectionStrategy
from src.slide_generation.models import (
    GenerationRequest,
    PresentationData,
    PresentationType,
    Tone,
)


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    api_key: Optional[str] = None
    provider: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class GenerateBody(_Body):
    prompt: str
    presentation_type: PresentationType = PresentationType.BUSINESS
    slide_count: int = Field(ge=1, le=30)
    audience: Optional[str] = None
    tone: Tone = Tone.PROFESSIONAL
    framework: Optional[str] = None
    stream: bool = False
    parallel_slides: bool = False
    enable_refinement: bool = True
    framework_strategy: SelectionStrategy = SelectionStrategy.LLM

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            presentation_type=self.presentation_type,
            slide_count=self.slide_count,
            audience=self.audience,
            tone=self.tone,
            framework=self.framework,
        )


class OriginalRequest(BaseModel):
    """The brief a deck was generated from; fields it omits come from the deck metadata."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    prompt: str
    audience: Optional[str] = None
    presentation_type: Optional[PresentationType] = None
    tone: Optional[Tone] = None
    slide_count: Optional[int] = Field(default=None, ge=1, le=30)


class DeckBody(_Body):
    """Shared shape of ``/refine`` and ``/validate``: a deck plus the brief behind it."""

    presentation: PresentationData
    original_request: OriginalRequest
    framework_id: Optional[str] = None

    def to_request(self) -> GenerationRequest:
        meta = self.presentation.metadata
        brief = self.original_request
        return GenerationRequest(
            prompt=brief.prompt,
            presentation_type=brief.presentation_type or meta.presentation_type,
            slide_count=brief.slide_count or max(1, min(30, len(self.presentation.slides))),
            audience=brief.audience or meta.audience,
            tone=brief.tone or meta.tone,
            framework=self.framework_id or meta.framework,
        )


__all__ = ["DeckBody", "GenerateBody", "OriginalRequest"]
