"""Data model shared by the generation, validation and refinement stages.

External JSON uses camelCase keys (``slideCount``, ``bulletPoints``); Python
code uses snake_case attribute names. Both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PresentationType(str, Enum):
    BUSINESS = "business"
    TECHNICAL = "technical"
    PROCESS = "process"
    TRANSFORMATION = "transformation"
    POV = "pov"
    CUSTOM = "custom"


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CONVERSATIONAL = "conversational"
    TECHNICAL = "technical"
    EXECUTIVE = "executive"


class SlideType(str, Enum):
    TITLE = "title"
    AGENDA = "agenda"
    PROBLEM = "problem"
    SOLUTION = "solution"
    FRAMEWORK = "framework"
    IMPLEMENTATION = "implementation"
    BENEFITS = "benefits"
    TIMELINE = "timeline"
    TEAM = "team"
    NEXT_STEPS = "next-steps"
    CONCLUSION = "conclusion"
    CHART = "chart"
    TABLE = "table"
    CUSTOM = "custom"

    @classmethod
    def _missing_(cls, value: object) -> "SlideType":
        if isinstance(value, str):
            normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.CUSTOM


class SlideLayout(str, Enum):
    TITLE_ONLY = "title-only"
    TITLE_CONTENT = "title-content"
    TWO_COLUMN = "two-column"
    METRICS = "metrics"
    TIMELINE = "timeline"
    DIAGRAM = "diagram"
    CENTERED = "centered"
    CHART = "chart"
    TABLE = "table"


ContentKind = Literal["bullets", "sections", "metrics", "diagram", "table"]

CONTENT_KIND_BY_LAYOUT: Dict[SlideLayout, str] = {
    SlideLayout.TITLE_ONLY: "bullets",
    SlideLayout.TITLE_CONTENT: "bullets",
    SlideLayout.CENTERED: "bullets",
    SlideLayout.TWO_COLUMN: "sections",
    SlideLayout.TIMELINE: "sections",
    SlideLayout.METRICS: "metrics",
    SlideLayout.CHART: "metrics",
    SlideLayout.DIAGRAM: "diagram",
    SlideLayout.TABLE: "table",
}

DEFAULT_LAYOUT_BY_TYPE: Dict[SlideType, SlideLayout] = {
    SlideType.TITLE: SlideLayout.TITLE_ONLY,
    SlideType.PROBLEM: SlideLayout.TITLE_CONTENT,
    SlideType.SOLUTION: SlideLayout.TWO_COLUMN,
    SlideType.BENEFITS: SlideLayout.METRICS,
    SlideType.IMPLEMENTATION: SlideLayout.TIMELINE,
    SlideType.TIMELINE: SlideLayout.TIMELINE,
    SlideType.FRAMEWORK: SlideLayout.DIAGRAM,
    SlideType.CONCLUSION: SlideLayout.CENTERED,
    SlideType.CHART: SlideLayout.CHART,
    SlideType.TABLE: SlideLayout.TABLE,
}


def default_layout_for(slide_type: SlideType) -> SlideLayout:
    return DEFAULT_LAYOUT_BY_TYPE.get(slide_type, SlideLayout.TITLE_CONTENT)


def _coerce_slide_type(value: Any) -> Any:
    if isinstance(value, str) and not isinstance(value, SlideType):
        return SlideType(value)
    return value


# ---------------------------------------------------------------------------
# Content payloads
# ---------------------------------------------------------------------------


class Section(_CamelModel):
    title: str
    content: str = ""
    bullet_points: List[str] = Field(default_factory=list)


class KeyMetric(_CamelModel):
    label: str
    value: str
    description: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value


class TimelineItem(_CamelModel):
    phase: str
    duration: Optional[str] = None
    description: Optional[str] = None


class DiagramElement(_CamelModel):
    label: str
    description: Optional[str] = None


class Diagram(_CamelModel):
    type: str = "process"
    elements: List[DiagramElement] = Field(min_length=1)


class ChartData(_CamelModel):
    type: str = "bar"
    title: Optional[str] = None
    data: List[Dict[str, Any]] = Field(default_factory=list)


class Table(_CamelModel):
    headers: List[str] = Field(min_length=1)
    rows: List[List[str]] = Field(default_factory=list)

    @field_validator("rows", mode="before")
    @classmethod
    def _stringify_cells(cls, rows: Any) -> Any:
        if isinstance(rows, list):
            return [[str(cell) for cell in row] if isinstance(row, list) else row for row in rows]
        return rows


class _ContentBase(_CamelModel):
    main_text: Optional[str] = None
    bullet_points: Optional[List[str]] = None
    sections: Optional[List[Section]] = None
    key_metrics: Optional[List[KeyMetric]] = None
    timeline: Optional[List[TimelineItem]] = None
    diagram: Optional[Diagram] = None
    chart: Optional[ChartData] = None
    table: Optional[Table] = None
    quote: Optional[str] = None
    callout: Optional[str] = None

    def is_empty(self) -> bool:
        if self.main_text and self.main_text.strip():
            return False
        for value in (self.bullet_points, self.sections, self.key_metrics, self.timeline):
            if value:
                return False
        return not any((self.diagram, self.chart, self.table, self.quote, self.callout))


class BulletsContent(_ContentBase):
    kind: Literal["bullets"] = "bullets"
    bullet_points: List[str] = Field(default_factory=list)


class SectionsContent(_ContentBase):
    kind: Literal["sections"] = "sections"

    @model_validator(mode="after")
    def _require_sections(self) -> "SectionsContent":
        if not self.sections and not self.timeline:
            raise ValueError("sections content requires 'sections' or 'timeline'")
        return self


class MetricsContent(_ContentBase):
    kind: Literal["metrics"] = "metrics"

    @model_validator(mode="after")
    def _require_metrics(self) -> "MetricsContent":
        if not self.key_metrics and self.chart is None:
            raise ValueError("metrics content requires 'keyMetrics' or 'chart'")
        return self


class DiagramContent(_ContentBase):
    kind: Literal["diagram"] = "diagram"
    diagram: Diagram


class TableContent(_ContentBase):
    kind: Literal["table"] = "table"
    table: Table


SlideContent = Annotated[
    Union[BulletsContent, SectionsContent, MetricsContent, DiagramContent, TableContent],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Slides, outlines and presentations
# ---------------------------------------------------------------------------


class Slide(_CamelModel):
    id: str
    type: SlideType
    title: str
    layout: SlideLayout
    content: SlideContent
    speaker_notes: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        return _coerce_slide_type(value)

    @model_validator(mode="after")
    def _content_matches_layout(self) -> "Slide":
        expected = CONTENT_KIND_BY_LAYOUT[self.layout]
        if self.content.kind != expected:
            raise ValueError(
                f"layout '{self.layout.value}' requires '{expected}' content, got '{self.content.kind}'"
            )
        return self


class SlideOutline(_CamelModel):
    model_config = ConfigDict(frozen=True)

    slide_number: int = Field(ge=1)
    type: SlideType
    title: str = ""
    purpose: str = ""
    key_points: List[str] = Field(default_factory=list)
    framework_alignment: Optional[str] = None
    estimated_tokens: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        return _coerce_slide_type(value)

    @classmethod
    def from_slide(cls, slide: Slide, slide_number: int) -> "SlideOutline":
        content = slide.content
        key_points = list(content.bullet_points or [])
        if not key_points and content.sections:
            key_points = [section.title for section in content.sections]
        return cls(
            slide_number=slide_number,
            type=slide.type,
            title=slide.title,
            purpose=content.main_text or f"{slide.type.value} slide",
            key_points=key_points,
        )


class Outline(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    framework: str
    slides: List[SlideOutline]
    estimated_total_tokens: int = 0
    flow_description: Optional[str] = None


class GenerationRequest(_CamelModel):
    """Immutable input to one generation call."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    presentation_type: PresentationType = PresentationType.BUSINESS
    slide_count: int = Field(ge=1, le=30)
    audience: str = "General business audience"
    tone: Tone = Tone.PROFESSIONAL
    framework: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be empty")
        return value

    @field_validator("audience", mode="before")
    @classmethod
    def _default_audience(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "General business audience"
        return value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PresentationMetadata(_CamelModel):
    audience: str
    tone: Tone
    slide_count: int
    presentation_type: PresentationType
    framework: Optional[str] = None
    created_at: str = Field(default_factory=_now_iso)


class PresentationData(_CamelModel):
    """Aggregate root. Updates go through :meth:`with_slide` and return a copy."""

    id: str
    title: str
    subtitle: Optional[str] = None
    metadata: PresentationMetadata
    slides: List[Slide]

    def with_slide(self, index: int, slide: Slide) -> "PresentationData":
        slides = list(self.slides)
        slides[index] = slide
        return self.model_copy(update={"slides": slides})

    def slide_index(self, slide_id: str) -> int:
        for idx, slide in enumerate(self.slides):
            if slide.id == slide_id:
                return idx
        return -1

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, payload: str) -> "PresentationData":
        return cls.model_validate_json(payload)


__all__ = [
    "BulletsContent",
    "CONTENT_KIND_BY_LAYOUT",
    "ChartData",
    "Diagram",
    "DiagramContent",
    "DiagramElement",
    "GenerationRequest",
    "KeyMetric",
    "MetricsContent",
    "Outline",
    "PresentationData",
    "PresentationMetadata",
    "PresentationType",
    "Section",
    "SectionsContent",
    "Slide",
    "SlideContent",
    "SlideLayout",
    "SlideOutline",
    "SlideType",
    "Table",
    "TableContent",
    "TimelineItem",
    "Tone",
    "default_layout_for",
]
