"""Prompt text used to drive framework selection, outline and slide generation."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from .models import CONTENT_KIND_BY_LAYOUT, GenerationRequest, SlideLayout, SlideOutline, SlideType

if TYPE_CHECKING:  # pragma: no cover
    from .frameworks import Framework
    from .models import Outline, Slide

SYSTEM_PROMPT: str = (
    "You are a senior presentation strategist. You plan and write business slide decks "
    "that are concise, evidence-driven and easy to follow. You always answer with the exact "
    "JSON structure requested and nothing else."
)

JSON_ONLY: str = "CRITICAL: Respond with ONLY valid JSON. No markdown, no extra text."

_CONTENT_SHAPES = {
    "bullets": {
        "mainText": "One sentence framing the slide",
        "bulletPoints": ["Concise point 1", "Concise point 2", "Concise point 3"],
        "callout": "Optional highlighted takeaway",
    },
    "sections": {
        "mainText": "Optional framing sentence",
        "sections": [
            {"title": "Section title", "content": "Short paragraph", "bulletPoints": ["Detail"]},
        ],
        "timeline": [{"phase": "Phase 1", "duration": "4 weeks", "description": "What happens"}],
    },
    "metrics": {
        "mainText": "Optional framing sentence",
        "keyMetrics": [{"label": "Metric", "value": "42%", "description": "What it means"}],
        "chart": {"type": "bar", "title": "Optional chart", "data": [{"label": "Q1", "value": 10}]},
    },
    "diagram": {
        "mainText": "Optional framing sentence",
        "diagram": {"type": "process", "elements": [{"label": "Step", "description": "Detail"}]},
    },
    "table": {
        "mainText": "Optional framing sentence",
        "table": {"headers": ["Option", "Cost", "Fit"], "rows": [["A", "Low", "High"]]},
    },
}


def content_shape(layout: SlideLayout) -> str:
    return json.dumps(_CONTENT_SHAPES[CONTENT_KIND_BY_LAYOUT[layout]], indent=2)


def _request_block(request: GenerationRequest) -> str:
    return (
        f"- Topic: {request.prompt}\n"
        f"- Type: {request.presentation_type.value}\n"
        f"- Slide Count: {request.slide_count}\n"
        f"- Audience: {request.audience}\n"
        f"- Tone: {request.tone.value}\n"
    )


def build_framework_prompt(request: GenerationRequest, frameworks: Iterable["Framework"]) -> str:
    options = "\n".join(f"- {fw.id}: {fw.name}. {fw.description}" for fw in frameworks)
    return (
        "Pick the narrative framework that best fits this presentation.\n\n"
        f"REQUEST:\n{_request_block(request)}\n"
        f"AVAILABLE FRAMEWORKS (choose exactly one id):\n{options}\n\n"
        f"{JSON_ONLY}\n"
        '{"recommendation": "<framework id>", "confidence": <0-100>, "rationale": "<one or two sentences>"}'
    )


def build_outline_prompt(
    request: GenerationRequest,
    framework: "Framework",
    slide_types: Sequence[SlideType],
    feedback: Optional[Sequence[str]] = None,
) -> str:
    sequence = ", ".join(t.value for t in slide_types)
    prompt = (
        "You are a presentation planning expert. Create a detailed outline for a presentation.\n\n"
        f"REQUIREMENTS:\n{_request_block(request)}\n"
        f"FRAMEWORK: {framework.name.upper()}\n{framework.description}\n\n"
        f"Framework Structure:\n{framework.describe_structure()}\n\n"
        f"Recommended slide types in order: {sequence}\n\n"
        f"TASK: Generate exactly {request.slide_count} slides that tell a coherent story following the "
        f"{framework.name} framework. Each slide needs a clear purpose. Focus on structure and flow, "
        "not detailed content.\n\n"
    )
    if feedback:
        joined = "\n".join(f"- {item}" for item in feedback)
        prompt += f"A previous outline was rejected. Fix these problems:\n{joined}\n\n"
    prompt += (
        f"{JSON_ONLY}\n"
        "{\n"
        '  "title": "Presentation Title",\n'
        '  "subtitle": "Compelling Subtitle",\n'
        '  "description": "Brief description",\n'
        '  "flowDescription": "How the presentation follows the framework",\n'
        '  "slides": [\n'
        '    {"slideNumber": 1, "type": "<slide type>", "title": "Slide Title", '
        '"purpose": "What this slide accomplishes", "keyPoints": ["Point"], '
        '"frameworkAlignment": "How this slide fits the framework"}\n'
        "  ]\n"
        "}"
    )
    return prompt


def build_slide_prompt(
    entry: SlideOutline,
    outline: "Outline",
    request: GenerationRequest,
    layout: SlideLayout,
    previous_titles: Sequence[str] = (),
    feedback: Optional[Sequence[str]] = None,
) -> str:
    key_points = "\n".join(f"- {p}" for p in entry.key_points) or "- (none provided)"
    prompt = (
        f"Write the content for slide {entry.slide_number} of {len(outline.slides)} "
        f'in the presentation "{outline.title}".\n\n'
        f"PRESENTATION CONTEXT:\n{_request_block(request)}- Framework: {outline.framework}\n"
    )
    if previous_titles:
        prompt += "- Previous slides: " + " | ".join(previous_titles) + "\n"
    prompt += (
        f"\nSLIDE PLAN:\n- Type: {entry.type.value}\n- Title: {entry.title}\n"
        f"- Purpose: {entry.purpose}\n- Key points:\n{key_points}\n\n"
        f"LAYOUT: {layout.value}\n"
        "Keep the slide scannable: at most 7 items in total, short phrases over paragraphs.\n\n"
    )
    if feedback:
        joined = "\n".join(f"- {item}" for item in feedback)
        prompt += f"REVIEWER FEEDBACK TO ADDRESS:\n{joined}\n\n"
    prompt += (
        f"{JSON_ONLY}\n"
        "{\n"
        f'  "title": "Slide title",\n'
        f'  "layout": "{layout.value}",\n'
        f'  "content": {content_shape(layout)},\n'
        '  "speakerNotes": "What the presenter says"\n'
        "}"
    )
    return prompt


_REFINEMENT_FOCUS = {
    "transition": (
        "Improve how this slide connects to the slides around it. Add a bridging sentence "
        "and make the opening follow from the previous slide."
    ),
    "clarity": "Rewrite the content so it is unambiguous. Shorten long items and remove jargon.",
    "alignment": (
        "Realign the content with the slide's purpose and the original request. Remove material "
        "that does not serve that purpose."
    ),
    "content": "Strengthen the substance: make points specific, add evidence or metrics where it helps.",
}


def build_refinement_prompt(
    slide: "Slide",
    refinement_type: str,
    issue: str,
    suggested_changes: Optional[str],
    request: GenerationRequest,
    neighbours: Sequence[str] = (),
) -> str:
    focus = _REFINEMENT_FOCUS.get(refinement_type, _REFINEMENT_FOCUS["content"])
    current = slide.model_dump_json(by_alias=True, exclude_none=True, indent=2)
    prompt = (
        f"Revise one slide of a presentation about: {request.prompt}\n"
        f"Audience: {request.audience}. Tone: {request.tone.value}.\n\n"
        f"ISSUE: {issue}\n"
    )
    if suggested_changes:
        prompt += f"SUGGESTED CHANGES: {suggested_changes}\n"
    if neighbours:
        prompt += "SURROUNDING SLIDES: " + " | ".join(neighbours) + "\n"
    prompt += (
        f"\nFOCUS: {focus}\n\n"
        f"CURRENT SLIDE:\n{current}\n\n"
        f"Keep the layout '{slide.layout.value}' and slide type '{slide.type.value}'.\n"
        f"{JSON_ONLY}\n"
        "{\n"
        '  "title": "Slide title",\n'
        f'  "content": {content_shape(slide.layout)},\n'
        '  "speakerNotes": "What the presenter says"\n'
        "}"
    )
    return prompt


__all__ = [
    "JSON_ONLY",
    "SYSTEM_PROMPT",
    "build_framework_prompt",
    "build_outline_prompt",
    "build_refinement_prompt",
    "build_slide_prompt",
    "content_shape",
]
