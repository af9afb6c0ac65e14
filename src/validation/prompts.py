"""Scoring rubrics sent to the model by the validators."""

from __future__ import annotations

import json
from typing import Optional

from src.slide_generation.frameworks import Framework
from src.slide_generation.models import GenerationRequest, Outline, PresentationData, Slide, SlideOutline
from src.slide_generation.prompts import JSON_ONLY

VALIDATOR_SYSTEM_PROMPT: str = (
    "You are a strict presentation reviewer. You score work against the rubric you are given, "
    "justify every score in one sentence, and answer with the requested JSON only."
)

_DIMENSION_JSON = '{"score": <0-100>, "feedback": "<one sentence>"}'


def build_outline_validation_prompt(outline: Outline, request: GenerationRequest, framework: Framework) -> str:
    slides = "\n".join(
        f"{s.slide_number}. [{s.type.value}] {s.title} - {s.purpose}" for s in outline.slides
    )
    sequence = ", ".join(t.value for t in framework.template_for(request.slide_count))
    return (
        "Score this presentation outline before any slide content is written.\n\n"
        f"REQUEST:\n- Topic: {request.prompt}\n- Type: {request.presentation_type.value}\n"
        f"- Requested slides: {request.slide_count}\n- Audience: {request.audience}\n"
        f"- Tone: {request.tone.value}\n\n"
        f"FRAMEWORK: {framework.name} (expected sequence: {sequence})\n\n"
        f"OUTLINE: {outline.title}\n{slides}\n\n"
        "RUBRIC (0-100 each):\n"
        "1. frameworkAlignment: does the slide order follow the framework?\n"
        "2. logicalFlow: does each slide lead naturally to the next?\n"
        "3. audienceSuitability: is the depth and framing right for the audience?\n"
        "4. completeness: right slide count, opening and closing present, no gaps?\n\n"
        f"{JSON_ONLY}\n"
        "{\n"
        '  "overallScore": <0-100>,\n'
        f'  "frameworkAlignment": {_DIMENSION_JSON},\n'
        f'  "logicalFlow": {_DIMENSION_JSON},\n'
        f'  "audienceSuitability": {_DIMENSION_JSON},\n'
        f'  "completeness": {_DIMENSION_JSON},\n'
        '  "issues": ["<blocking problem>"],\n'
        '  "suggestions": ["<improvement>"]\n'
        "}"
    )


def build_slide_validation_prompt(slide: Slide, entry: SlideOutline, presentation_title: str) -> str:
    content = slide.model_dump_json(by_alias=True, exclude_none=True, indent=2)
    return (
        f'Score slide {entry.slide_number} of the presentation "{presentation_title}".\n\n'
        f"PLANNED: type={entry.type.value}; title={entry.title}; purpose={entry.purpose}\n\n"
        f"SLIDE:\n{content}\n\n"
        "RUBRIC (0-100 each):\n"
        "1. contentQuality: specific, accurate, complete for its purpose.\n"
        "2. readability: apply the 7+/-2 rule. Count bullet points + 2 x sections + metrics, "
        "add 3 for a chart and 4 for a table. 5 or fewer is low load, 6-9 medium, above 9 high. "
        "High load must lower this score.\n"
        "3. visualHierarchy: the most important element is obvious.\n"
        "4. alignmentWithPurpose: the slide does what the plan says; set meetsObjective.\n"
        "List hard failures in mustFix and soft suggestions in improvements.\n\n"
        f"{JSON_ONLY}\n"
        "{\n"
        '  "overallScore": <0-100>,\n'
        f'  "contentQuality": {_DIMENSION_JSON},\n'
        '  "readability": {"score": <0-100>, "feedback": "<one sentence>", "cognitiveLoad": "low|medium|high"},\n'
        f'  "visualHierarchy": {_DIMENSION_JSON},\n'
        '  "alignmentWithPurpose": {"score": <0-100>, "feedback": "<one sentence>", "meetsObjective": true},\n'
        '  "mustFix": [],\n'
        '  "improvements": []\n'
        "}"
    )


def build_deck_validation_prompt(
    presentation: PresentationData,
    request: GenerationRequest,
    framework: Optional[Framework],
) -> str:
    overview = "\n".join(
        f"Slide {idx + 1} ({s.type.value}, id={s.id}): {s.title}" for idx, s in enumerate(presentation.slides)
    )
    slides_json = json.dumps([s.to_payload() for s in presentation.slides], indent=2)
    framework_name = framework.name if framework else "Not specified"
    return (
        "You are a presentation quality expert. Validate this complete presentation.\n\n"
        f"ORIGINAL REQUEST:\n- Prompt: {request.prompt}\n- Type: {request.presentation_type.value}\n"
        f"- Audience: {request.audience}\n- Tone: {request.tone.value}\n- Framework: {framework_name}\n\n"
        f"PRESENTATION: {presentation.title} ({len(presentation.slides)} slides)\n{overview}\n\n"
        f"FULL CONTENT:\n{slides_json}\n\n"
        "RUBRIC (0-100 each): narrativeFlow, cohesiveness, userIntentFulfillment, "
        "audienceAlignment, frameworkAdherence. Reference slides as 'slide N' in improvements.\n\n"
        f"{JSON_ONLY}\n"
        "{\n"
        '  "overallScore": <0-100>,\n'
        '  "narrativeFlow": {"score": <0-100>, "feedback": "...", "flowIssues": [], '
        '"transitionQuality": "excellent|good|fair|poor"},\n'
        '  "cohesiveness": {"score": <0-100>, "feedback": "...", "themeConsistency": true, '
        '"gaps": [], "redundancies": []},\n'
        '  "userIntentFulfillment": {"score": <0-100>, "feedback": "...", "missingElements": []},\n'
        f'  "audienceAlignment": {_DIMENSION_JSON},\n'
        f'  "frameworkAdherence": {_DIMENSION_JSON},\n'
        '  "improvements": {"critical": [], "recommended": [], "optional": []},\n'
        '  "slideSpecificFeedback": [{"slideId": "<id>", "issue": "...", "suggestion": "..."}]\n'
        "}"
    )


__all__ = [
    "VALIDATOR_SYSTEM_PROMPT",
    "build_deck_validation_prompt",
    "build_outline_validation_prompt",
    "build_slide_validation_prompt",
]
