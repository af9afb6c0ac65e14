"""
Shared fixtures for the deck pipeline tests.

- ScriptedGateway: stands in for LLMGateway, answering per call purpose
- request / framework / outline / presentation builders
- JSON payload helpers mirroring what a model returns
"""

from __future__ import annotations

import itertools
import json
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pytest

from src.db.generation_log import GenerationLog, InMemoryLogStore
from src.llm_gateway import LLMCallRecord, LLMConnectionError, LLMResponse, estimate_tokens
from src.slide_generation.frameworks import require_framework
from src.slide_generation.models import (
    BulletsContent,
    GenerationRequest,
    KeyMetric,
    MetricsContent,
    Outline,
    PresentationData,
    PresentationMetadata,
    Section,
    SectionsContent,
    Slide,
    SlideLayout,
    SlideOutline,
    SlideType,
)

Scripted = Union[str, BaseException, Callable[[str], Any]]


class ScriptedGateway:
    """Answers ``complete`` from a per-purpose queue.

    The last entry of a queue repeats once the others are consumed. An
    exception entry is raised; a callable receives the prompt and returns
    text or an exception. Unscripted purposes raise ``LLMConnectionError``.
    """

    provider = "scripted"

    def __init__(self, script: Optional[Dict[str, Any]] = None, *, credentials: bool = True) -> None:
        self.script: Dict[str, List[Scripted]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.credentials = credentials
        self._subscribers: List[Callable[[LLMCallRecord], None]] = []
        for purpose, responses in (script or {}).items():
            self.add(purpose, *(responses if isinstance(responses, (list, tuple)) else [responses]))

    def add(self, purpose: str, *responses: Scripted) -> "ScriptedGateway":
        self.script.setdefault(purpose, []).extend(responses)
        return self

    def count(self, purpose: str) -> int:
        return sum(1 for call in self.calls if call["purpose"] == purpose)

    def has_credentials(self) -> bool:
        return self.credentials

    def default_model(self) -> str:
        return "scripted-model"

    def subscribe(self, callback: Callable[[LLMCallRecord], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LLMCallRecord], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def complete(self, prompt: str, *, config: Any, purpose: str, system: Optional[str] = None) -> LLMResponse:
        self.calls.append({"purpose": purpose, "prompt": prompt, "config": config})
        queue = self.script.get(purpose)
        if not queue:
            raise LLMConnectionError(f"no scripted response for {purpose}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(item) and not isinstance(item, BaseException):
            item = item(prompt)
        if isinstance(item, BaseException):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        response = LLMResponse(
            text=text,
            model="scripted-model",
            input_tokens=estimate_tokens(prompt),
            output_tokens=estimate_tokens(text),
            estimated=True,
        )
        for callback in list(self._subscribers):
            callback(
                LLMCallRecord(
                    purpose=purpose,
                    model=response.model,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens,
                    duration_ms=0,
                    estimated=True,
                )
            )
        return response


# ------------------------------------------------------------------ #
# JSON payload helpers
# ------------------------------------------------------------------ #

PROBLEM_SOLUTION_TYPES = ("title", "problem", "solution", "benefits", "conclusion")


def outline_json(
    title: str = "Cutting Cloud Costs",
    types: Iterable[str] = PROBLEM_SOLUTION_TYPES,
    **extra: Any,
) -> str:
    slides = [
        {
            "slideNumber": idx + 1,
            "type": slide_type,
            "title": f"Cloud Costs {slide_type.title()}",
            "purpose": f"Explain the {slide_type} for cloud costs",
            "keyPoints": [f"{slide_type} point one", f"{slide_type} point two"],
        }
        for idx, slide_type in enumerate(types)
    ]
    return json.dumps({"title": title, "subtitle": "A practical plan", "slides": slides, **extra})


def slide_json(slide_type: str, title: Optional[str] = None) -> str:
    title = title or f"Cloud Costs {slide_type.title()}"
    if slide_type == "solution":
        content = {
            "mainText": "Rightsize and automate",
            "sections": [
                {"title": "Rightsizing", "content": "Match instances to load"},
                {"title": "Scheduling", "content": "Stop idle environments"},
            ],
        }
    elif slide_type == "benefits":
        content = {
            "keyMetrics": [
                {"label": "Monthly savings", "value": "30%"},
                {"label": "Payback", "value": 3},
            ]
        }
    elif slide_type == "implementation":
        content = {"timeline": [{"phase": "Audit", "duration": "2 weeks"}, {"phase": "Rollout"}]}
    else:
        content = {
            "mainText": f"Cloud costs {slide_type}",
            "bulletPoints": ["Spend grew 40% last year", "Idle resources are common", "Savings are achievable"],
        }
    return json.dumps({"title": title, "content": content, "speakerNotes": "Keep it brief."})


def slide_feedback_json(score: int, *, must_fix: Iterable[str] = (), improvements: Iterable[str] = ()) -> str:
    dim = {"score": score, "feedback": "ok"}
    return json.dumps(
        {
            "overallScore": score,
            "contentQuality": dim,
            "readability": {**dim, "cognitiveLoad": "low"},
            "visualHierarchy": dim,
            "alignmentWithPurpose": {**dim, "meetsObjective": True},
            "mustFix": list(must_fix),
            "improvements": list(improvements),
            "passes": score >= 70,
        }
    )


def deck_feedback_json(score: int, **extra: Any) -> str:
    dim = {"score": score, "feedback": "ok"}
    return json.dumps(
        {
            "overallScore": score,
            "narrativeFlow": {**dim, "flowIssues": [], "transitionQuality": "good"},
            "cohesiveness": {**dim, "themeConsistency": True},
            "userIntentFulfillment": dim,
            "audienceAlignment": dim,
            "frameworkAdherence": dim,
            **extra,
        }
    )


def outline_feedback_json(score: int) -> str:
    dim = {"score": score, "feedback": "ok"}
    return json.dumps(
        {
            "overallScore": score,
            "frameworkAlignment": dim,
            "logicalFlow": dim,
            "audienceSuitability": dim,
            "completeness": dim,
            "issues": [] if score >= 70 else ["Weak flow"],
            "suggestions": [],
        }
    )


def revision_writer() -> Callable[[str], str]:
    """Model stand-in that rewrites any slide kind, numbering each revision."""
    counter = itertools.count(1)

    def write(_prompt: str) -> str:
        n = next(counter)
        return json.dumps(
            {
                "title": f"Revised Cloud Costs {n}",
                "content": {
                    "mainText": "Sharper message",
                    "bulletPoints": ["Concrete point"],
                    "sections": [{"title": "Detail", "content": "Specific"}],
                    "keyMetrics": [{"label": "Savings", "value": "30%"}],
                },
            }
        )

    return write


_TYPE_RE = re.compile(r"- Type: (\S+)")


def write_slide(prompt: str) -> str:
    """Answer a slide prompt with content matching its planned type."""
    return slide_json(_TYPE_RE.search(prompt).group(1))


def happy_gateway(**overrides: Any) -> ScriptedGateway:
    """Gateway that walks a five slide problem-solution deck through every stage."""
    script: Dict[str, Any] = {
        "framework_selection": json.dumps(
            {"recommendation": "problem-solution", "confidence": 85, "rationale": "Clear problem and fix"}
        ),
        "outline_generation": outline_json(),
        "outline_validation": outline_feedback_json(85),
        "slide_generation": write_slide,
        "slide_validation": slide_feedback_json(85),
        "deck_validation": deck_feedback_json(88),
        "slide_refinement": revision_writer(),
    }
    script.update(overrides)
    return ScriptedGateway(script)


# ------------------------------------------------------------------ #
# Model builders
# ------------------------------------------------------------------ #


def make_slide(slide_type: str, idx: int, title: Optional[str] = None) -> Slide:
    title = title or f"Cloud Costs {slide_type.title()}"
    if slide_type == "solution":
        return Slide(
            id=f"slide-{idx}",
            type=SlideType.SOLUTION,
            title=title,
            layout=SlideLayout.TWO_COLUMN,
            content=SectionsContent(sections=[Section(title="Rightsizing", content="Match load")]),
        )
    if slide_type == "benefits":
        return Slide(
            id=f"slide-{idx}",
            type=SlideType.BENEFITS,
            title=title,
            layout=SlideLayout.METRICS,
            content=MetricsContent(key_metrics=[KeyMetric(label="Savings", value="30%")]),
        )
    return Slide(
        id=f"slide-{idx}",
        type=SlideType(slide_type),
        title=title,
        layout=SlideLayout.TITLE_CONTENT,
        content=BulletsContent(main_text="Cloud costs", bullet_points=["One", "Two"]),
    )


def make_presentation(types: Iterable[str] = PROBLEM_SOLUTION_TYPES, framework: str = "problem-solution") -> PresentationData:
    slides = [make_slide(t, idx + 1) for idx, t in enumerate(types)]
    return PresentationData(
        id="pres-test",
        title="Cutting Cloud Costs",
        metadata=PresentationMetadata(
            audience="Engineering leads",
            tone="professional",
            slide_count=len(slides),
            presentation_type="business",
            framework=framework,
        ),
        slides=slides,
    )


@pytest.fixture
def gen_request() -> GenerationRequest:
    return GenerationRequest(
        prompt="Reduce our cloud costs by fixing the problem of idle resources",
        presentation_type="business",
        slide_count=5,
        audience="Engineering leads",
    )


@pytest.fixture
def problem_solution():
    return require_framework("problem-solution")


@pytest.fixture
def outline(gen_request, problem_solution) -> Outline:
    from src.slide_generation.outline_generator import build_outline

    return build_outline(json.loads(outline_json()), gen_request, problem_solution)


@pytest.fixture
def presentation() -> PresentationData:
    return make_presentation()


@pytest.fixture
def log_store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def gen_log(log_store) -> GenerationLog:
    return GenerationLog(store=log_store)


@pytest.fixture
def entry() -> SlideOutline:
    return SlideOutline(slide_number=2, type="problem", title="Cloud Costs Problem", purpose="Why spend grows")
