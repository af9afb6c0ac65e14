"""Closed set of narrative frameworks the pipeline can build an outline on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import SlideType


@dataclass(frozen=True)
class FrameworkStep:
    step: str
    description: str


@dataclass(frozen=True)
class Framework:
    id: str
    name: str
    description: str
    structure: Tuple[FrameworkStep, ...]
    slide_sequence: Tuple[SlideType, ...]
    keywords: Tuple[str, ...]
    best_for: Tuple[str, ...] = ()

    def template_for(self, slide_count: int) -> List[SlideType]:
        """Return exactly ``slide_count`` slide types following this framework.

        The opening and closing types are always kept; the middle of the
        sequence is sampled evenly, repeating entries when the deck is longer
        than the template and dropping entries when it is shorter.
        """

        if slide_count <= 0:
            return []
        seq = list(self.slide_sequence)
        if slide_count == 1:
            return seq[:1]
        if slide_count == 2:
            return [seq[0], seq[-1]]
        middle = seq[1:-1]
        span = slide_count - 2
        picked = [middle[(i * len(middle)) // span] for i in range(span)]
        return [seq[0], *picked, seq[-1]]

    def describe_structure(self) -> str:
        return "\n".join(f"- {s.step}: {s.description}" for s in self.structure)


_FRAMEWORKS: Tuple[Framework, ...] = (
    Framework(
        id="scqa",
        name="SCQA",
        description="Situation-Complication-Question-Answer framework for problem-solving presentations",
        structure=(
            FrameworkStep("Situation", "Establish the current context and environment"),
            FrameworkStep("Complication", "Identify the core problem or challenge"),
            FrameworkStep("Question", "Frame the critical question that needs answering"),
            FrameworkStep("Answer", "Provide the solution or recommendation"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.PROBLEM,
            SlideType.SOLUTION,
            SlideType.IMPLEMENTATION,
            SlideType.CONCLUSION,
        ),
        keywords=("scqa", "situation-complication"),
        best_for=("Strategic initiative proposals", "Consulting recommendations"),
    ),
    Framework(
        id="prep",
        name="PREP",
        description="Point-Reason-Example-Point framework for clear argumentation",
        structure=(
            FrameworkStep("Point", "State the main message or position clearly"),
            FrameworkStep("Reason", "Provide logical rationale and supporting arguments"),
            FrameworkStep("Example", "Illustrate with concrete examples, data, or evidence"),
            FrameworkStep("Point", "Reinforce the main message"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.SOLUTION,
            SlideType.BENEFITS,
            SlideType.CHART,
            SlideType.CONCLUSION,
        ),
        keywords=("prep", "point-reason"),
        best_for=("Persuasive presentations", "Recommendation presentations"),
    ),
    Framework(
        id="star",
        name="STAR",
        description="Situation-Task-Action-Result framework for case studies and project results",
        structure=(
            FrameworkStep("Situation", "Describe the context the work started from"),
            FrameworkStep("Task", "Explain the goal or responsibility"),
            FrameworkStep("Action", "Detail the steps that were taken"),
            FrameworkStep("Result", "Quantify the outcome"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.PROBLEM,
            SlideType.IMPLEMENTATION,
            SlideType.BENEFITS,
            SlideType.CONCLUSION,
        ),
        keywords=("star", "situation-task"),
        best_for=("Case studies", "Project retrospectives"),
    ),
    Framework(
        id="pyramid",
        name="Pyramid Principle",
        description="Answer-first structure with grouped supporting arguments",
        structure=(
            FrameworkStep("Governing thought", "Lead with the answer"),
            FrameworkStep("Key arguments", "Group the supporting arguments"),
            FrameworkStep("Evidence", "Back each argument with data"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.SOLUTION,
            SlideType.FRAMEWORK,
            SlideType.BENEFITS,
            SlideType.NEXT_STEPS,
        ),
        keywords=("pyramid", "minto"),
        best_for=("Executive briefings", "Board updates"),
    ),
    Framework(
        id="comparison",
        name="Comparison",
        description="Side-by-side evaluation of options leading to a selection",
        structure=(
            FrameworkStep("Criteria", "Define how options are judged"),
            FrameworkStep("Options", "Present each option against the criteria"),
            FrameworkStep("Recommendation", "Select and justify the preferred option"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.PROBLEM,
            SlideType.TABLE,
            SlideType.SOLUTION,
            SlideType.CONCLUSION,
        ),
        keywords=("comparison", "compare"),
        best_for=("Vendor selection", "Option analysis"),
    ),
    Framework(
        id="problem-solution",
        name="Problem-Solution",
        description="Define a problem, present the solution and the value it brings",
        structure=(
            FrameworkStep("Problem", "Describe the problem and its impact"),
            FrameworkStep("Solution", "Present the proposed solution"),
            FrameworkStep("Benefits", "Show the value delivered"),
        ),
        slide_sequence=(
            SlideType.TITLE,
            SlideType.PROBLEM,
            SlideType.SOLUTION,
            SlideType.BENEFITS,
            SlideType.CONCLUSION,
        ),
        keywords=("problem-solution", "problem solution", "problem/solution"),
        best_for=("Business cases", "Product introductions"),
    ),
)

_BY_ID: Dict[str, Framework] = {fw.id: fw for fw in _FRAMEWORKS}

DEFAULT_FRAMEWORK_ID = "scqa"


def all_frameworks() -> List[Framework]:
    return list(_FRAMEWORKS)


def get_framework(framework_id: Optional[str]) -> Optional[Framework]:
    if not framework_id:
        return None
    key = framework_id.strip().lower().replace("_", "-").replace(" ", "-")
    return _BY_ID.get(key)


def require_framework(framework_id: str) -> Framework:
    fw = get_framework(framework_id)
    if fw is None:
        raise ValueError(f"Unknown framework '{framework_id}'. Known: {sorted(_BY_ID)}")
    return fw


__all__ = [
    "DEFAULT_FRAMEWORK_ID",
    "Framework",
    "FrameworkStep",
    "all_frameworks",
    "get_framework",
    "require_framework",
]
