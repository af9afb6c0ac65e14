"""Quality scoring for outlines, slides and decks, plus the refinement loop."""

from .deck_validator import DeckValidator, identify_refinement_targets
from .feedback import (
    CognitiveLoad,
    DeckValidationFeedback,
    OutlineValidationFeedback,
    RefinementTarget,
    SlideValidationFeedback,
    ValidationStrategy,
)
from .outline_validator import OutlineValidator
from .policy import StrategyMode, StrategyPolicy
from .refinement import RefinementEngine, RefinementProgress, RefinementResult, StopReason
from .slide_validator import SlideValidator, assess_cognitive_load

__all__ = [
    "CognitiveLoad",
    "DeckValidationFeedback",
    "DeckValidator",
    "OutlineValidationFeedback",
    "OutlineValidator",
    "RefinementEngine",
    "RefinementProgress",
    "RefinementResult",
    "RefinementTarget",
    "SlideValidationFeedback",
    "SlideValidator",
    "StopReason",
    "StrategyMode",
    "StrategyPolicy",
    "ValidationStrategy",
    "assess_cognitive_load",
    "identify_refinement_targets",
]
