from .cancellation import CancellationToken
from .config import PipelineConfig, QuickValidationPenalties
from .errors import GenerationCancelled, OutlineParseError, PipelineError
from .framework_selector import FrameworkSelection, FrameworkSelector, SelectionStrategy, select_by_rules
from .frameworks import Framework, all_frameworks, get_framework
from .json_extract import JSONExtractionError, extract_json
from .models import (
    GenerationRequest,
    Outline,
    PresentationData,
    PresentationMetadata,
    PresentationType,
    Slide,
    SlideLayout,
    SlideOutline,
    SlideType,
    Tone,
)
from .outline_generator import OutlineGenerator, build_outline
from .slide_generator import PresentationContext, SlideGenerationResult, SlideGenerator, template_slide

__all__ = [
    "CancellationToken",
    "PipelineConfig",
    "QuickValidationPenalties",
    "GenerationCancelled",
    "OutlineParseError",
    "PipelineError",
    "FrameworkSelection",
    "FrameworkSelector",
    "SelectionStrategy",
    "select_by_rules",
    "Framework",
    "all_frameworks",
    "get_framework",
    "JSONExtractionError",
    "extract_json",
    "GenerationRequest",
    "Outline",
    "PresentationData",
    "PresentationMetadata",
    "PresentationType",
    "Slide",
    "SlideLayout",
    "SlideOutline",
    "SlideType",
    "Tone",
    "OutlineGenerator",
    "build_outline",
    "PresentationContext",
    "SlideGenerationResult",
    "SlideGenerator",
    "template_slide",
]
