"""Pipeline level exceptions."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures raised by the generation pipeline."""


class OutlineParseError(PipelineError):
    """The model's outline response could not be turned into an :class:`Outline`."""


class GenerationCancelled(PipelineError):
    """Raised at a stage boundary after cancellation was requested."""


__all__ = ["GenerationCancelled", "OutlineParseError", "PipelineError"]
