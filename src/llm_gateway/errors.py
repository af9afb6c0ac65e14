"""Error taxonomy surfaced by the LLM gateway."""

from __future__ import annotations


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMAuthenticationError(LLMError):
    """Credential missing or rejected by the provider. Never retried."""


class LLMRateLimitError(LLMError):
    """Upstream rate limit exceeded."""


class LLMConnectionError(LLMError):
    """Network failure talking to the provider."""


class LLMTimeoutError(LLMConnectionError):
    """The call did not finish within the configured timeout."""


class LLMMalformedResponseError(LLMError):
    """The provider answered but the payload is unusable."""


RETRYABLE_ERRORS = (LLMRateLimitError, LLMConnectionError)


__all__ = [
    "LLMAuthenticationError",
    "LLMConnectionError",
    "LLMError",
    "LLMMalformedResponseError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "RETRYABLE_ERRORS",
]
