"""Provider-neutral access to hosted completion models."""

from .client import LLMCallRecord, LLMGateway, LLMResponse, ModelConfig, ModelConfigs, estimate_tokens
from .errors import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMMalformedResponseError,
    LLMRateLimitError,
    LLMTimeoutError,
)

__all__ = [
    "LLMAuthenticationError",
    "LLMCallRecord",
    "LLMConnectionError",
    "LLMError",
    "LLMGateway",
    "LLMMalformedResponseError",
    "LLMRateLimitError",
    "LLMResponse",
    "LLMTimeoutError",
    "ModelConfig",
    "ModelConfigs",
    "estimate_tokens",
]
