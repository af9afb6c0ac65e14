"""Async gateway over the hosted completion providers used by the pipeline."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import anthropic
import google.generativeai as genai
import openai
from dotenv import load_dotenv
from google.api_core import exceptions as google_exceptions
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import (
    RETRYABLE_ERRORS,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMMalformedResponseError,
    LLMRateLimitError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

_DEFAULT_PROVIDER = os.environ.get("DECK_LLM_PROVIDER", "anthropic").lower()
_DEFAULT_TIMEOUT = float(os.environ.get("DECK_LLM_TIMEOUT", "30"))

_PROVIDER_MODELS = {
    "anthropic": "claude-3-haiku-20240307",
    "openai": "gpt-4.1-mini",
    "gemini": "gemini-2.5-flash",
}
_PROVIDER_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}


@dataclass(frozen=True)
class ModelConfig:
    """Model identifier plus token budget and temperature for one call.

    ``model`` of ``None`` means the active provider's default model.
    """

    max_tokens: int
    temperature: float
    model: Optional[str] = None


def _env_model() -> Optional[str]:
    return os.environ.get("DECK_LLM_MODEL") or None


class ModelConfigs:
    """Presets per pipeline purpose."""

    @staticmethod
    def validation() -> ModelConfig:
        return ModelConfig(max_tokens=512, temperature=0.1, model=_env_model())

    @staticmethod
    def analysis() -> ModelConfig:
        return ModelConfig(max_tokens=1024, temperature=0.3, model=_env_model())

    @staticmethod
    def refinement() -> ModelConfig:
        return ModelConfig(max_tokens=4096, temperature=0.4, model=_env_model())

    @staticmethod
    def quick_fix() -> ModelConfig:
        return ModelConfig(max_tokens=1024, temperature=0.3, model=_env_model())

    @staticmethod
    def outline() -> ModelConfig:
        return ModelConfig(max_tokens=2500, temperature=0.3, model=_env_model())


@dataclass(frozen=True)
class LLMResponse:
    text: str
    model: str
    input_tokens: int
    output_tokens: int
    estimated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMCallRecord:
    """Emitted to subscribers after every successful completion."""

    purpose: str
    model: str
    input_tokens: int
    output_tokens: int
    duration_ms: int
    estimated: bool


def estimate_tokens(text: str) -> int:
    """Rough character based estimate used when usage metadata is missing."""

    return int(math.ceil(len(text or "") / 4))


class LLMGateway:
    """Send a prompt to the configured provider and return raw text.

    Errors are normalized to :mod:`src.llm_gateway.errors`. Rate limits,
    connection failures and timeouts are retried with exponential backoff;
    authentication and malformed responses are not.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_attempts: int = 3,
        backoff: float = 1.0,
    ) -> None:
        load_dotenv()
        self.provider = (provider or os.environ.get("DECK_LLM_PROVIDER") or _DEFAULT_PROVIDER).lower()
        if self.provider not in _PROVIDER_MODELS:
            raise ValueError(f"Unsupported LLM provider '{self.provider}'")
        self._api_key = api_key
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._client: Any = None
        self._subscribers: List[Callable[[LLMCallRecord], None]] = []

    # ------------------------------------------------------------------
    # Credentials and clients
    # ------------------------------------------------------------------
    def _resolve_api_key(self) -> Optional[str]:
        return self._api_key or os.environ.get(_PROVIDER_KEYS[self.provider])

    def has_credentials(self) -> bool:
        return bool(self._resolve_api_key())

    def default_model(self) -> str:
        return _PROVIDER_MODELS[self.provider]

    def _build_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = self._resolve_api_key()
        if not api_key:
            raise LLMAuthenticationError(
                f"{_PROVIDER_KEYS[self.provider]} must be set to call {self.provider} models."
            )
        if self.provider == "anthropic":
            self._client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0, timeout=self.timeout)
        elif self.provider == "openai":
            self._client = openai.AsyncOpenAI(api_key=api_key, max_retries=0, timeout=self.timeout)
        else:
            genai.configure(api_key=api_key)
            self._client = genai
        return self._client

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[LLMCallRecord], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LLMCallRecord], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self, record: LLMCallRecord) -> None:
        for callback in list(self._subscribers):
            try:
                callback(record)
            except Exception:  # pragma: no cover - observer bugs must not break calls
                logger.exception("LLM call subscriber failed")

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    async def complete(
        self,
        prompt: str,
        *,
        config: ModelConfig,
        purpose: str,
        system: Optional[str] = None,
    ) -> LLMResponse:
        if not prompt:
            raise ValueError("prompt must not be empty")

        model_name = config.model or self.default_model()
        logger.debug(
            "LLM request purpose=%s provider=%s model=%s prompt_chars=%d",
            purpose,
            self.provider,
            model_name,
            len(prompt),
        )
        started = time.monotonic()
        response: Optional[LLMResponse] = None
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=10),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying LLM call purpose=%s attempt=%d",
                        purpose,
                        attempt.retry_state.attempt_number,
                    )
                response = await self._complete_once(prompt, model_name, config, system)

        assert response is not None
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "LLM response purpose=%s model=%s tokens=%d duration_ms=%d",
            purpose,
            response.model,
            response.total_tokens,
            duration_ms,
        )
        self._notify(
            LLMCallRecord(
                purpose=purpose,
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                duration_ms=duration_ms,
                estimated=response.estimated,
            )
        )
        return response

    async def _complete_once(
        self,
        prompt: str,
        model_name: str,
        config: ModelConfig,
        system: Optional[str],
    ) -> LLMResponse:
        client = self._build_client()
        if self.provider == "anthropic":
            call = self._invoke_anthropic(client, prompt, model_name, config, system)
        elif self.provider == "openai":
            call = self._invoke_openai(client, prompt, model_name, config, system)
        else:
            call = self._invoke_gemini(client, prompt, model_name, config, system)
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise LLMTimeoutError(f"{self.provider} call exceeded {self.timeout:.0f}s") from exc

    async def _invoke_anthropic(
        self,
        client: anthropic.AsyncAnthropic,
        prompt: str,
        model_name: str,
        config: ModelConfig,
        system: Optional[str],
    ) -> LLMResponse:
        kwargs: Dict[str, Any] = {
            "model": model_name,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        try:
            resp = await client.messages.create(**kwargs)
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise LLMAuthenticationError(f"Anthropic rejected credentials: {exc}") from exc
        except anthropic.RateLimitError as exc:
            raise LLMRateLimitError(f"Anthropic rate limit: {exc}") from exc
        except anthropic.APITimeoutError as exc:
            raise LLMTimeoutError(f"Anthropic request timed out: {exc}") from exc
        except (anthropic.APIConnectionError, anthropic.InternalServerError) as exc:
            raise LLMConnectionError(f"Anthropic unavailable: {exc}") from exc
        except anthropic.APIError as exc:
            raise LLMError(f"Anthropic request failed: {exc}") from exc

        text = "".join(
            getattr(block, "text", "") for block in (resp.content or []) if getattr(block, "type", "") == "text"
        )
        usage = getattr(resp, "usage", None)
        return self._build_response(
            text,
            getattr(resp, "model", model_name),
            prompt,
            getattr(usage, "input_tokens", None),
            getattr(usage, "output_tokens", None),
        )

    async def _invoke_openai(
        self,
        client: openai.AsyncOpenAI,
        prompt: str,
        model_name: str,
        config: ModelConfig,
        system: Optional[str],
    ) -> LLMResponse:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        try:
            resp = await client.chat.completions.create(
                model=model_name,
                messages=messages,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise LLMAuthenticationError(f"OpenAI rejected credentials: {exc}") from exc
        except openai.RateLimitError as exc:
            raise LLMRateLimitError(f"OpenAI rate limit: {exc}") from exc
        except openai.APITimeoutError as exc:
            raise LLMTimeoutError(f"OpenAI request timed out: {exc}") from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            raise LLMConnectionError(f"OpenAI unavailable: {exc}") from exc
        except openai.APIError as exc:
            raise LLMError(f"OpenAI request failed: {exc}") from exc

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise LLMMalformedResponseError("OpenAI response did not include a message") from exc
        if isinstance(content, list):
            text = "".join(getattr(part, "text", "") for part in content)
        else:
            text = content or ""
        usage = getattr(resp, "usage", None)
        return self._build_response(
            text,
            getattr(resp, "model", model_name),
            prompt,
            getattr(usage, "prompt_tokens", None),
            getattr(usage, "completion_tokens", None),
        )

    async def _invoke_gemini(
        self,
        client: Any,
        prompt: str,
        model_name: str,
        config: ModelConfig,
        system: Optional[str],
    ) -> LLMResponse:
        model = client.GenerativeModel(model_name, system_instruction=system) if system else client.GenerativeModel(model_name)
        try:
            resp = await model.generate_content_async(
                prompt,
                generation_config=client.GenerationConfig(
                    max_output_tokens=config.max_tokens,
                    temperature=config.temperature,
                ),
            )
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as exc:
            raise LLMAuthenticationError(f"Gemini rejected credentials: {exc}") from exc
        except google_exceptions.ResourceExhausted as exc:
            raise LLMRateLimitError(f"Gemini rate limit: {exc}") from exc
        except google_exceptions.DeadlineExceeded as exc:
            raise LLMTimeoutError(f"Gemini request timed out: {exc}") from exc
        except (google_exceptions.ServiceUnavailable, google_exceptions.InternalServerError) as exc:
            raise LLMConnectionError(f"Gemini unavailable: {exc}") from exc
        except google_exceptions.GoogleAPICallError as exc:
            raise LLMError(f"Gemini request failed: {exc}") from exc

        try:
            text = resp.text or ""
        except ValueError as exc:
            # Raised by the SDK when the candidate was blocked or empty.
            raise LLMMalformedResponseError(f"Gemini response had no text: {exc}") from exc
        usage = getattr(resp, "usage_metadata", None)
        return self._build_response(
            text,
            model_name,
            prompt,
            getattr(usage, "prompt_token_count", None),
            getattr(usage, "candidates_token_count", None),
        )

    def _build_response(
        self,
        text: str,
        model_name: str,
        prompt: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
    ) -> LLMResponse:
        text = (text or "").strip()
        if not text:
            raise LLMMalformedResponseError(f"{self.provider} response did not include text output")
        estimated = input_tokens is None or output_tokens is None
        return LLMResponse(
            text=text,
            model=str(model_name),
            input_tokens=int(input_tokens) if input_tokens is not None else estimate_tokens(prompt),
            output_tokens=int(output_tokens) if output_tokens is not None else estimate_tokens(text),
            estimated=estimated,
        )


__all__ = [
    "LLMCallRecord",
    "LLMGateway",
    "LLMResponse",
    "ModelConfig",
    "ModelConfigs",
    "estimate_tokens",
]
