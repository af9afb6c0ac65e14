"""Choose between the LLM scorer and its deterministic fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from src.db.generation_log import FallbackImpact, GenerationLog
from src.llm_gateway import LLMError, LLMGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StrategyMode(str, Enum):
    AUTO = "auto"
    PRIMARY_ONLY = "primary_only"
    FALLBACK_ONLY = "fallback_only"


@dataclass(frozen=True)
class StrategyPair(Generic[T]):
    component: str
    primary: Callable[[], Awaitable[T]]
    fallback: Callable[[], T]
    fallback_method: str
    impact: FallbackImpact = FallbackImpact.MINOR


@dataclass(frozen=True)
class StrategyPolicy:
    """Single switch deciding which half of a :class:`StrategyPair` runs.

    ``auto`` runs the primary when the gateway has credentials and falls back
    on gateway or parse errors. ``primary_only`` never falls back.
    ``fallback_only`` never calls the gateway.
    """

    mode: StrategyMode = StrategyMode.AUTO

    def use_primary(self, gateway: Optional[LLMGateway]) -> bool:
        if self.mode is StrategyMode.FALLBACK_ONLY or gateway is None:
            return False
        if self.mode is StrategyMode.PRIMARY_ONLY:
            return True
        return gateway.has_credentials()

    async def run(
        self,
        pair: StrategyPair[T],
        gateway: Optional[LLMGateway],
        log: Optional[GenerationLog] = None,
    ) -> T:
        if not self.use_primary(gateway):
            if log is not None and self.mode is StrategyMode.AUTO:
                log.record_fallback(
                    pair.component,
                    "no LLM credentials configured",
                    pair.fallback_method,
                    FallbackImpact.MINOR,
                )
            return pair.fallback()
        try:
            return await pair.primary()
        except (LLMError, ValueError) as exc:
            if self.mode is StrategyMode.PRIMARY_ONLY:
                raise
            logger.warning("%s primary strategy failed, using %s: %s", pair.component, pair.fallback_method, exc)
            if log is not None:
                log.record_fallback(
                    pair.component,
                    str(exc) or exc.__class__.__name__,
                    pair.fallback_method,
                    pair.impact,
                )
            return pair.fallback()


__all__ = ["StrategyMode", "StrategyPair", "StrategyPolicy"]
