"""Per-generation session record.

A :class:`GenerationLog` is created for each request, handed to the
orchestrator and its components, and flushed once through :meth:`finalize`.
Persistence is best effort: a failing store is logged and ignored.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol

from .mongo import get_db

logger = logging.getLogger(__name__)

LOG_COLLECTION = "generation_logs"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FallbackImpact(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"


@dataclass(frozen=True)
class FallbackEvent:
    component: str
    reason: str
    fallback_method: str
    impact: FallbackImpact
    user_message: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "reason": self.reason,
            "fallbackMethod": self.fallback_method,
            "impact": self.impact.value,
            "userMessage": self.user_message,
            "timestamp": self.timestamp,
        }


class LogStore(Protocol):
    def save(self, document: Dict[str, Any]) -> None: ...

    def get(self, generation_id: str) -> Optional[Dict[str, Any]]: ...


class InMemoryLogStore:
    """Process-local store; the Flask debug endpoint reads from it."""

    def __init__(self, max_entries: int = 200) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []
        self._lock = threading.Lock()
        self.max_entries = max_entries

    def save(self, document: Dict[str, Any]) -> None:
        gen_id = document["generationId"]
        with self._lock:
            if gen_id not in self._docs:
                self._order.append(gen_id)
            self._docs[gen_id] = document
            while len(self._order) > self.max_entries:
                self._docs.pop(self._order.pop(0), None)

    def get(self, generation_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(generation_id)
            return dict(doc) if doc is not None else None


class MongoLogStore:
    def __init__(self, collection_name: str = LOG_COLLECTION) -> None:
        self.collection_name = collection_name

    def _coll(self):
        return get_db()[self.collection_name]

    def save(self, document: Dict[str, Any]) -> None:
        record = {**document, "savedAt": datetime.now(timezone.utc)}
        self._coll().replace_one({"generationId": document["generationId"]}, record, upsert=True)

    def get(self, generation_id: str) -> Optional[Dict[str, Any]]:
        return self._coll().find_one({"generationId": generation_id}, {"_id": 0, "savedAt": 0})


@lru_cache(maxsize=1)
def get_log_store() -> LogStore:
    """Return the store selected by ``DECK_LOG_BACKEND`` (``memory`` or ``mongo``)."""

    backend = os.environ.get("DECK_LOG_BACKEND", "memory").lower()
    if backend == "mongo":
        return MongoLogStore()
    return InMemoryLogStore()


class GenerationLog:
    """Single-writer record of one generation or refinement session."""

    def __init__(
        self,
        generation_id: Optional[str] = None,
        *,
        store: Optional[LogStore] = None,
        kind: str = "generation",
        request: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.generation_id = generation_id or f"gen_{uuid.uuid4().hex[:12]}"
        self.kind = kind
        self.store = store
        self.request = request or {}
        self.started_at = _now_iso()
        self._started = time.monotonic()
        self.steps: List[Dict[str, Any]] = []
        self.llm_calls: List[Dict[str, Any]] = []
        self.fallbacks: List[FallbackEvent] = []
        self.errors: List[Dict[str, Any]] = []
        self.progress: List[Dict[str, Any]] = []
        self.status = "running"
        self.summary: Dict[str, Any] = {}
        self._finalized = False
        self._stage = "initializing"
        self._persist()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def step(self, stage: str, message: str, **details: Any) -> None:
        self._stage = stage
        entry = {"stage": stage, "message": message, "at": _now_iso(), "elapsedMs": self.elapsed_ms()}
        if details:
            entry["details"] = details
        self.steps.append(entry)
        logger.info("[%s] %s: %s", self.generation_id, stage, message)

    def record_llm_call(self, record: Any) -> None:
        """Gateway subscriber; ``record`` is an ``LLMCallRecord``."""

        entry = asdict(record)
        entry["stage"] = self._stage
        self.llm_calls.append(entry)

    def record_fallback(
        self,
        component: str,
        reason: str,
        fallback_method: str,
        impact: FallbackImpact,
        user_message: Optional[str] = None,
    ) -> FallbackEvent:
        for existing in self.fallbacks:
            if (existing.component, existing.reason, existing.fallback_method) == (component, reason, fallback_method):
                return existing
        event = FallbackEvent(
            component=component,
            reason=reason,
            fallback_method=fallback_method,
            impact=FallbackImpact(impact),
            user_message=user_message,
        )
        self.fallbacks.append(event)
        log = logger.info if event.impact in (FallbackImpact.NONE, FallbackImpact.MINOR) else logger.warning
        log("[%s] fallback in %s (%s): %s", self.generation_id, component, event.impact.value, reason)
        return event

    def record_error(self, stage: str, message: str) -> None:
        self.errors.append({"stage": stage, "message": message, "at": _now_iso()})
        logger.error("[%s] %s failed: %s", self.generation_id, stage, message)

    def record_progress(self, event: Dict[str, Any]) -> None:
        self.progress.append(dict(event))

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    @property
    def total_tokens(self) -> int:
        return sum(c["input_tokens"] + c["output_tokens"] for c in self.llm_calls)

    def tokens_by_stage(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for call in self.llm_calls:
            totals[call["stage"]] = totals.get(call["stage"], 0) + call["input_tokens"] + call["output_tokens"]
        return totals

    def to_document(self) -> Dict[str, Any]:
        return {
            "generationId": self.generation_id,
            "kind": self.kind,
            "status": self.status,
            "startedAt": self.started_at,
            "elapsedMs": self.elapsed_ms(),
            "request": self.request,
            "steps": list(self.steps),
            "llmCalls": list(self.llm_calls),
            "tokensUsed": self.total_tokens,
            "tokensByStage": self.tokens_by_stage(),
            "fallbacks": [f.to_dict() for f in self.fallbacks],
            "errors": list(self.errors),
            "progress": list(self.progress),
            "summary": dict(self.summary),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def finalize(self, status: str, **summary: Any) -> Dict[str, Any]:
        if self._finalized:
            return self.to_document()
        self._finalized = True
        self.status = status
        self.summary.update(summary)
        document = self.to_document()
        self._persist(document)
        logger.info(
            "[%s] %s finished status=%s tokens=%d fallbacks=%d elapsed_ms=%d",
            self.generation_id,
            self.kind,
            status,
            self.total_tokens,
            len(self.fallbacks),
            document["elapsedMs"],
        )
        return document

    def _persist(self, document: Optional[Dict[str, Any]] = None) -> None:
        if self.store is None:
            return
        try:
            self.store.save(document or self.to_document())
        except Exception as exc:
            logger.warning("Failed to persist generation log %s: %s", self.generation_id, exc)


__all__ = [
    "FallbackEvent",
    "FallbackImpact",
    "GenerationLog",
    "InMemoryLogStore",
    "LogStore",
    "MongoLogStore",
    "get_log_store",
]
