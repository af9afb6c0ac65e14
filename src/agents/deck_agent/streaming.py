"""Server-Sent Events bridge between the async pipeline and Flask.

The pipeline runs on a worker thread with its own event loop and pushes
JSON events onto a queue; the response generator drains the queue.
Every stream starts with ``connected`` and ends with exactly one
``complete`` or ``error`` event.
"""

from __future__ import annotations

import asyncio
import json
import logging
import queue
import threading
from typing import Any, Callable, Coroutine, Dict, Iterator, Optional

from src.slide_generation.cancellation import CancellationToken

from .orchestrator import GenerationResult, ProgressEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_SECONDS = 15.0

_DONE = object()


def format_sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


class GenerationStream:
    """Runs one generation in the background and yields SSE frames."""

    def __init__(
        self,
        generation_id: str,
        run: Callable[[Callable[[ProgressEvent], None], CancellationToken], Coroutine[Any, Any, GenerationResult]],
        *,
        heartbeat: float = HEARTBEAT_SECONDS,
    ) -> None:
        self.generation_id = generation_id
        self._run = run
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._heartbeat = heartbeat
        self.token = CancellationToken()
        self._thread: Optional[threading.Thread] = None

    def _push(self, payload: Dict[str, Any]) -> None:
        self._events.put(payload)

    def _on_progress(self, event: ProgressEvent) -> None:
        payload = event.to_payload()
        payload["generationId"] = self.generation_id
        self._push(payload)

    def _worker(self) -> None:
        try:
            result = asyncio.run(self._run(self._on_progress, self.token))
            payload = result.to_payload()
            if result.success:
                self._push({"type": "complete", **payload})
            else:
                self._push(
                    {
                        "type": "error",
                        "generationId": self.generation_id,
                        "error": "; ".join(result.errors) or "Generation failed",
                        "errorType": result.error_type,
                        "fallbacks": payload["fallbacks"],
                    }
                )
        except Exception as exc:  # pragma: no cover - surfaced to the client
            logger.exception("Streaming generation %s crashed", self.generation_id)
            self._push(
                {
                    "type": "error",
                    "generationId": self.generation_id,
                    "error": f"Generation failed: {exc}",
                    "errorType": "internal",
                }
            )
        finally:
            self._events.put(_DONE)

    def start(self) -> "GenerationStream":
        self._thread = threading.Thread(
            target=self._worker, name=f"generation-{self.generation_id}", daemon=True
        )
        self._thread.start()
        return self

    def events(self) -> Iterator[str]:
        """Yield SSE frames until the terminal event has been sent."""

        yield format_sse({"type": "connected", "generationId": self.generation_id})
        if self._thread is None:
            self.start()
        try:
            while True:
                try:
                    item = self._events.get(timeout=self._heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                if item is _DONE:
                    return
                yield format_sse(item)
        except GeneratorExit:
            logger.info("Client left stream %s; cancelling", self.generation_id)
            self.token.cancel("client disconnected")
            raise


__all__ = ["GenerationStream", "SSE_HEADERS", "format_sse"]
