"""Cooperative cancellation shared between a request thread and the pipeline."""

from __future__ import annotations

import asyncio
import threading
from typing import Optional

from .errors import GenerationCancelled


class CancellationToken:
    """Thread-safe flag checked at every stage boundary.

    ``cancel`` may be called from any thread (for example a Flask request
    whose client disconnected); the pipeline observes it through
    :meth:`raise_if_cancelled` or races in-flight calls against
    :meth:`wait_cancelled`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            where = f" before {stage}" if stage else ""
            raise GenerationCancelled(f"Generation cancelled{where}: {self.reason}")

    async def wait_cancelled(self, poll_interval: float = 0.05) -> None:
        while not self._event.is_set():
            await asyncio.sleep(poll_interval)

    async def guard(self, coro, stage: str = ""):
        """Await ``coro`` but abandon it as soon as cancellation is requested."""

        self.raise_if_cancelled(stage)
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self.wait_cancelled())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.raise_if_cancelled(stage)


__all__ = ["CancellationToken"]
