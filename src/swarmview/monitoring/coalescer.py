"""Debounced batching of file change notifications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

logger = logging.getLogger(__name__)

BatchHandler = Callable[[set[Path]], Awaitable[None]]


class ChangeCoalescer:
    """Merges bursts of change notifications into single handler calls.

    Every notification restarts a debounce timer. When the timer expires, all
    paths collected so far are handed to the handler as one batch. Only one
    handler call runs at a time: notifications that arrive while a batch is
    being processed are accumulated and delivered one debounce period after
    it completes.

    Example:
        >>> async def rederive(paths: set[Path]) -> None:
        ...     print(sorted(paths))
        >>> coalescer = ChangeCoalescer(rederive, debounce_seconds=0.2)
        >>> coalescer.notify("/logs/session.jsonl")
        >>> coalescer.notify("/logs/agent-abc.jsonl")
        >>> await coalescer.wait_idle()  # one call with both paths
    """

    def __init__(self, handler: BatchHandler, debounce_seconds: float = 0.2):
        """Initialize the coalescer.

        Args:
            handler: Coroutine function receiving each batch of changed paths.
            debounce_seconds: Quiet period before a batch is processed.
        """
        self._handler = handler
        self.debounce_seconds = debounce_seconds
        self._pending: set[Path] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._drain_task: asyncio.Task | None = None
        self._closed = False

    @property
    def pending(self) -> frozenset[Path]:
        return frozenset(self._pending)

    @property
    def in_flight(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def notify(self, file_path: str | Path) -> None:
        """Record a changed path and restart the debounce timer.

        Must be called from the event loop thread.
        """
        if self._closed:
            return
        self._pending.add(Path(file_path))
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed or self.in_flight:
            # A running drain re-arms the timer for whatever is pending when it finishes
            return
        self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        if not self._pending or self._closed:
            return
        batch, self._pending = self._pending, set()
        logger.debug(f"Processing batch of {len(batch)} changed files")
        try:
            await self._handler(batch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error processing changed files: {e}", exc_info=True)

        # Changes that arrived during the pass get their own quiet period
        if self._pending and not self._closed:
            if self._timer is not None:
                self._timer.cancel()
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no batch is being processed."""
        while self._timer is not None or self.in_flight:
            if self.in_flight:
                await asyncio.shield(self._drain_task)
            else:
                await asyncio.sleep(self.debounce_seconds / 2 or 0.01)

    async def aclose(self) -> None:
        """Stop accepting notifications and wait for an in-flight batch to finish."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        if self.in_flight:
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
