"""Async event bus bridging turn-controller notices to UI consumers.

The controller fires notices via callback while a turn runs in a
background worker; the EventBus queues them for the UI consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from potato.adapters.events import EngineNotice, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging engine callbacks to UI consumers."""

    def __init__(self, maxsize: int = 2000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[EngineNotice] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    async def _put(self, event: EngineNotice) -> None:
        try:
            # Backpressure rather than silently dropping
            await asyncio.wait_for(self._queue.put(event), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout, event.event_type, self._queue.qsize(),
            )

    async def _callback(self, data: dict[str, Any]) -> None:
        if self._closed:
            return
        await self._put(dict_to_event(data))

    def make_callback(self):
        """Return the async callback for TurnController(event_callback=...)."""
        return self._callback

    async def emit(self, event: EngineNotice) -> None:
        """Emit a UI-generated notice."""
        if self._closed:
            return
        await self._put(event)

    async def consume(self) -> AsyncIterator[EngineNotice]:
        """Yield notices as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    def pending(self) -> list[EngineNotice]:
        """Drain queued notices without waiting."""
        drained = []
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
        return drained

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drop leftover notices and re-open the bus (new chat)."""
        self.pending()
        self._closed = False
