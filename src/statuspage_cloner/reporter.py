"""Ordered progress channel between the pipeline and its consumer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from statuspage_cloner.models import CloneEvent, ErrorEvent, ProgressEvent, ResultEvent

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Queue-backed event channel.

    The pipeline calls ``report`` for progress lines and ``finish`` exactly
    once with the terminal event; ``events`` yields everything in order and
    stops after the terminal event. ``close`` marks the consumer as gone so
    producers can skip remaining work.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[CloneEvent] = asyncio.Queue()
        self._finished = False
        self.closed = False

    @property
    def finished(self) -> bool:
        return self._finished

    def report(self, message: str) -> None:
        logger.info(message)
        if self.closed or self._finished:
            return
        self._queue.put_nowait(ProgressEvent(message=message))

    def finish(self, event: ResultEvent | ErrorEvent) -> None:
        """Emit the terminal event. Later calls are ignored."""
        if self._finished:
            logger.warning("Terminal event already sent, dropping %s event", event.type)
            return
        self._finished = True
        if event.type == "error":
            logger.error("Clone failed: %s", event.message)
        self._queue.put_nowait(event)

    def close(self) -> None:
        self.closed = True

    async def events(self) -> AsyncIterator[CloneEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.type != "progress":
                return
