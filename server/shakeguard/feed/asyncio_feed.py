"""In-process asyncio implementation of ReportFeed."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from shakeguard.core.models import EarthquakeReport
    from shakeguard.feed.base import ReportCallback

log = structlog.get_logger()


class AsyncioReportFeed:
    """ReportFeed backed by asyncio.Queue.

    ``publish`` only enqueues; ``run`` is the background pump that hands
    each report to every subscriber in insertion order.
    """

    def __init__(self, max_size: int = 1_000) -> None:
        self._queue: asyncio.Queue[EarthquakeReport] = asyncio.Queue(maxsize=max_size)
        self._subscribers: list[ReportCallback] = []

    async def publish(self, report: EarthquakeReport) -> None:
        await self._queue.put(report)

    def subscribe(self, callback: ReportCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def qsize(self) -> int:
        return self._queue.qsize()

    async def dispatch_pending(self) -> int:
        """Deliver everything currently queued. Returns the number delivered."""
        delivered = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            delivered += 1
        return delivered

    async def run(self) -> None:
        """Deliver reports to subscribers forever. Runs as a background task."""
        log.info("report_feed_started")
        while True:
            report = await self._queue.get()
            await self._deliver(report)

    async def _deliver(self, report: EarthquakeReport) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(report)
            except Exception:
                log.error("report_subscriber_failed", report_id=report.id,
                          exc_info=True)
