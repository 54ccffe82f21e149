"""Change-feed interface (port) for newly inserted earthquake reports."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from shakeguard.core.models import EarthquakeReport

ReportCallback = Callable[["EarthquakeReport"], Awaitable[None]]


class ReportFeed(Protocol):
    """Port: delivers every inserted report to registered subscribers."""

    async def publish(self, report: EarthquakeReport) -> None: ...

    def subscribe(self, callback: ReportCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        ...

    def qsize(self) -> int: ...
