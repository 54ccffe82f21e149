"""In-memory storage implementation. Used by default and in tests."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from shakeguard.core.models import (
        EarthquakeEvent,
        EarthquakeReport,
        UserLocationSample,
    )
    from shakeguard.feed.base import ReportFeed

log = structlog.get_logger()


def latest_per_user(
    samples: Iterable[UserLocationSample], since_ms: int
) -> list[UserLocationSample]:
    """Keep the newest sample of each user among those at or after ``since_ms``."""
    latest: dict[str, UserLocationSample] = {}
    for sample in samples:
        if sample.timestamp_ms < since_ms:
            continue
        current = latest.get(sample.user_id)
        if current is None or sample.timestamp_ms > current.timestamp_ms:
            latest[sample.user_id] = sample
    return list(latest.values())


class MemoryQuakeStore:
    """QuakeStore holding every table in process memory."""

    def __init__(self, feed: ReportFeed | None = None) -> None:
        self._feed = feed
        self.reports: list[EarthquakeReport] = []
        self.events: list[EarthquakeEvent] = []
        self.locations: list[UserLocationSample] = []

    async def insert_report(self, report: EarthquakeReport) -> None:
        self.reports.append(report)
        log.debug("report_inserted", report_id=report.id)
        if self._feed is not None:
            await self._feed.publish(report)

    async def insert_event(self, event: EarthquakeEvent) -> None:
        self.events.append(event)

    async def insert_location(self, sample: UserLocationSample) -> None:
        self.locations.append(sample)

    async def recent_locations(self, max_age_hours: float, now_ms: int) -> list[UserLocationSample]:
        since_ms = now_ms - int(max_age_hours * 3_600_000)
        return latest_per_user(self.locations, since_ms)

    async def reports_since(self, since_ms: int) -> list[EarthquakeReport]:
        rows = [r for r in self.reports if r.timestamp_ms >= since_ms]
        rows.sort(key=lambda r: r.timestamp_ms, reverse=True)
        return rows

    async def clear_all(self) -> dict[str, int]:
        counts = {
            "user_locations": len(self.locations),
            "earthquake_events": len(self.events),
            "earthquake_reports": len(self.reports),
        }
        self.reports.clear()
        self.events.clear()
        self.locations.clear()
        log.info("store_cleared", **counts)
        return counts
