"""Storage interface (port) for report, event and location rows."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from shakeguard.core.models import (
        EarthquakeEvent,
        EarthquakeReport,
        UserLocationSample,
    )


class QuakeStore(Protocol):
    """Port: the backing database of the service.

    Inserting a report publishes it on the report change-feed, if the
    adapter was given one.
    """

    async def insert_report(self, report: EarthquakeReport) -> None: ...

    async def insert_event(self, event: EarthquakeEvent) -> None: ...

    async def insert_location(self, sample: UserLocationSample) -> None: ...

    async def recent_locations(self, max_age_hours: float, now_ms: int) -> list[UserLocationSample]:
        """Most recent location per user within the window."""
        ...

    async def reports_since(self, since_ms: int) -> list[EarthquakeReport]:
        """Reports with ``timestamp_ms >= since_ms``, newest first."""
        ...

    async def clear_all(self) -> dict[str, int]:
        """Delete every row of every table. Returns deleted counts per table."""
        ...
