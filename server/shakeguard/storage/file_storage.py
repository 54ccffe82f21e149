"""File-based storage implementation.

Stores each table as JSON Lines, partitioned by the row's own timestamp:

    base_dir/<table>/YYYY/MM/DD/rows.jsonl

Reads scan every partition of a table; volumes on a single device are small.
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from shakeguard.core.models import (
    EarthquakeEvent,
    EarthquakeReport,
    UserLocationSample,
)
from shakeguard.storage.memory_storage import latest_per_user

if TYPE_CHECKING:
    from shakeguard.feed.base import ReportFeed

log = structlog.get_logger()

REPORTS = "earthquake_reports"
EVENTS = "earthquake_events"
LOCATIONS = "user_locations"
_TABLES = (LOCATIONS, EVENTS, REPORTS)


class FileQuakeStore:
    """QuakeStore backed by date-partitioned JSON Lines files on disk."""

    def __init__(self, base_dir: str | Path, feed: ReportFeed | None = None) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._feed = feed

    def _day_dir(self, table: str, timestamp_ms: int) -> Path:
        """Return the partition directory for a given timestamp."""
        dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        path = self._base_dir / table / f"{dt.year:04d}" / f"{dt.month:02d}" / f"{dt.day:02d}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _append(self, table: str, timestamp_ms: int, row: dict) -> None:
        path = self._day_dir(table, timestamp_ms) / "rows.jsonl"
        with open(path, "a") as f:
            f.write(json.dumps(row, separators=(",", ":")) + "\n")
        log.debug("row_written", table=table, path=str(path))

    def _read(self, table: str) -> list[dict]:
        rows: list[dict] = []
        table_dir = self._base_dir / table
        if not table_dir.exists():
            return rows
        for path in sorted(table_dir.rglob("rows.jsonl")):
            with open(path) as f:
                for line_no, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        rows.append(json.loads(line))
                    except json.JSONDecodeError:
                        log.warning("corrupt_row_skipped", path=str(path), line=line_no)
        return rows

    async def insert_report(self, report: EarthquakeReport) -> None:
        self._append(REPORTS, report.timestamp_ms, report.to_dict())
        if self._feed is not None:
            await self._feed.publish(report)

    async def insert_event(self, event: EarthquakeEvent) -> None:
        self._append(EVENTS, event.start_time_ms, event.to_dict())

    async def insert_location(self, sample: UserLocationSample) -> None:
        self._append(LOCATIONS, sample.timestamp_ms, sample.to_dict())

    async def recent_locations(self, max_age_hours: float, now_ms: int) -> list[UserLocationSample]:
        since_ms = now_ms - int(max_age_hours * 3_600_000)
        samples = (UserLocationSample(**row) for row in self._read(LOCATIONS))
        return latest_per_user(samples, since_ms)

    async def reports_since(self, since_ms: int) -> list[EarthquakeReport]:
        rows = [EarthquakeReport(**row) for row in self._read(REPORTS)]
        rows = [r for r in rows if r.timestamp_ms >= since_ms]
        rows.sort(key=lambda r: r.timestamp_ms, reverse=True)
        return rows

    async def clear_all(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in _TABLES:
            counts[table] = len(self._read(table))
            shutil.rmtree(self._base_dir / table, ignore_errors=True)
        log.info("store_cleared", **counts)
        return counts
