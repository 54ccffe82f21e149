"""Early-warning fanout.

``calculate_warnings`` is pure: epicenter + candidate locations in, ranked
warnings out. ``WarningService`` wraps it with I/O: directory lookup,
notification dispatch and the change-feed trigger.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import structlog

from shakeguard.core.geo import (
    DEFAULT_WAVE_SPEED_KM_S,
    arrival_time_seconds,
    format_arrival_time,
    haversine_km,
    intensity_description,
)
from shakeguard.core.models import (
    EarthquakeReport,
    Notification,
    NotificationPriority,
    UserLocationSample,
    WarningCalculation,
)

if TYPE_CHECKING:
    from shakeguard.config import WarningConfig
    from shakeguard.core.stats import ServiceStats
    from shakeguard.notify.base import Notifier
    from shakeguard.storage.base import QuakeStore

log = structlog.get_logger()

# Users closer than this are the reporter or already inside the shaking area.
MIN_WARNING_DISTANCE_KM = 1.0
URGENT_ARRIVAL_SECONDS = 10.0
MAX_RECENT_FANOUTS = 10

WARNING_TYPE = "earthquake_warning"


def calculate_warnings(
    epicenter_lat: float,
    epicenter_lon: float,
    locations: Iterable[UserLocationSample],
    wave_speed_km_s: float = DEFAULT_WAVE_SPEED_KM_S,
    min_distance_km: float = MIN_WARNING_DISTANCE_KM,
    urgent_threshold_s: float = URGENT_ARRIVAL_SECONDS,
) -> list[WarningCalculation]:
    """One warning per candidate location, soonest arrival first.

    Candidates within ``min_distance_km`` of the epicenter are skipped.
    A warning is urgent when the arrival is strictly under
    ``urgent_threshold_s``.
    """
    warnings: list[WarningCalculation] = []
    for loc in locations:
        distance = haversine_km(epicenter_lat, epicenter_lon, loc.latitude, loc.longitude)
        if distance < min_distance_km:
            continue
        arrival = arrival_time_seconds(distance, wave_speed_km_s)
        warnings.append(
            WarningCalculation(
                user_id=loc.user_id,
                distance_km=distance,
                arrival_time_seconds=arrival,
                is_urgent=arrival < urgent_threshold_s,
                user_location=(loc.latitude, loc.longitude),
            )
        )
    warnings.sort(key=lambda w: w.arrival_time_seconds)
    return warnings


def build_notification(warning: WarningCalculation, report: EarthquakeReport) -> Notification:
    """Push content for one warning. Urgent warnings tell the user to take cover."""
    label = intensity_description(report.intensity)
    distance = f"{warning.distance_km:.1f}km"
    arrival = format_arrival_time(warning.arrival_time_seconds)

    if warning.is_urgent:
        title = "URGENT EARTHQUAKE ALERT"
        body = (f"{label} earthquake {distance} away. TAKE COVER NOW! "
                f"Estimated arrival: {arrival}")
        priority = NotificationPriority.MAX
    else:
        title = "Earthquake Warning"
        body = (f"{label} earthquake reported {distance} away. "
                f"Estimated arrival in {arrival}. Prepare for shaking.")
        priority = NotificationPriority.HIGH

    return Notification(
        user_id=warning.user_id,
        title=title,
        body=body,
        priority=priority,
        payload={
            "type": WARNING_TYPE,
            "earthquake_id": report.id,
            "distance_km": warning.distance_km,
            "arrival_time_seconds": warning.arrival_time_seconds,
            "is_urgent": warning.is_urgent,
            "epicenter": {"latitude": report.latitude, "longitude": report.longitude},
        },
    )


@dataclass(frozen=True)
class FanoutSummary:
    earthquake_id: str
    total: int
    sent: int
    urgent: int
    average_distance_km: float
    average_arrival_seconds: float
    processed_at_ms: int

    def to_dict(self) -> dict:
        return asdict(self)


class WarningService:
    """Computes and dispatches warnings for every new report."""

    def __init__(
        self,
        store: QuakeStore,
        notifier: Notifier,
        config: WarningConfig,
        stats: ServiceStats | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._config = config
        self._stats = stats
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()
        self.recent: deque[FanoutSummary] = deque(maxlen=MAX_RECENT_FANOUTS)

    async def calculate_warnings_for_users(
        self, epicenter_lat: float, epicenter_lon: float, intensity: float
    ) -> list[WarningCalculation]:
        """Warnings for every user seen within the lookback window.

        A directory lookup failure yields no warnings.
        """
        now_ms = int(self._clock() * 1000)
        try:
            locations = await self._store.recent_locations(self._config.lookback_hours, now_ms)
        except Exception:
            log.error("recent_locations_failed", exc_info=True)
            return []
        return calculate_warnings(
            epicenter_lat,
            epicenter_lon,
            locations,
            wave_speed_km_s=self._config.wave_speed_km_s,
            min_distance_km=self._config.min_distance_km,
            urgent_threshold_s=self._config.urgent_threshold_s,
        )

    async def _send(self, warning: WarningCalculation, report: EarthquakeReport) -> bool:
        try:
            return await self._notifier.send(build_notification(warning, report))
        except Exception:
            log.error("warning_send_failed", user=warning.user_id, exc_info=True)
            return False

    async def process_earthquake_warning(self, report: EarthquakeReport) -> int:
        """Notify every eligible user about ``report``. Returns the success count.

        All sends are issued together; one failure does not affect the others
        and nothing is retried.
        """
        log.info("warning_fanout_started", report_id=report.id,
                 lat=report.latitude, lon=report.longitude,
                 intensity=report.intensity)
        warnings = await self.calculate_warnings_for_users(
            report.latitude, report.longitude, report.intensity
        )
        if not warnings:
            log.info("warning_fanout_no_recipients", report_id=report.id)
            return 0

        results = await asyncio.gather(*(self._send(w, report) for w in warnings))
        sent = sum(1 for ok in results if ok)

        summary = FanoutSummary(
            earthquake_id=report.id,
            total=len(warnings),
            sent=sent,
            urgent=sum(1 for w in warnings if w.is_urgent),
            average_distance_km=sum(w.distance_km for w in warnings) / len(warnings),
            average_arrival_seconds=sum(w.arrival_time_seconds for w in warnings) / len(warnings),
            processed_at_ms=int(self._clock() * 1000),
        )
        self.recent.appendleft(summary)
        if self._stats:
            self._stats.record_fanout(sent=sent, failed=len(warnings) - sent)

        log.info("warning_fanout_completed", report_id=report.id,
                 sent=sent, total=summary.total, urgent=summary.urgent,
                 average_distance_km=round(summary.average_distance_km, 1),
                 average_arrival=format_arrival_time(summary.average_arrival_seconds))
        return sent

    # -------------------------------------------------------------------------
    # Change-feed trigger
    # -------------------------------------------------------------------------

    async def on_report_inserted(self, report: EarthquakeReport) -> None:
        """Feed callback: schedule the fanout after a short settle delay."""
        log.info("new_report_detected", report_id=report.id)
        self._spawn(self._delayed_fanout(report))

    async def _delayed_fanout(self, report: EarthquakeReport) -> None:
        # Let the insert settle before reading dependent rows.
        await asyncio.sleep(self._config.settle_delay_s)
        try:
            await self.process_earthquake_warning(report)
        except Exception:
            log.error("warning_fanout_failed", report_id=report.id, exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled fanout to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stats(self) -> dict:
        """Aggregate over the recent fanouts."""
        recent = list(self.recent)
        total = sum(s.total for s in recent)
        return {
            "fanouts": len(recent),
            "total_warnings": total,
            "urgent_warnings": sum(s.urgent for s in recent),
            "average_distance_km": (
                sum(s.average_distance_km * s.total for s in recent) / total if total else 0.0
            ),
        }
