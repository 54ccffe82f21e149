"""Earthquake event detector — streaming threshold state machine.

Consumes one accelerometer/gyroscope pair per sampling tick and moves
between two phases:

    IDLE ──(intensity > T, window mean > 0.8·T, cooldown elapsed)──▶ IN_EVENT
    IN_EVENT ──(intensity <= T)──▶ IDLE

where ``T = base_threshold * sensitivity``. Leaving IN_EVENT finalizes an
EarthquakeEvent only if the excursion lasted at least
``min_event_duration_s``; shorter excursions are dropped without a trace.

Ticks are applied one at a time under a lock, in arrival order. Location
capture, defense activation and database writes run as background tasks so
a slow collaborator never holds up the next tick. Their results are applied
only if the detector is still running and still in the same event.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from shakeguard.core.intensity import combined_intensity, magnitude
from shakeguard.core.models import (
    DetectionSignals,
    EarthquakeEvent,
    EarthquakeReport,
    SensorSample,
)

if TYPE_CHECKING:
    from shakeguard.config import DetectionConfig
    from shakeguard.core.history import EventHistory
    from shakeguard.core.location import LocationService
    from shakeguard.core.stats import ServiceStats
    from shakeguard.storage.base import QuakeStore

log = structlog.get_logger()

MIN_SENSITIVITY = 0.5
MAX_SENSITIVITY = 2.0

# Reported intensity scale accepted by the reports table.
REPORT_MIN_INTENSITY = 1.0
REPORT_MAX_INTENSITY = 10.0


class Phase(str, Enum):
    IDLE = "idle"
    IN_EVENT = "in_event"


@dataclass
class DetectorState:
    """All mutable detector state. Only EventDetector writes to it."""
    window: deque[float]
    event_buffer: deque[float]
    phase: Phase = Phase.IDLE
    current_intensity: float = 0.0
    last_tick_ms: int | None = None
    last_detection_ms: int | None = None
    detected_until_ms: int = 0
    # Event-scoped
    event_seq: int = 0
    event_start_ms: int = 0
    peak_acceleration: float = 0.0
    event_location: tuple[float, float] | None = None
    defense_attempted: bool = False
    defense_activated: bool = False
    last_event: EarthquakeEvent | None = field(default=None)

    def reset_event(self) -> None:
        self.phase = Phase.IDLE
        self.event_buffer.clear()
        self.peak_acceleration = 0.0
        self.event_location = None
        self.defense_attempted = False
        self.defense_activated = False


class EventDetector:
    """Turns a stream of sensor samples into discrete earthquake events."""

    def __init__(
        self,
        config: DetectionConfig,
        history: EventHistory,
        store: QuakeStore | None = None,
        location: LocationService | None = None,
        activate_defense: Callable[[], Awaitable[bool]] | None = None,
        stats: ServiceStats | None = None,
        user_id: str = "anonymous-user",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._history = history
        self._store = store
        self._location = location
        self._activate_defense = activate_defense
        self._stats = stats
        self._user_id = user_id
        self._clock = clock
        self._sensitivity = config.sensitivity
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._alive = True
        self.state = DetectorState(
            window=deque(maxlen=config.window_size),
            event_buffer=deque(maxlen=config.event_buffer_size),
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def sensitivity(self) -> float:
        return self._sensitivity

    @sensitivity.setter
    def sensitivity(self, value: float) -> None:
        self._sensitivity = min(MAX_SENSITIVITY, max(MIN_SENSITIVITY, value))

    @property
    def threshold(self) -> float:
        return self._config.base_threshold * self._sensitivity

    # -------------------------------------------------------------------------
    # Tick processing
    # -------------------------------------------------------------------------

    async def process(
        self,
        accel: SensorSample,
        gyro: SensorSample,
        timestamp_ms: int | None = None,
    ) -> DetectionSignals:
        """Apply one sampling tick and return the live signals after it.

        A tick older than the previous one is dropped.
        """
        async with self._lock:
            now = timestamp_ms if timestamp_ms is not None else int(self._clock() * 1000)
            if not self._alive:
                return self.signals(now)
            last = self.state.last_tick_ms
            if last is not None and now < last:
                log.warning("sample_out_of_order", timestamp_ms=now, last_tick_ms=last)
                if self._stats:
                    self._stats.record_sample_dropped()
                return self.signals(now)
            self.state.last_tick_ms = now
            self._tick(accel, gyro, now)
            return self.signals(now)

    def _tick(self, accel: SensorSample, gyro: SensorSample, now: int) -> None:
        s = self.state
        accel_mag = magnitude(accel)
        intensity = combined_intensity(
            accel, gyro, gravity=self._config.gravity, gyro_gain=self._config.gyro_gain
        )
        s.current_intensity = intensity

        s.window.append(intensity)
        if s.phase is Phase.IN_EVENT:
            s.event_buffer.append(intensity)

        threshold = self.threshold
        above = intensity > threshold
        average = sum(s.window) / len(s.window)
        cooled_down = (
            s.last_detection_ms is None
            or now - s.last_detection_ms > self._config.cooldown_ms
        )

        if s.phase is Phase.IDLE:
            if above and average > threshold * 0.8 and cooled_down:
                self._start_event(now, intensity, accel_mag, threshold)
        else:
            self._maybe_activate_defense(intensity)
            if not above:
                self._finish_event(now, intensity)

        if s.phase is Phase.IN_EVENT and accel_mag > s.peak_acceleration:
            s.peak_acceleration = accel_mag

    def _start_event(self, now: int, intensity: float, accel_mag: float,
                     threshold: float) -> None:
        s = self.state
        s.reset_event()
        s.phase = Phase.IN_EVENT
        s.event_seq += 1
        s.event_start_ms = now
        s.peak_acceleration = accel_mag
        s.event_buffer.append(intensity)
        s.last_detection_ms = now
        s.detected_until_ms = now + int(self._config.detected_flag_seconds * 1000)

        log.info("earthquake_event_started", intensity=round(intensity, 3),
                 threshold=round(threshold, 3), seq=s.event_seq)
        if self._stats:
            self._stats.record_event_started()

        if self._location is not None:
            self._spawn(self._capture_location(s.event_seq))
        self._maybe_activate_defense(intensity)

    def _finish_event(self, now: int, intensity: float) -> None:
        s = self.state
        duration = (now - s.event_start_ms) / 1000

        if duration >= self._config.min_event_duration_s:
            buffer = list(s.event_buffer)
            average = sum(buffer) / len(buffer) if buffer else intensity
            location = s.event_location or self._fallback_location()
            event = EarthquakeEvent(
                start_time_ms=s.event_start_ms,
                duration_seconds=duration,
                average_intensity=average,
                peak_acceleration=s.peak_acceleration,
                latitude=location[0] if location else None,
                longitude=location[1] if location else None,
                user_id=self._user_id,
            )
            log.info("earthquake_event_completed", duration_s=round(duration, 1),
                     average_intensity=round(average, 3),
                     peak_acceleration=round(s.peak_acceleration, 3),
                     located=event.has_location,
                     defense_activated=s.defense_activated)
            s.last_event = event
            self._history.add(event)
            if self._store is not None:
                self._spawn(self._persist(event, now))
            if self._stats:
                self._stats.record_event_finished(recorded=True)
        else:
            log.info("earthquake_event_too_short", duration_s=round(duration, 1))
            if self._stats:
                self._stats.record_event_finished(recorded=False)

        s.reset_event()

    def _fallback_location(self) -> tuple[float, float] | None:
        if self._location is None or self._location.last_known is None:
            return None
        fix = self._location.last_known
        return fix.latitude, fix.longitude

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, seq: int) -> bool:
        s = self.state
        return self._alive and s.phase is Phase.IN_EVENT and s.event_seq == seq

    async def _capture_location(self, seq: int) -> None:
        fix = None
        try:
            fix = await self._location.get_current_location(high_accuracy=True)
        except Exception:
            log.error("event_location_capture_failed", exc_info=True)
        if fix is None:
            fix = self._location.last_known
        if fix is None:
            log.warning("event_location_unavailable", seq=seq)
            return
        if not self._is_current(seq):
            log.debug("event_location_late", seq=seq)
            return
        self.state.event_location = (fix.latitude, fix.longitude)
        log.info("event_location_captured", seq=seq,
                 lat=round(fix.latitude, 5), lon=round(fix.longitude, 5))

    def _maybe_activate_defense(self, intensity: float) -> None:
        s = self.state
        if (
            s.defense_attempted
            or self._activate_defense is None
            or intensity <= self._config.defense_threshold
        ):
            return
        s.defense_attempted = True
        log.warning("defense_auto_activation", intensity=round(intensity, 3))
        self._spawn(self._run_defense_activation(s.event_seq))

    async def _run_defense_activation(self, seq: int) -> None:
        try:
            activated = await self._activate_defense()
        except Exception:
            log.error("defense_auto_activation_failed", exc_info=True)
            return
        if not activated:
            log.warning("defense_auto_activation_rejected", seq=seq)
            return
        if self._is_current(seq):
            self.state.defense_activated = True

    async def _persist(self, event: EarthquakeEvent, now: int) -> None:
        try:
            await self._store.insert_event(event)
        except Exception:
            log.error("event_write_failed", start_time_ms=event.start_time_ms,
                      exc_info=True)
            if self._stats:
                self._stats.record_event_write_failed()
            return

        if not (self._config.auto_report and event.has_location):
            return
        report = EarthquakeReport(
            id=str(uuid.uuid4()),
            user_id=self._user_id,
            latitude=event.latitude,
            longitude=event.longitude,
            intensity=min(REPORT_MAX_INTENSITY,
                          max(REPORT_MIN_INTENSITY, event.average_intensity)),
            timestamp_ms=event.start_time_ms,
            description="Automatic detection",
            created_at_ms=now,
        )
        try:
            await self._store.insert_report(report)
        except Exception:
            log.error("auto_report_write_failed", report_id=report.id, exc_info=True)

    async def drain(self) -> None:
        """Wait for every background task spawned so far (and their follow-ups)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stop(self) -> None:
        """Stop applying ticks and late results."""
        self._alive = False

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def signals(self, now_ms: int | None = None) -> DetectionSignals:
        s = self.state
        now = now_ms if now_ms is not None else int(self._clock() * 1000)
        return DetectionSignals(
            is_detected=now < s.detected_until_ms,
            current_intensity=s.current_intensity,
            is_in_event=s.phase is Phase.IN_EVENT,
            current_event_location=s.event_location,
            last_detection_ms=s.last_detection_ms,
            defense_activated=s.defense_activated,
        )
