"""Sensor hub — latest readings per axis stream and the sampling loop.

Readings arrive whenever the device pushes them. The sampling loop reads the
latest pair at the configured update interval and feeds the detector. An
unavailable stream contributes a zero vector instead of stopping detection.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from shakeguard.core.intensity import magnitude
from shakeguard.core.models import ZERO_SAMPLE, SensorSample

if TYPE_CHECKING:
    from shakeguard.core.detector import EventDetector

log = structlog.get_logger()

MIN_UPDATE_INTERVAL_MS = 1000
MAX_UPDATE_INTERVAL_MS = 5000
MAX_WAVEFORM_POINTS = 50

ACCELEROMETER = "accelerometer"
GYROSCOPE = "gyroscope"

SampleListener = Callable[[SensorSample, SensorSample], Awaitable[None]]


class SensorHub:

    def __init__(self, interval_ms: int = 2000,
                 clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._interval_ms = interval_ms
        self._latest: dict[str, SensorSample] = {}
        self.available: dict[str, bool] = {ACCELEROMETER: False, GYROSCOPE: False}
        self.waveform: deque[tuple[int, float]] = deque(maxlen=MAX_WAVEFORM_POINTS)
        self._listeners: list[SampleListener] = []

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: int) -> None:
        self._interval_ms = min(MAX_UPDATE_INTERVAL_MS, max(MIN_UPDATE_INTERVAL_MS, int(value)))

    def set_available(self, stream: str, available: bool) -> None:
        self.available[stream] = available
        if not available:
            self._latest.pop(stream, None)
            log.warning("sensor_unavailable", stream=stream)

    def push(self, stream: str, sample: SensorSample) -> None:
        """Record the newest reading of one stream."""
        self._latest[stream] = sample
        self.available[stream] = True
        if stream == ACCELEROMETER:
            self.waveform.append((int(self._clock() * 1000), magnitude(sample)))

    def current(self) -> tuple[SensorSample, SensorSample]:
        """Latest (accel, gyro) pair; a missing stream reads as zero."""
        return (
            self._latest.get(ACCELEROMETER, ZERO_SAMPLE),
            self._latest.get(GYROSCOPE, ZERO_SAMPLE),
        )

    def subscribe(self, listener: SampleListener) -> Callable[[], None]:
        """Register a per-tick listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def tick(self) -> None:
        accel, gyro = self.current()
        for listener in list(self._listeners):
            try:
                await listener(accel, gyro)
            except Exception:
                log.error("sample_listener_failed", exc_info=True)

    async def run(self) -> None:
        """Tick forever at the update interval. Runs as a background task."""
        log.info("sampling_started", interval_ms=self._interval_ms)
        while True:
            await asyncio.sleep(self._interval_ms / 1000)
            if any(self.available.values()):
                await self.tick()

    def status(self) -> dict:
        return {
            "interval_ms": self._interval_ms,
            "available": dict(self.available),
            "waveform": [{"timestamp_ms": ts, "value": round(v, 4)} for ts, v in self.waveform],
        }


def detector_listener(detector: EventDetector) -> SampleListener:
    """Adapt an EventDetector to a SensorHub listener."""

    async def listener(accel: SensorSample, gyro: SensorSample) -> None:
        await detector.process(accel, gyro)

    return listener
