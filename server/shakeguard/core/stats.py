"""Service statistics and active-device tracking.

Tracks in-memory counters and a sliding window of devices that recently
streamed sensor samples. No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class ServiceStats:
    """Thread-safe pipeline counters with active-device tracking.

    A device is "active" if it sent samples or a location fix within
    ``active_window_seconds`` (default 120s).
    """

    def __init__(self, active_window_seconds: float = 120.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Detection
        self.samples_received: int = 0
        self.samples_dropped: int = 0
        self.events_detected: int = 0
        self.events_recorded: int = 0
        self.events_discarded: int = 0
        self.event_writes_failed: int = 0

        # Warning fanout
        self.reports_received: int = 0
        self.reports_rejected: int = 0
        self.warnings_sent: int = 0
        self.warnings_failed: int = 0
        self.feed_depth: int = 0

        # Device tracking: device_id → last_seen (time.monotonic())
        self._devices: dict[str, float] = {}

    def _touch(self, device_id: str) -> None:
        """Caller holds lock."""
        if device_id:
            self._devices[device_id] = time.monotonic()

    def record_sample(self, device_id: str = "") -> None:
        with self._lock:
            self.samples_received += 1
            self._touch(device_id)

    def record_sample_dropped(self) -> None:
        with self._lock:
            self.samples_dropped += 1

    def record_location(self, device_id: str) -> None:
        with self._lock:
            self._touch(device_id)

    def record_event_started(self) -> None:
        with self._lock:
            self.events_detected += 1

    def record_event_finished(self, recorded: bool) -> None:
        with self._lock:
            if recorded:
                self.events_recorded += 1
            else:
                self.events_discarded += 1

    def record_event_write_failed(self) -> None:
        with self._lock:
            self.event_writes_failed += 1

    def record_report(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self.reports_received += 1
            else:
                self.reports_rejected += 1

    def record_fanout(self, sent: int, failed: int) -> None:
        with self._lock:
            self.warnings_sent += sent
            self.warnings_failed += failed

    def update_feed_depth(self, depth: int) -> None:
        with self._lock:
            self.feed_depth = depth

    def _prune_stale_devices(self, now: float) -> None:
        """Remove devices not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [did for did, seen in self._devices.items() if seen < cutoff]
        for did in stale:
            del self._devices[did]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_devices(now_mono)
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "samples_received": self.samples_received,
                "samples_dropped": self.samples_dropped,
                "events_detected": self.events_detected,
                "events_recorded": self.events_recorded,
                "events_discarded": self.events_discarded,
                "event_writes_failed": self.event_writes_failed,
                "reports_received": self.reports_received,
                "reports_rejected": self.reports_rejected,
                "warnings_sent": self.warnings_sent,
                "warnings_failed": self.warnings_failed,
                "feed_depth": self.feed_depth,
                "active_devices": {
                    "total": len(self._devices),
                    "window_seconds": self._active_window,
                },
            }
