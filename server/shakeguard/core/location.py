"""Location service — bounded, failure-tolerant access to the device position.

Wraps a PositionSource with timeouts, a high-accuracy -> balanced fallback,
a last-known fix, and a staleness flag. Every failure is converted to
``None`` / ``False`` here; callers never see positioning exceptions.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from shakeguard.core.models import LocationFix, UserLocationSample

if TYPE_CHECKING:
    from shakeguard.config import LocationConfig
    from shakeguard.device.base import PositionSource
    from shakeguard.storage.base import QuakeStore

log = structlog.get_logger()

# Accuracy grades, upper bound in metres.
_QUALITY_GRADES = (
    (5.0, "excellent", "Excellent accuracy"),
    (15.0, "good", "Good accuracy"),
    (50.0, "fair", "Fair accuracy"),
)


class LocationService:

    def __init__(
        self,
        source: PositionSource,
        config: LocationConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._config = config
        self._clock = clock
        self.last_known: LocationFix | None = None
        self.last_update: float | None = None
        self.is_stale = False
        self.error_msg: str | None = None

    @property
    def permission_granted(self) -> bool:
        return self._source.permission_granted

    def record_fix(self, fix: LocationFix) -> None:
        """Accept a fix obtained outside ``get_current_location``."""
        self.last_known = fix
        self.last_update = self._clock()
        self.is_stale = False

    async def _read(self, high_accuracy: bool, timeout_s: float) -> LocationFix | None:
        try:
            return await asyncio.wait_for(
                self._source.read_position(high_accuracy), timeout=timeout_s
            )
        except asyncio.TimeoutError:
            log.warning("location_timeout", high_accuracy=high_accuracy,
                        timeout_s=timeout_s)
        except Exception:
            log.warning("location_read_failed", high_accuracy=high_accuracy,
                        exc_info=True)
        return None

    async def get_current_location(self, high_accuracy: bool = False) -> LocationFix | None:
        """Fetch a fresh fix, or ``None`` when positioning is unavailable.

        A high-accuracy request that fails or times out falls back to a
        faster balanced-accuracy read.
        """
        if not self.permission_granted:
            self.error_msg = "Location permission not granted"
            return None

        self.error_msg = None
        if high_accuracy:
            fix = await self._read(True, self._config.high_accuracy_timeout_s)
            if fix is None:
                fix = await self._read(False, self._config.fallback_timeout_s)
        else:
            fix = await self._read(False, self._config.fallback_timeout_s)

        if fix is None:
            self.error_msg = "Unable to get current location"
            return None

        self.record_fix(fix)
        return fix

    async def report_emergency_location(self, store: QuakeStore, user_id: str) -> bool:
        """Write the current position to the location log tagged as emergency."""
        fix = await self.get_current_location(high_accuracy=True)
        if fix is None:
            log.warning("emergency_location_unavailable")
            return False
        sample = UserLocationSample(
            user_id=user_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp_ms=int(self._clock() * 1000),
            emergency=True,
        )
        try:
            await store.insert_location(sample)
        except Exception:
            log.error("emergency_location_write_failed", exc_info=True)
            return False
        log.info("emergency_location_sent", lat=round(fix.latitude, 5),
                 lon=round(fix.longitude, 5))
        return True

    def check_stale(self) -> bool:
        if self.last_update is not None:
            self.is_stale = self._clock() - self.last_update > self._config.stale_after_s
        return self.is_stale

    async def run_stale_watcher(self) -> None:
        """Re-evaluate staleness periodically. Runs as a background task."""
        while True:
            await asyncio.sleep(self._config.stale_check_interval_s)
            if self.check_stale():
                log.debug("location_stale", last_update=self.last_update)

    def quality(self) -> dict:
        fix = self.last_known
        if fix is None or not fix.accuracy_m:
            return {"quality": "unknown", "description": "Location unavailable"}
        for limit, grade, description in _QUALITY_GRADES:
            if fix.accuracy_m <= limit:
                return {"quality": grade, "description": description}
        return {"quality": "poor", "description": "Poor accuracy"}

    def status(self) -> dict:
        fix = self.last_known
        return {
            "permission_granted": self.permission_granted,
            "last_known": (
                {"latitude": fix.latitude, "longitude": fix.longitude,
                 "accuracy_m": fix.accuracy_m}
                if fix else None
            ),
            "last_update": self.last_update,
            "is_stale": self.is_stale,
            "error": self.error_msg,
            **self.quality(),
        }
