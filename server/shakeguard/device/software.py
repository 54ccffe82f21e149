"""Software-backed device adapters.

The service does not own a screen or a GPS receiver; the phone pushes its
fixes over the API and reads back the brightness level it should apply.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shakeguard.device.base import LocationUnavailable

if TYPE_CHECKING:
    from shakeguard.core.models import LocationFix


class SoftwareBrightness:
    """BrightnessControl holding the level the device should display."""

    def __init__(self, level: float = 0.8) -> None:
        self._level = level

    async def get(self) -> float:
        return self._level

    async def set(self, level: float) -> None:
        self._level = min(1.0, max(0.0, level))


class PushedPositionSource:
    """PositionSource fed by fixes the device reports.

    ``read_position`` returns the newest pushed fix. A fix coarser than
    ``high_accuracy_max_m`` does not satisfy a high-accuracy read.
    """

    def __init__(self, high_accuracy_max_m: float = 50.0) -> None:
        self.permission_granted = True
        self._high_accuracy_max_m = high_accuracy_max_m
        self._latest: LocationFix | None = None

    def push(self, fix: LocationFix) -> None:
        self._latest = fix

    async def read_position(self, high_accuracy: bool) -> LocationFix:
        fix = self._latest
        if fix is None:
            raise LocationUnavailable("no fix reported yet")
        if (high_accuracy and fix.accuracy_m is not None
                and fix.accuracy_m > self._high_accuracy_max_m):
            raise LocationUnavailable(f"fix accuracy {fix.accuracy_m} m too coarse")
        return fix
