"""Device capability interfaces (ports): screen brightness and positioning."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from shakeguard.core.models import LocationFix


class LocationUnavailable(Exception):
    """The position source cannot produce a fix right now."""


class BrightnessControl(Protocol):
    """Port: screen brightness in [0, 1]."""

    async def get(self) -> float: ...

    async def set(self, level: float) -> None: ...


class PositionSource(Protocol):
    """Port: raw positioning hardware.

    ``read_position`` may block for a long time or raise
    ``LocationUnavailable``; callers apply their own timeouts.
    """

    permission_granted: bool

    async def read_position(self, high_accuracy: bool) -> LocationFix: ...
