"""Emergency defense mode.

Three modes:

    STANDBY ──activate──▶ ACTIVE ──deactivate──▶ STANDBY
    any ──false alarm──▶ FALSE_ALARM_LOCKED ──expiry / clear──▶ STANDBY

Activation applies three independent measures (dim the screen, enable power
optimization, transmit the emergency location) and succeeds if at least one
of them does. The false-alarm lock blocks both manual and automatic
activation until it expires.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from shakeguard.core.models import DefenseResult, DefenseState, DefenseStatus

if TYPE_CHECKING:
    from shakeguard.config import DefenseConfig
    from shakeguard.core.location import LocationService
    from shakeguard.device.base import BrightnessControl
    from shakeguard.storage.base import QuakeStore

log = structlog.get_logger()

MEASURE_BRIGHTNESS = "brightness_reduced"
MEASURE_POWER = "power_optimization"
MEASURE_LOCATION = "location_sent"

_MEASURE_LABELS = {
    MEASURE_BRIGHTNESS: "Screen brightness reduced",
    MEASURE_POWER: "Power optimization enabled",
    MEASURE_LOCATION: "Emergency location transmitted",
}


class DefenseMode(str, Enum):
    STANDBY = "standby"
    ACTIVE = "active"
    FALSE_ALARM_LOCKED = "false_alarm_locked"


class DefenseController:
    """Owns DefenseState and the screen brightness.

    Every brightness change goes through ``self._brightness_lock``; mode
    transitions (activate, deactivate, false-alarm lock) hold ``self._mode_lock``
    from start to finish.
    """

    def __init__(
        self,
        brightness: BrightnessControl,
        location: LocationService | None,
        store: QuakeStore | None,
        config: DefenseConfig,
        user_id: str = "anonymous-user",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._brightness = brightness
        self._location = location
        self._store = store
        self._config = config
        self._user_id = user_id
        self._clock = clock
        self._brightness_lock = asyncio.Lock()
        self._mode_lock = asyncio.Lock()
        self.state = DefenseState()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Recover from a dimmed screen left behind by a previous run."""
        if self.state.is_initialized:
            return
        try:
            async with self._brightness_lock:
                level = await self._brightness.get()
                if level < self._config.startup_low_brightness:
                    await self._brightness.set(self._config.default_brightness)
                    log.info("startup_brightness_restored", previous=level,
                             level=self._config.default_brightness)
        except Exception:
            log.warning("brightness_init_failed", exc_info=True)
        self.state.is_initialized = True

    async def run_lock_watcher(self) -> None:
        """Re-check the false-alarm lock periodically. Runs as a background task."""
        while True:
            await asyncio.sleep(self._config.lock_check_interval_s)
            self.check_false_alarm()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def check_false_alarm(self) -> bool:
        """Release an expired lock. Returns True while the lock is still held."""
        s = self.state
        until = s.false_alarm_disabled_until
        if s.false_alarm_disabled and until is not None and self._clock() >= until:
            s.false_alarm_disabled = False
            s.false_alarm_disabled_until = None
            log.info("false_alarm_lock_expired")
        return s.false_alarm_disabled

    def remaining_minutes(self) -> int:
        until = self.state.false_alarm_disabled_until
        if until is None:
            return 0
        return max(0, math.ceil((until - self._clock()) / 60))

    @property
    def mode(self) -> DefenseMode:
        if self.check_false_alarm():
            return DefenseMode.FALSE_ALARM_LOCKED
        if self.state.is_active:
            return DefenseMode.ACTIVE
        return DefenseMode.STANDBY

    def status(self) -> DefenseStatus:
        s = self.state
        mode = self.mode
        return DefenseStatus(
            mode=mode.value,
            is_active=s.is_active,
            brightness_reduced=s.brightness_reduced and not s.brightness_restored,
            brightness_restored=s.brightness_restored,
            battery_saving_enabled=s.battery_saving_enabled,
            location_sent=s.location_sent,
            false_alarm_disabled=s.false_alarm_disabled,
            false_alarm_minutes_remaining=self.remaining_minutes(),
            is_initialized=s.is_initialized,
        )

    # -------------------------------------------------------------------------
    # Activation
    # -------------------------------------------------------------------------

    async def activate(self, trigger: str = "manual") -> DefenseResult:
        """Enter ACTIVE mode, applying every emergency measure it can."""
        if not self.state.is_initialized:
            await self.initialize()

        async with self._mode_lock:
            return await self._activate(trigger)

    async def _activate(self, trigger: str) -> DefenseResult:
        if self.check_false_alarm():
            minutes = self.remaining_minutes()
            log.info("defense_activation_blocked", trigger=trigger,
                     minutes_remaining=minutes)
            return DefenseResult(
                success=False,
                title="Emergency Defense Disabled",
                message=("Emergency Defense Mode is temporarily disabled due to "
                         f"false alarm protection. Time remaining: {minutes} minutes"),
                minutes_remaining=minutes,
            )

        if self.state.is_active:
            return DefenseResult(
                success=True,
                title="Emergency Defense Mode",
                message="Emergency Defense Mode is already active.",
                measures=self._current_measures(),
            )

        log.warning("defense_activating", trigger=trigger)
        original, reduced = await self._dim_screen()
        measures = {
            MEASURE_BRIGHTNESS: original is not None,
            MEASURE_POWER: self._enable_power_optimization(),
            MEASURE_LOCATION: await self._send_location(),
        }

        s = self.state
        s.is_active = True
        s.original_brightness = original
        s.brightness_reduced = reduced
        s.battery_saving_enabled = measures[MEASURE_POWER]
        s.location_sent = measures[MEASURE_LOCATION]
        s.brightness_restored = False

        succeeded = [name for name, ok in measures.items() if ok]
        log.info("defense_activated", trigger=trigger, succeeded=len(succeeded),
                 measures=measures)
        lines = "".join(f"\n- {_MEASURE_LABELS[name]}" for name in succeeded)
        return DefenseResult(
            success=bool(succeeded),
            title="Emergency Defense Mode",
            message=(f"Emergency Defense Mode activated! "
                     f"{len(succeeded)}/{len(measures)} emergency measures successful:"
                     f"{lines}"),
            measures=measures,
        )

    async def activate_auto(self) -> bool:
        """Activation requested by the detector."""
        result = await self.activate(trigger="detector")
        return result.success

    def _current_measures(self) -> dict[str, bool]:
        s = self.state
        return {
            MEASURE_BRIGHTNESS: s.original_brightness is not None,
            MEASURE_POWER: s.battery_saving_enabled,
            MEASURE_LOCATION: s.location_sent,
        }

    async def _dim_screen(self) -> tuple[float | None, bool]:
        """Return (captured level, whether it was lowered). Level is None on failure."""
        try:
            async with self._brightness_lock:
                current = await self._brightness.get()
                if current <= self._config.brightness_floor:
                    log.info("brightness_already_low", level=current)
                    return current, False
                await self._brightness.set(self._config.reduced_brightness)
            return current, True
        except Exception:
            log.warning("brightness_reduce_failed", exc_info=True)
            return None, False

    def _enable_power_optimization(self) -> bool:
        # The service has no power manager to drive; the flag is advisory for the device.
        return True

    async def _send_location(self) -> bool:
        if self._location is None or self._store is None:
            return False
        try:
            return await self._location.report_emergency_location(self._store, self._user_id)
        except Exception:
            log.error("emergency_location_failed", exc_info=True)
            return False

    # -------------------------------------------------------------------------
    # Deactivation and brightness restore
    # -------------------------------------------------------------------------

    async def _set_brightness(self, level: float) -> bool:
        try:
            async with self._brightness_lock:
                await self._brightness.set(level)
            return True
        except Exception:
            log.warning("brightness_set_failed", level=level, exc_info=True)
            return False

    async def deactivate(self) -> DefenseResult:
        """Return to STANDBY, restoring the captured brightness."""
        async with self._mode_lock:
            return await self._deactivate()

    async def _deactivate(self) -> DefenseResult:
        s = self.state
        target = s.original_brightness or self._config.default_brightness
        await self._set_brightness(target)

        s.is_active = False
        s.original_brightness = None
        s.brightness_reduced = False
        s.battery_saving_enabled = False
        s.location_sent = False
        s.brightness_restored = False
        log.info("defense_deactivated", brightness=target)
        return DefenseResult(
            success=True,
            title="Emergency Defense Deactivated",
            message="Your device settings have been restored to normal.",
        )

    async def restore_brightness(self) -> DefenseResult:
        """Undo the dimming only; the other measures stay active."""
        s = self.state
        if not s.is_active:
            return DefenseResult(
                success=False,
                title="Brightness Error",
                message="Emergency Defense Mode is not active.",
            )
        target = s.original_brightness or self._config.default_brightness
        if not await self._set_brightness(target):
            return DefenseResult(
                success=False,
                title="Brightness Error",
                message="Failed to restore screen brightness. Please try again.",
            )
        s.brightness_restored = True
        log.info("defense_brightness_restored", brightness=target)
        return DefenseResult(
            success=True,
            title="Brightness Restored",
            message=("Screen brightness has been restored to normal while keeping "
                     "other Emergency Defense features active."),
        )

    async def emergency_brightness_restore(self) -> bool:
        """Set a comfortable brightness, whatever the current mode."""
        if not await self._set_brightness(self._config.default_brightness):
            return False
        if self.state.is_active:
            self.state.brightness_restored = True
        log.info("emergency_brightness_restore", brightness=self._config.default_brightness)
        return True

    # -------------------------------------------------------------------------
    # False-alarm lock
    # -------------------------------------------------------------------------

    async def disable_for_false_alarm(self) -> DefenseResult:
        """Deactivate if needed, then block activation for the lock period."""
        async with self._mode_lock:
            if self.state.is_active:
                await self._deactivate()
            minutes = self._config.false_alarm_minutes
            self.state.false_alarm_disabled = True
            self.state.false_alarm_disabled_until = self._clock() + minutes * 60
        log.info("false_alarm_lock_started", minutes=minutes)
        return DefenseResult(
            success=True,
            title="False Alarm Protection Activated",
            message=(f"Emergency Defense Mode has been disabled for {minutes:g} minutes "
                     "due to false alarm. It will re-enable automatically."),
            minutes_remaining=self.remaining_minutes(),
        )

    def clear_false_alarm(self) -> None:
        self.state.false_alarm_disabled = False
        self.state.false_alarm_disabled_until = None
        log.info("false_alarm_lock_cleared")
