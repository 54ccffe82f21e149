"""Combined shaking intensity from one accelerometer/gyroscope sample pair.

The metric is unitless: deviation of the acceleration magnitude from resting
gravity plus an amplified rotation rate. It assumes the phone rests roughly
still, so any departure from 1 g is treated as shaking.
"""

from __future__ import annotations

import math

from shakeguard.core.models import SensorSample

GRAVITY = 9.81
GYRO_GAIN = 15.0


def _finite(value: float) -> float:
    """Non-finite readings (sensor glitches) count as zero."""
    return value if math.isfinite(value) else 0.0


def magnitude(sample: SensorSample) -> float:
    return math.hypot(_finite(sample.x), _finite(sample.y), _finite(sample.z))


def combined_intensity(
    accel: SensorSample,
    gyro: SensorSample,
    gravity: float = GRAVITY,
    gyro_gain: float = GYRO_GAIN,
) -> float:
    """``|magnitude(accel) - g| + gyro_gain * magnitude(gyro)``."""
    accel_deviation = abs(magnitude(accel) - gravity)
    gyro_contribution = magnitude(gyro) * gyro_gain
    return accel_deviation + gyro_contribution
