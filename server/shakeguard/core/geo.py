"""Geographic and seismic-wave helpers. Pure functions, no I/O."""

from __future__ import annotations

import math

# Earth radius in kilometres (for Haversine).
EARTH_RADIUS_KM = 6371.0

# Seismic wave speeds (km/s).
P_WAVE_KM_S = 6.0
S_WAVE_KM_S = 3.5
SURFACE_WAVE_KM_S = 3.0

# S-waves carry most of the damage and arrive later than P-waves, so the
# arrival estimate is based on them.
DEFAULT_WAVE_SPEED_KM_S = S_WAVE_KM_S


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def arrival_time_seconds(
    distance_km: float, wave_speed_km_s: float = DEFAULT_WAVE_SPEED_KM_S
) -> float:
    """Seconds until a wave travelling at ``wave_speed_km_s`` covers the distance."""
    if wave_speed_km_s <= 0:
        raise ValueError(f"wave speed must be positive, got {wave_speed_km_s}")
    return distance_km / wave_speed_km_s


def format_arrival_time(seconds: float) -> str:
    """Human-readable arrival time: '12 seconds', '3 minutes', '1 hour'."""
    if seconds < 60:
        return f"{round(seconds)} seconds"
    if seconds < 3600:
        minutes = round(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = round(seconds / 3600)
    return f"{hours} hour{'s' if hours != 1 else ''}"


def intensity_description(intensity: float) -> str:
    """Label for a 1-10 reported intensity."""
    if intensity <= 2:
        return "Light"
    if intensity <= 4:
        return "Moderate"
    if intensity <= 6:
        return "Strong"
    if intensity <= 8:
        return "Severe"
    return "Extreme"
