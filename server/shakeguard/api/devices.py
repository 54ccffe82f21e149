"""Device endpoints: sensor samples, location fixes and live detection state.

The phone streams its latest accelerometer / gyroscope readings here; the
sampling loop picks them up at the configured update interval.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shakeguard.api.errors import (
    InvalidPayload,
    coordinates,
    number,
    read_json,
    rejected,
)
from shakeguard.core.models import LocationFix, SensorSample, UserLocationSample
from shakeguard.core.sampler import ACCELEROMETER, GYROSCOPE

router = APIRouter(prefix="/api/v1")


def _parse_vector(data: object, name: str) -> SensorSample:
    if not isinstance(data, dict):
        raise InvalidPayload(f"{name} must be an object with x, y, z")
    values = []
    for axis in ("x", "y", "z"):
        v = data.get(axis, 0.0)
        # Non-finite readings are accepted; the detector counts them as zero.
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise InvalidPayload(f"{name}.{axis} must be a number")
        values.append(float(v))
    return SensorSample(*values)


@router.post("/samples")
async def receive_samples(request: Request) -> JSONResponse:
    """Receive the newest sensor readings from the phone.

    Body: ``{"device_id": "...", "accelerometer": {x, y, z}, "gyroscope": {x, y, z}}``.
    An omitted stream is marked unavailable and reads as zero.
    """
    from shakeguard.main import get_detector, get_hub, get_stats

    try:
        body = await read_json(request)
        readings = {
            stream: _parse_vector(body[stream], stream)
            for stream in (ACCELEROMETER, GYROSCOPE)
            if body.get(stream) is not None
        }
    except InvalidPayload as e:
        get_stats().record_sample_dropped()
        return rejected(str(e), e.status_code)

    hub = get_hub()
    for stream in (ACCELEROMETER, GYROSCOPE):
        if stream in readings:
            hub.push(stream, readings[stream])
        elif hub.available.get(stream):
            hub.set_available(stream, False)

    get_stats().record_sample(str(body.get("device_id", "")))
    return JSONResponse(content={
        "accepted": True,
        "available": dict(hub.available),
        "detection": get_detector().signals().to_dict(),
    })


@router.post("/location")
async def receive_location(request: Request) -> JSONResponse:
    """Record a location fix in the user directory.

    Fixes from this device's own user also feed the local location service
    used for event capture and emergency reports.
    """
    from shakeguard.main import (
        get_config,
        get_location,
        get_position_source,
        get_stats,
        get_store,
    )

    config = get_config()
    try:
        body = await read_json(request)
        lat, lon = coordinates(body)
        accuracy = body.get("accuracy_m")
        if accuracy is not None and (isinstance(accuracy, bool)
                                     or not isinstance(accuracy, (int, float))
                                     or accuracy < 0):
            raise InvalidPayload("accuracy_m must be a non-negative number")
        timestamp_ms = int(number(body, "timestamp_ms", default=time.time() * 1000))
    except InvalidPayload as e:
        return rejected(str(e), e.status_code)

    user_id = str(body.get("user_id") or config.device.user_id)

    if user_id == config.device.user_id:
        fix = LocationFix(latitude=lat, longitude=lon, accuracy_m=accuracy,
                          timestamp_ms=timestamp_ms)
        get_position_source().push(fix)
        get_location().record_fix(fix)

    await get_store().insert_location(
        UserLocationSample(user_id=user_id, latitude=lat, longitude=lon,
                           timestamp_ms=timestamp_ms,
                           emergency=bool(body.get("emergency", False)))
    )
    get_stats().record_location(user_id)
    return JSONResponse(content={"accepted": True, "user_id": user_id})


@router.get("/detection")
async def get_detection() -> dict:
    """Live detection signals, sensor availability and location status."""
    from shakeguard.main import get_detector, get_hub, get_location

    detector = get_detector()
    return {
        "signals": detector.signals().to_dict(),
        "threshold": round(detector.threshold, 3),
        "sensors": get_hub().status(),
        "location": get_location().status(),
    }
