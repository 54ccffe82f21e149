"""Health check, monitoring, settings and history endpoints."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shakeguard.api.errors import InvalidPayload, number, read_json, rejected
from shakeguard.core.detector import MAX_SENSITIVITY, MIN_SENSITIVITY
from shakeguard.core.models import Settings
from shakeguard.core.sampler import MAX_UPDATE_INTERVAL_MS, MIN_UPDATE_INTERVAL_MS

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from shakeguard.main import VERSION, get_config, get_feed, get_stats

    config = get_config()
    stats = get_stats()
    stats.update_feed_depth(get_feed().qsize())

    storage_writable = True
    disk_free_gb = -1.0
    if config.storage.backend == "file":
        storage_path = Path(config.storage.base_dir)
        try:
            disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
            disk_free_gb = round(disk.free / (1024 ** 3), 1)
        except OSError:
            storage_writable = False

    snapshot = stats.snapshot()
    result = {
        "status": "ok",
        "version": VERSION,
        "uptime_seconds": snapshot["uptime_seconds"],
        "feed_depth": snapshot["feed_depth"],
        "storage_backend": config.storage.backend,
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Pipeline counters and active device count.

    ``active_devices.total`` counts devices that sent samples or a location
    fix within ``active_devices.window_seconds``.
    """
    from shakeguard.main import get_feed, get_stats

    s = get_stats()
    s.update_feed_depth(get_feed().qsize())
    return s.snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for the phone app.

    The app calls this on startup to get server-controlled parameters.
    """
    from shakeguard.main import get_config

    config = get_config()
    return {
        "user_id": config.device.user_id,
        "sensitivity_range": [MIN_SENSITIVITY, MAX_SENSITIVITY],
        "update_rate_range_ms": [MIN_UPDATE_INTERVAL_MS, MAX_UPDATE_INTERVAL_MS],
        "base_threshold": config.detection.base_threshold,
        "min_event_duration_s": config.detection.min_event_duration_s,
        "defense_threshold": config.detection.defense_threshold,
        "wave_speed_km_s": config.warning.wave_speed_km_s,
        "min_warning_distance_km": config.warning.min_distance_km,
        "urgent_threshold_s": config.warning.urgent_threshold_s,
    }


def _current_settings() -> Settings:
    from shakeguard.main import get_detector, get_hub

    return Settings(sensitivity=get_detector().sensitivity,
                    update_rate_ms=get_hub().interval_ms)


@router.get("/settings")
async def get_settings() -> dict:
    return _current_settings().to_dict()


@router.put("/settings")
async def update_settings(request: Request) -> JSONResponse:
    """Change sensitivity and/or update rate. Values are clamped to their range."""
    from shakeguard.main import get_detector, get_hub

    try:
        body = await read_json(request)
        sensitivity = number(body, "sensitivity") if "sensitivity" in body else None
        update_rate = number(body, "update_rate_ms") if "update_rate_ms" in body else None
    except InvalidPayload as e:
        return rejected(str(e), e.status_code)

    if sensitivity is not None:
        get_detector().sensitivity = sensitivity
    if update_rate is not None:
        get_hub().interval_ms = int(update_rate)
    return JSONResponse(content=_current_settings().to_dict())


@router.post("/settings/reset")
async def reset_settings() -> dict:
    from shakeguard.main import get_config, get_detector, get_hub

    config = get_config()
    get_detector().sensitivity = config.detection.sensitivity
    get_hub().interval_ms = config.detection.update_interval_ms
    return _current_settings().to_dict()


@router.get("/history")
async def get_history() -> dict:
    """Events detected on this device, newest first."""
    from shakeguard.main import get_history

    events = get_history().events()
    return {"events": [e.to_dict() for e in events], "total": len(events)}


@router.delete("/history")
async def clear_history() -> dict:
    from shakeguard.main import get_history

    history = get_history()
    deleted = len(history)
    history.clear()
    return {"deleted": deleted}


@router.delete("/history/{index}")
async def delete_history_entry(index: int) -> JSONResponse:
    from shakeguard.main import get_history

    if not get_history().remove(index):
        return rejected("no history entry at that index", status_code=404)
    return JSONResponse(content={"deleted": 1})
