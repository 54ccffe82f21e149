"""Community endpoints: manual reports, heatmap, warning fanouts, bulk clear."""

from __future__ import annotations

import time
import uuid

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from shakeguard.api.errors import InvalidPayload, coordinates, number, read_json, rejected
from shakeguard.core.detector import REPORT_MAX_INTENSITY, REPORT_MIN_INTENSITY
from shakeguard.core.heatmap import (
    DEFAULT_TIME_RANGE,
    TIME_RANGES_MS,
    HeatmapPoint,
    build_points,
    build_regions,
    heatmap_stats,
    points_to_geojson,
    region_at,
)
from shakeguard.core.models import EarthquakeReport

router = APIRouter(prefix="/api/v1")

MAX_DESCRIPTION_LENGTH = 500


def _parse_report(body: dict, default_user: str, now_ms: int) -> EarthquakeReport:
    lat, lon = coordinates(body)
    intensity = number(body, "intensity")
    if not REPORT_MIN_INTENSITY <= intensity <= REPORT_MAX_INTENSITY:
        raise InvalidPayload(
            f"intensity must be between {REPORT_MIN_INTENSITY:g} and {REPORT_MAX_INTENSITY:g}"
        )
    description = body.get("description") or ""
    if not isinstance(description, str):
        raise InvalidPayload("description must be a string")
    return EarthquakeReport(
        id=str(uuid.uuid4()),
        user_id=str(body.get("user_id") or default_user),
        latitude=lat,
        longitude=lon,
        intensity=intensity,
        timestamp_ms=int(number(body, "timestamp_ms", default=now_ms)),
        description=description[:MAX_DESCRIPTION_LENGTH],
        created_at_ms=now_ms,
    )


@router.post("/reports")
async def submit_report(request: Request) -> JSONResponse:
    """Submit a manual earthquake report.

    Accepted reports enter the change-feed and trigger a warning fanout.
    """
    from shakeguard.main import get_config, get_stats, get_store

    stats = get_stats()
    try:
        body = await read_json(request)
        report = _parse_report(body, get_config().device.user_id, int(time.time() * 1000))
    except InvalidPayload as e:
        stats.record_report(accepted=False)
        return rejected(str(e), e.status_code)

    await get_store().insert_report(report)
    stats.record_report(accepted=True)
    return JSONResponse(content={"accepted": True, "id": report.id})


@router.get("/reports/recent")
async def get_recent_reports(
    hours: float = Query(default=24.0, gt=0, le=24 * 30),
    limit: int = Query(default=100, ge=1, le=1000),
) -> JSONResponse:
    """Most recent reports within ``hours``, newest first."""
    from shakeguard.main import get_store

    since_ms = int(time.time() * 1000) - int(hours * 3_600_000)
    reports = (await get_store().reports_since(since_ms))[:limit]
    return JSONResponse(content={
        "reports": [r.to_dict() for r in reports],
        "total": len(reports),
    })


async def _heatmap_points(time_range: str, min_intensity: float,
                          max_intensity: float) -> list[HeatmapPoint]:
    from shakeguard.main import get_store

    if time_range not in TIME_RANGES_MS:
        raise InvalidPayload(f"time_range must be one of {', '.join(TIME_RANGES_MS)}")
    if min_intensity > max_intensity:
        raise InvalidPayload("min_intensity must not exceed max_intensity")

    since_ms = int(time.time() * 1000) - TIME_RANGES_MS[time_range]
    reports = await get_store().reports_since(since_ms)
    return build_points(reports, min_intensity, max_intensity)


@router.get("/heatmap")
async def get_heatmap(
    time_range: str = Query(default=DEFAULT_TIME_RANGE),
    min_intensity: float = Query(default=1.0, ge=0),
    max_intensity: float = Query(default=10.0, le=10),
    format: str = Query(default="json"),
) -> JSONResponse:
    """Aggregated community activity.

    ``format=geojson`` returns the grid points as a FeatureCollection;
    the default returns points, regions and summary stats.
    """
    try:
        points = await _heatmap_points(time_range, min_intensity, max_intensity)
    except InvalidPayload as e:
        return rejected(str(e), e.status_code)

    if format == "geojson":
        return JSONResponse(content=points_to_geojson(points),
                            media_type="application/geo+json")

    regions = build_regions(points)
    return JSONResponse(content={
        "time_range": time_range,
        "points": [
            {"latitude": round(p.lat, 6), "longitude": round(p.lon, 6),
             "intensity": p.intensity, "report_count": p.report_count,
             "last_seen_ms": p.last_seen_ms}
            for p in points
        ],
        "regions": [r.to_dict() for r in regions],
        "stats": heatmap_stats(points, regions),
    })


@router.get("/heatmap/region")
async def get_heatmap_region(
    latitude: float = Query(ge=-90, le=90),
    longitude: float = Query(ge=-180, le=180),
    time_range: str = Query(default=DEFAULT_TIME_RANGE),
    min_intensity: float = Query(default=1.0, ge=0),
    max_intensity: float = Query(default=10.0, le=10),
) -> JSONResponse:
    """Details of the region containing a tapped map position."""
    try:
        points = await _heatmap_points(time_range, min_intensity, max_intensity)
    except InvalidPayload as e:
        return rejected(str(e), e.status_code)

    region = region_at(build_regions(points), latitude, longitude)
    if region is None:
        return rejected("no activity at that position", status_code=404)
    return JSONResponse(content=region.to_dict())


@router.get("/warnings/recent")
async def get_recent_warnings() -> dict:
    """Summaries of the most recent warning fanouts, newest first."""
    from shakeguard.main import get_warnings

    service = get_warnings()
    return {
        "fanouts": [s.to_dict() for s in service.recent],
        "stats": service.stats(),
    }


@router.delete("/data")
async def clear_data() -> JSONResponse:
    """Delete every row of every table. Used to reset a test deployment."""
    from shakeguard.main import get_store

    deleted = await get_store().clear_all()
    return JSONResponse(content={"deleted": deleted, "total": sum(deleted.values())})
