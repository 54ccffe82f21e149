"""Community heatmap — aggregates earthquake reports on a fixed grid.

Reports are snapped to GRID_SIZE_DEG cells (about 1 km). Cells are then
grouped into REGION_SIZE_DEG regions (about 10 km), each with a risk level
derived from the strongest cell it contains.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from shakeguard.core.models import EarthquakeReport

GRID_SIZE_DEG = 0.01
REGION_SIZE_DEG = 0.1

# Lookback per time-range filter, in milliseconds.
TIME_RANGES_MS = {
    "1h": 1 * 3600_000,
    "6h": 6 * 3600_000,
    "24h": 24 * 3600_000,
    "7d": 7 * 24 * 3600_000,
    "30d": 30 * 24 * 3600_000,
}
DEFAULT_TIME_RANGE = "24h"

# (minimum max-intensity, level), checked in order.
_RISK_LEVELS = ((7.0, "severe"), (5.0, "high"), (3.0, "moderate"))


def risk_level(max_intensity: float) -> str:
    for floor, level in _RISK_LEVELS:
        if max_intensity >= floor:
            return level
    return "low"


def _cell(value: float, size: float) -> int:
    return math.floor(value / size)


@dataclass
class HeatmapPoint:
    """One grid cell. ``lat``/``lon`` are the cell center."""
    lat: float
    lon: float
    intensity: float = 0.0
    report_count: int = 0
    last_seen_ms: int = 0

    def add_report(self, intensity: float, timestamp_ms: int) -> None:
        self.intensity = max(self.intensity, intensity)
        self.report_count += 1
        if timestamp_ms > self.last_seen_ms:
            self.last_seen_ms = timestamp_ms

    def to_geojson_feature(self) -> dict:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Point",
                "coordinates": [round(self.lon, 6), round(self.lat, 6)],
            },
            "properties": {
                "intensity": self.intensity,
                "report_count": self.report_count,
                "last_seen_ms": self.last_seen_ms,
            },
        }


@dataclass
class HeatmapRegion:
    id: str
    name: str
    south: float
    west: float
    points: list[HeatmapPoint] = field(default_factory=list)

    @property
    def north(self) -> float:
        return self.south + REGION_SIZE_DEG

    @property
    def east(self) -> float:
        return self.west + REGION_SIZE_DEG

    @property
    def average_intensity(self) -> float:
        if not self.points:
            return 0.0
        return sum(p.intensity for p in self.points) / len(self.points)

    @property
    def max_intensity(self) -> float:
        return max((p.intensity for p in self.points), default=0.0)

    @property
    def report_count(self) -> int:
        return sum(p.report_count for p in self.points)

    @property
    def last_activity_ms(self) -> int:
        return max((p.last_seen_ms for p in self.points), default=0)

    @property
    def risk_level(self) -> str:
        return risk_level(self.max_intensity)

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "bounds": {
                "north": round(self.north, 6),
                "south": round(self.south, 6),
                "east": round(self.east, 6),
                "west": round(self.west, 6),
            },
            "average_intensity": round(self.average_intensity, 2),
            "report_count": self.report_count,
            "last_activity_ms": self.last_activity_ms,
            "risk_level": self.risk_level,
        }


def build_points(
    reports: Iterable[EarthquakeReport],
    min_intensity: float = 1.0,
    max_intensity: float = 10.0,
    grid_size: float = GRID_SIZE_DEG,
) -> list[HeatmapPoint]:
    """Snap reports inside the intensity band onto grid cells."""
    grid: dict[tuple[int, int], HeatmapPoint] = {}
    for report in reports:
        if not min_intensity <= report.intensity <= max_intensity:
            continue
        key = (_cell(report.latitude, grid_size), _cell(report.longitude, grid_size))
        point = grid.get(key)
        if point is None:
            point = HeatmapPoint(
                lat=key[0] * grid_size + grid_size / 2,
                lon=key[1] * grid_size + grid_size / 2,
            )
            grid[key] = point
        point.add_report(report.intensity, report.timestamp_ms)
    return list(grid.values())


def build_regions(points: list[HeatmapPoint]) -> list[HeatmapRegion]:
    """Group grid points into regions, highest average intensity first."""
    by_key: dict[tuple[int, int], list[HeatmapPoint]] = {}
    for p in points:
        key = (_cell(p.lat, REGION_SIZE_DEG), _cell(p.lon, REGION_SIZE_DEG))
        by_key.setdefault(key, []).append(p)

    regions = [
        HeatmapRegion(
            id=f"{key[0] * REGION_SIZE_DEG:.1f},{key[1] * REGION_SIZE_DEG:.1f}",
            name="",
            south=key[0] * REGION_SIZE_DEG,
            west=key[1] * REGION_SIZE_DEG,
            points=members,
        )
        for key, members in by_key.items()
    ]
    regions.sort(key=lambda r: r.average_intensity, reverse=True)
    for i, region in enumerate(regions, start=1):
        region.name = f"Region {i}"
    return regions


def region_at(regions: list[HeatmapRegion], lat: float, lon: float) -> HeatmapRegion | None:
    return next((r for r in regions if r.contains(lat, lon)), None)


def heatmap_stats(points: list[HeatmapPoint], regions: list[HeatmapRegion]) -> dict:
    return {
        "total_reports": sum(p.report_count for p in points),
        "average_intensity": (
            sum(p.intensity for p in points) / len(points) if points else 0.0
        ),
        "max_intensity": max((p.intensity for p in points), default=0.0),
        "active_regions": len(regions),
        "high_risk_regions": sum(1 for r in regions if r.risk_level in ("high", "severe")),
        "data_points": len(points),
    }


def points_to_geojson(points: list[HeatmapPoint]) -> dict:
    """Convert grid points to a GeoJSON FeatureCollection."""
    return {
        "type": "FeatureCollection",
        "features": [p.to_geojson_feature() for p in points],
    }
