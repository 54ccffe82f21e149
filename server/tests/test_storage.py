"""Tests for the memory and file storage adapters."""

from __future__ import annotations

import pytest

from shakeguard.core.models import EarthquakeEvent, EarthquakeReport, UserLocationSample
from shakeguard.feed.asyncio_feed import AsyncioReportFeed
from shakeguard.storage.file_storage import FileQuakeStore
from shakeguard.storage.memory_storage import MemoryQuakeStore

NOW_MS = 1_700_000_000_000
HOUR_MS = 3_600_000


def make_report(report_id: str, timestamp_ms: int, intensity: float = 4.0) -> EarthquakeReport:
    return EarthquakeReport(id=report_id, user_id="u", latitude=41.0, longitude=29.0,
                            intensity=intensity, timestamp_ms=timestamp_ms,
                            created_at_ms=timestamp_ms)


def make_location(user_id: str, timestamp_ms: int, lat: float = 41.0) -> UserLocationSample:
    return UserLocationSample(user_id=user_id, latitude=lat, longitude=29.0,
                              timestamp_ms=timestamp_ms)


@pytest.fixture(params=["memory", "file"])
def quake_store(request, tmp_path):
    feed = AsyncioReportFeed()
    if request.param == "memory":
        return MemoryQuakeStore(feed=feed), feed
    return FileQuakeStore(tmp_path / "data", feed=feed), feed


@pytest.mark.asyncio
async def test_insert_report_publishes_to_feed(quake_store):
    store, feed = quake_store
    await store.insert_report(make_report("r-1", NOW_MS))
    assert feed.qsize() == 1


@pytest.mark.asyncio
async def test_reports_since_newest_first(quake_store):
    store, _ = quake_store
    await store.insert_report(make_report("old", NOW_MS - 48 * HOUR_MS))
    await store.insert_report(make_report("mid", NOW_MS - 2 * HOUR_MS))
    await store.insert_report(make_report("new", NOW_MS - HOUR_MS))

    rows = await store.reports_since(NOW_MS - 24 * HOUR_MS)
    assert [r.id for r in rows] == ["new", "mid"]
    assert rows[0] == make_report("new", NOW_MS - HOUR_MS)


@pytest.mark.asyncio
async def test_recent_locations_latest_per_user(quake_store):
    store, _ = quake_store
    await store.insert_location(make_location("a", NOW_MS - 2 * HOUR_MS, lat=40.0))
    await store.insert_location(make_location("a", NOW_MS - HOUR_MS, lat=40.5))
    await store.insert_location(make_location("b", NOW_MS - 30 * HOUR_MS))

    rows = await store.recent_locations(24, NOW_MS)
    assert [(r.user_id, r.latitude) for r in rows] == [("a", 40.5)]


@pytest.mark.asyncio
async def test_clear_all_counts_per_table(quake_store):
    store, _ = quake_store
    await store.insert_report(make_report("r-1", NOW_MS))
    await store.insert_location(make_location("a", NOW_MS))
    await store.insert_location(make_location("b", NOW_MS))
    await store.insert_event(EarthquakeEvent(start_time_ms=NOW_MS, duration_seconds=3.0,
                                             average_intensity=2.0, peak_acceleration=12.0))

    counts = await store.clear_all()
    assert counts == {"user_locations": 2, "earthquake_events": 1, "earthquake_reports": 1}
    assert await store.reports_since(0) == []
    assert await store.recent_locations(24, NOW_MS) == []


@pytest.mark.asyncio
async def test_file_store_partitions_by_day(tmp_path):
    store = FileQuakeStore(tmp_path / "data")
    await store.insert_location(make_location("a", NOW_MS))
    # 2023-11-14 UTC
    files = list((tmp_path / "data" / "user_locations").rglob("rows.jsonl"))
    assert len(files) == 1
    assert files[0].parent.parts[-3:] == ("2023", "11", "14")


@pytest.mark.asyncio
async def test_file_store_skips_corrupt_lines(tmp_path):
    store = FileQuakeStore(tmp_path / "data")
    await store.insert_report(make_report("r-1", NOW_MS))
    [path] = (tmp_path / "data" / "earthquake_reports").rglob("rows.jsonl")
    with open(path, "a") as f:
        f.write("{not json\n")
    await store.insert_report(make_report("r-2", NOW_MS + 1))

    rows = await store.reports_since(0)
    assert [r.id for r in rows] == ["r-2", "r-1"]


@pytest.mark.asyncio
async def test_file_store_persists_events(tmp_path):
    store = FileQuakeStore(tmp_path / "data")
    event = EarthquakeEvent(start_time_ms=NOW_MS, duration_seconds=2.5,
                            average_intensity=1.8, peak_acceleration=11.9,
                            latitude=41.0, longitude=29.0, user_id="phone-1")
    await store.insert_event(event)
    counts = await store.clear_all()
    assert counts["earthquake_events"] == 1
    assert (await store.clear_all())["earthquake_events"] == 0


@pytest.mark.asyncio
async def test_file_store_survives_restart(tmp_path):
    first = FileQuakeStore(tmp_path / "data")
    await first.insert_location(make_location("a", NOW_MS))
    second = FileQuakeStore(tmp_path / "data")
    rows = await second.recent_locations(1, NOW_MS)
    assert [r.user_id for r in rows] == ["a"]
