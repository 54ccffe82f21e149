"""Tests for the local event history."""

from __future__ import annotations

from shakeguard.core.history import EventHistory
from shakeguard.core.models import EarthquakeEvent


def event(start_ms: int) -> EarthquakeEvent:
    return EarthquakeEvent(start_time_ms=start_ms, duration_seconds=2.5,
                           average_intensity=1.8, peak_acceleration=11.5)


def test_newest_first():
    history = EventHistory()
    history.add(event(1))
    history.add(event(2))
    assert [e.start_time_ms for e in history.events()] == [2, 1]


def test_capped():
    history = EventHistory(max_events=3)
    for i in range(5):
        history.add(event(i))
    assert [e.start_time_ms for e in history.events()] == [4, 3, 2]


def test_remove_and_clear():
    history = EventHistory()
    for i in range(3):
        history.add(event(i))
    assert history.remove(1)
    assert [e.start_time_ms for e in history.events()] == [2, 0]
    assert not history.remove(5)
    assert not history.remove(-1)
    history.clear()
    assert len(history) == 0


def test_persists_to_json(tmp_path):
    path = tmp_path / "history.json"
    history = EventHistory(path=path)
    history.add(event(1))
    history.add(event(2))

    reloaded = EventHistory(path=path)
    assert reloaded.events() == history.events()


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("[{broken")
    history = EventHistory(path=path)
    assert len(history) == 0
    history.add(event(1))
    assert len(EventHistory(path=path)) == 1
