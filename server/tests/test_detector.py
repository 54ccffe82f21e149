"""Tests for the event detector state machine."""

from __future__ import annotations

import math

import pytest

from conftest import REST, STILL_GYRO, shake
from shakeguard.config import DetectionConfig
from shakeguard.core.detector import EventDetector, Phase
from shakeguard.core.models import LocationFix, SensorSample


class FailingStore:
    """QuakeStore whose writes always fail."""

    async def insert_event(self, event):
        raise RuntimeError("database unreachable")

    async def insert_report(self, report):
        raise RuntimeError("database unreachable")


class FailingSource:
    permission_granted = True

    async def read_position(self, high_accuracy):
        raise RuntimeError("gps exploded")


class DefenseSpy:
    def __init__(self, result: bool = True) -> None:
        self.calls = 0
        self.result = result

    async def __call__(self) -> bool:
        self.calls += 1
        return self.result


async def feed(detector, intensities, start_ms=0, step_ms=500):
    """Process one tick per intensity value, ``step_ms`` apart. Returns the last signals."""
    signals = None
    for i, value in enumerate(intensities):
        accel = REST if value == 0 else shake(value)
        signals = await detector.process(accel, STILL_GYRO, timestamp_ms=start_ms + i * step_ms)
    return signals


def make_detector(history, **kwargs) -> EventDetector:
    config = kwargs.pop("config", DetectionConfig())
    return EventDetector(config, history, **kwargs)


@pytest.mark.asyncio
async def test_quiet_stream_never_detects(history):
    detector = make_detector(history)
    signals = await feed(detector, [0] * 20)
    assert not signals.is_detected
    assert not signals.is_in_event
    assert len(history) == 0


@pytest.mark.asyncio
async def test_short_excursion_is_discarded(history, stats):
    detector = make_detector(history, stats=stats)
    # Shaking at 0, 500, 1000 ms; quiet at 1500 ms -> 1.5 s
    await feed(detector, [2.0, 2.0, 2.0, 0])
    assert detector.state.phase is Phase.IDLE
    assert len(history) == 0
    assert stats.events_detected == 1
    assert stats.events_discarded == 1


@pytest.mark.asyncio
async def test_long_excursion_is_recorded(history, store, stats):
    detector = make_detector(history, store=store, stats=stats)
    # Shaking 0..2000 ms; quiet at 2500 ms -> 2.5 s
    await feed(detector, [2.0, 2.0, 2.0, 2.0, 2.0, 0])
    await detector.drain()

    assert len(history) == 1
    event = history.events()[0]
    assert event.start_time_ms == 0
    assert event.duration_seconds == pytest.approx(2.5)
    # The closing quiet sample is part of the event buffer.
    assert event.average_intensity == pytest.approx(10 / 6)
    assert event.peak_acceleration == pytest.approx(9.81 + 2.0)
    assert store.events == [event]
    assert stats.events_recorded == 1


@pytest.mark.asyncio
async def test_exactly_two_seconds_is_recorded(history):
    detector = make_detector(history)
    await feed(detector, [2.0, 2.0, 2.0, 2.0, 0])
    assert len(history) == 1
    assert history.events()[0].duration_seconds == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_peak_acceleration_tracks_maximum(history):
    detector = make_detector(history)
    await feed(detector, [2.0, 4.0, 1.5, 2.0, 2.0, 0])
    assert history.events()[0].peak_acceleration == pytest.approx(9.81 + 4.0)


@pytest.mark.asyncio
async def test_event_buffer_is_capped(history):
    config = DetectionConfig(event_buffer_size=3)
    detector = make_detector(history, config=config)
    # The early high values fall out of the 3-sample buffer.
    await feed(detector, [5.0, 5.0, 5.0, 2.0, 2.0, 2.0, 0])
    assert history.events()[0].average_intensity == pytest.approx(4 / 3)


@pytest.mark.asyncio
async def test_window_mean_gates_entry(history):
    detector = make_detector(history)
    # Nine quiet samples keep the window mean below 0.8 * threshold.
    signals = await feed(detector, [0] * 9 + [2.0])
    assert not signals.is_in_event


@pytest.mark.asyncio
async def test_cooldown_blocks_new_event(history):
    detector = make_detector(history)
    await feed(detector, [2.0] * 5 + [0])
    assert len(history) == 1
    # 5 s after the first detection: still cooling down.
    signals = await feed(detector, [2.0] * 5, start_ms=5_000)
    assert not signals.is_in_event
    # Past the 10 s cooldown a new event starts.
    signals = await feed(detector, [2.0], start_ms=10_500)
    assert signals.is_in_event


@pytest.mark.asyncio
async def test_detected_flag_clears_after_five_seconds(history):
    detector = make_detector(history)
    signals = await feed(detector, [2.0])
    assert signals.is_detected
    assert detector.signals(now_ms=4_999).is_detected
    assert not detector.signals(now_ms=5_000).is_detected


@pytest.mark.asyncio
async def test_sensitivity_scales_threshold(history):
    detector = make_detector(history)
    detector.sensitivity = 2.0
    assert detector.threshold == pytest.approx(2.4)
    signals = await feed(detector, [2.0])
    assert not signals.is_in_event

    detector.sensitivity = 10.0
    assert detector.sensitivity == 2.0
    detector.sensitivity = 0.1
    assert detector.sensitivity == 0.5


@pytest.mark.asyncio
async def test_defense_fires_once_per_event(history):
    spy = DefenseSpy()
    detector = make_detector(history, activate_defense=spy)
    await feed(detector, [3.0, 3.0, 3.0, 3.0, 3.0])
    await detector.drain()
    assert spy.calls == 1
    assert detector.signals().defense_activated

    await feed(detector, [0], start_ms=2_500)
    await detector.drain()
    assert spy.calls == 1

    # A later event may activate again.
    await feed(detector, [3.0, 3.0, 3.0, 3.0, 3.0, 0], start_ms=20_000)
    await detector.drain()
    assert spy.calls == 2


@pytest.mark.asyncio
async def test_defense_not_fired_below_threshold(history):
    spy = DefenseSpy()
    detector = make_detector(history, activate_defense=spy)
    await feed(detector, [2.0] * 6 + [0])
    await detector.drain()
    assert spy.calls == 0


@pytest.mark.asyncio
async def test_rejected_defense_is_not_marked_active(history):
    spy = DefenseSpy(result=False)
    detector = make_detector(history, activate_defense=spy)
    signals = await feed(detector, [3.0, 3.0])
    await detector.drain()
    assert spy.calls == 1
    assert not detector.signals().defense_activated
    assert not signals.defense_activated


@pytest.mark.asyncio
async def test_event_location_is_captured(history, store, location, position_source):
    position_source.push(LocationFix(41.0, 29.0, accuracy_m=8.0))
    detector = make_detector(history, store=store, location=location)

    await feed(detector, [2.0])
    await detector.drain()
    assert detector.signals().current_event_location == (41.0, 29.0)

    await feed(detector, [2.0] * 4 + [0], start_ms=500)
    await detector.drain()
    event = history.events()[0]
    assert (event.latitude, event.longitude) == (41.0, 29.0)


@pytest.mark.asyncio
async def test_location_failure_does_not_abort_detection(history, store, clock):
    from shakeguard.config import LocationConfig
    from shakeguard.core.location import LocationService

    location = LocationService(FailingSource(), LocationConfig(), clock=clock)
    detector = make_detector(history, store=store, location=location)

    await feed(detector, [2.0] * 5 + [0])
    await detector.drain()

    assert len(history) == 1
    assert not history.events()[0].has_location
    # Without coordinates no automatic report is filed.
    assert store.reports == []


@pytest.mark.asyncio
async def test_falls_back_to_last_known_location(history, location):
    location.record_fix(LocationFix(40.5, 28.5))
    detector = make_detector(history, location=location)
    await feed(detector, [2.0] * 5 + [0])
    await detector.drain()
    event = history.events()[0]
    assert (event.latitude, event.longitude) == (40.5, 28.5)


@pytest.mark.asyncio
async def test_database_failure_is_swallowed(history, stats):
    detector = make_detector(history, store=FailingStore(), stats=stats)
    await feed(detector, [2.0] * 5 + [0])
    await detector.drain()
    assert len(history) == 1
    assert stats.event_writes_failed == 1


@pytest.mark.asyncio
async def test_auto_report_for_located_event(history, store, location, position_source):
    position_source.push(LocationFix(41.0, 29.0, accuracy_m=5.0))
    location.record_fix(LocationFix(41.0, 29.0, accuracy_m=5.0))
    detector = make_detector(history, store=store, location=location, user_id="phone-1")
    await feed(detector, [2.0] * 5 + [0])
    await detector.drain()

    assert len(store.reports) == 1
    report = store.reports[0]
    assert report.user_id == "phone-1"
    assert (report.latitude, report.longitude) == (41.0, 29.0)
    assert report.intensity == pytest.approx(10 / 6)


@pytest.mark.asyncio
async def test_auto_report_intensity_is_clamped(history, store, location):
    location.record_fix(LocationFix(41.0, 29.0))
    detector = make_detector(history, store=store, location=location)
    await feed(detector, [15.0] * 5 + [0])
    await detector.drain()
    assert store.reports[0].intensity == 10.0


@pytest.mark.asyncio
async def test_auto_report_can_be_disabled(history, store, location):
    location.record_fix(LocationFix(41.0, 29.0))
    config = DetectionConfig(auto_report=False)
    detector = make_detector(history, config=config, store=store, location=location)
    await feed(detector, [2.0] * 5 + [0])
    await detector.drain()
    assert len(store.events) == 1
    assert store.reports == []


@pytest.mark.asyncio
async def test_non_finite_sample_contributes_zero(history):
    detector = make_detector(history)
    signals = await detector.process(SensorSample(math.nan, math.inf, 9.81),
                                     STILL_GYRO, timestamp_ms=0)
    assert signals.current_intensity == pytest.approx(0.0)
    assert not signals.is_in_event


@pytest.mark.asyncio
async def test_out_of_order_tick_is_dropped(history, stats):
    detector = make_detector(history, stats=stats)
    await detector.process(REST, STILL_GYRO, timestamp_ms=1_000)
    signals = await detector.process(shake(5.0), STILL_GYRO, timestamp_ms=500)
    assert not signals.is_in_event
    assert signals.current_intensity == pytest.approx(0.0)
    assert stats.samples_dropped == 1


@pytest.mark.asyncio
async def test_stopped_detector_ignores_ticks(history):
    detector = make_detector(history)
    detector.stop()
    signals = await feed(detector, [5.0] * 3)
    assert not signals.is_in_event


@pytest.mark.asyncio
async def test_late_location_after_event_end_is_ignored(history, position_source, location):
    detector = make_detector(history, location=location)
    # No fix yet: the capture started at event begin finds nothing.
    await feed(detector, [2.0] * 5 + [0])
    position_source.push(LocationFix(41.0, 29.0))
    await detector.drain()
    assert detector.state.event_location is None
    assert not history.events()[0].has_location
