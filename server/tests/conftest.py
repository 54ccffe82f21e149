"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import shakeguard.main as main_module
from shakeguard.config import AppConfig, DetectionConfig, LocationConfig
from shakeguard.core.history import EventHistory
from shakeguard.core.location import LocationService
from shakeguard.core.models import SensorSample
from shakeguard.core.stats import ServiceStats
from shakeguard.device.software import PushedPositionSource
from shakeguard.storage.memory_storage import MemoryQuakeStore

GRAVITY = 9.81

REST = SensorSample(0.0, 0.0, GRAVITY)
STILL_GYRO = SensorSample()


def shake(intensity: float) -> SensorSample:
    """Accelerometer reading whose combined intensity (with a still gyro) is ``intensity``."""
    return SensorSample(0.0, 0.0, GRAVITY + intensity)


class FakeClock:
    """Callable returning a controllable epoch time in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryQuakeStore()


@pytest.fixture
def stats():
    return ServiceStats()


@pytest.fixture
def history():
    return EventHistory()


@pytest.fixture
def position_source():
    return PushedPositionSource()


@pytest.fixture
def location(position_source, clock):
    return LocationService(position_source, LocationConfig(), clock=clock)


@pytest.fixture
def detection_config():
    return DetectionConfig()


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.base_dir = str(tmp_path / "data")
    config.logging.level = "warning"
    config.warning.settle_delay_s = 0.0

    main_module.init_components(config)

    yield

    # Cleanup
    main_module.get_detector().stop()
    for name in ("_config", "_stats", "_feed", "_store", "_notifier", "_position_source",
                 "_brightness", "_location", "_defense", "_history", "_detector",
                 "_hub", "_warnings"):
        setattr(main_module, name, None)


@pytest.fixture
async def client():
    from shakeguard.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
