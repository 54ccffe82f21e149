"""ShakeGuard server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, feed, storage, notify, device and API layers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from shakeguard.api.defense import router as defense_router
from shakeguard.api.devices import router as devices_router
from shakeguard.api.monitoring import router as monitoring_router
from shakeguard.api.reports import router as reports_router
from shakeguard.config import AppConfig, load_config
from shakeguard.core.defense import DefenseController
from shakeguard.core.detector import EventDetector
from shakeguard.core.history import EventHistory
from shakeguard.core.location import LocationService
from shakeguard.core.sampler import SensorHub, detector_listener
from shakeguard.core.stats import ServiceStats
from shakeguard.core.warning import WarningService
from shakeguard.device.software import PushedPositionSource, SoftwareBrightness
from shakeguard.feed.asyncio_feed import AsyncioReportFeed
from shakeguard.notify.http_notifier import HttpNotifier
from shakeguard.notify.log_notifier import LogNotifier
from shakeguard.storage.file_storage import FileQuakeStore
from shakeguard.storage.memory_storage import MemoryQuakeStore

log = structlog.get_logger()

VERSION = "0.1.0"

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: ServiceStats | None = None
_feed: AsyncioReportFeed | None = None
_store: MemoryQuakeStore | FileQuakeStore | None = None
_notifier: LogNotifier | HttpNotifier | None = None
_position_source: PushedPositionSource | None = None
_brightness: SoftwareBrightness | None = None
_location: LocationService | None = None
_defense: DefenseController | None = None
_history: EventHistory | None = None
_detector: EventDetector | None = None
_hub: SensorHub | None = None
_warnings: WarningService | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> ServiceStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_feed() -> AsyncioReportFeed:
    assert _feed is not None, "Server not initialized"
    return _feed


def get_store() -> MemoryQuakeStore | FileQuakeStore:
    assert _store is not None, "Server not initialized"
    return _store


def get_notifier() -> LogNotifier | HttpNotifier:
    assert _notifier is not None, "Server not initialized"
    return _notifier


def get_position_source() -> PushedPositionSource:
    assert _position_source is not None, "Server not initialized"
    return _position_source


def get_brightness() -> SoftwareBrightness:
    assert _brightness is not None, "Server not initialized"
    return _brightness


def get_location() -> LocationService:
    assert _location is not None, "Server not initialized"
    return _location


def get_defense() -> DefenseController:
    assert _defense is not None, "Server not initialized"
    return _defense


def get_history() -> EventHistory:
    assert _history is not None, "Server not initialized"
    return _history


def get_detector() -> EventDetector:
    assert _detector is not None, "Server not initialized"
    return _detector


def get_hub() -> SensorHub:
    assert _hub is not None, "Server not initialized"
    return _hub


def get_warnings() -> WarningService:
    assert _warnings is not None, "Server not initialized"
    return _warnings


def init_components(config: AppConfig, clock: Callable[[], float] = time.time) -> None:
    """Create every component and wire them together."""
    global _config, _stats, _feed, _store, _notifier, _position_source
    global _brightness, _location, _defense, _history, _detector, _hub, _warnings

    _config = config
    _stats = ServiceStats()
    _feed = AsyncioReportFeed()

    if config.storage.backend == "file":
        _store = FileQuakeStore(base_dir=config.storage.base_dir, feed=_feed)
    else:
        _store = MemoryQuakeStore(feed=_feed)

    if config.notify.backend == "http" and config.notify.url:
        _notifier = HttpNotifier(config.notify.url, timeout_s=config.notify.timeout_s)
    else:
        _notifier = LogNotifier()

    user_id = config.device.user_id
    _position_source = PushedPositionSource()
    _brightness = SoftwareBrightness(level=config.defense.default_brightness)
    _location = LocationService(_position_source, config.location, clock=clock)
    _defense = DefenseController(
        _brightness, _location, _store, config.defense, user_id=user_id, clock=clock
    )
    _history = EventHistory(
        max_events=config.history.max_events, path=config.history.path or None
    )
    _detector = EventDetector(
        config.detection,
        _history,
        store=_store,
        location=_location,
        activate_defense=_defense.activate_auto,
        stats=_stats,
        user_id=user_id,
        clock=clock,
    )
    _hub = SensorHub(interval_ms=config.detection.update_interval_ms, clock=clock)
    _hub.subscribe(detector_listener(_detector))

    _warnings = WarningService(_store, _notifier, config.warning, stats=_stats, clock=clock)
    _feed.subscribe(_warnings.on_report_inserted)


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    log.info("server_starting",
             env=config.server.env,
             storage_backend=config.storage.backend,
             notify_backend=config.notify.backend)

    init_components(config)
    await get_defense().initialize()

    # Background loops
    tasks = [
        asyncio.create_task(get_feed().run()),
        asyncio.create_task(get_hub().run()),
        asyncio.create_task(get_defense().run_lock_watcher()),
        asyncio.create_task(get_location().run_stale_watcher()),
    ]

    log.info("server_started",
             host=config.server.host,
             port=config.server.port,
             user_id=config.device.user_id)

    yield

    # Shutdown
    get_detector().stop()
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    if isinstance(_notifier, HttpNotifier):
        await _notifier.aclose()
    log.info("server_stopped")


app = FastAPI(
    title="ShakeGuard",
    description="Phone-based earthquake detection and early warning",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(devices_router)
app.include_router(reports_router)
app.include_router(defense_router)
app.include_router(monitoring_router)
