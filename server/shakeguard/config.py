"""Service configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: SHAKEGUARD_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class DeviceConfig:
    user_id: str = "anonymous-user"


@dataclass
class DetectionConfig:
    sensitivity: float = 1.0          # 0.5 - 2.0
    update_interval_ms: int = 2000    # 1000 - 5000
    base_threshold: float = 1.2
    window_size: int = 10
    event_buffer_size: int = 20
    min_event_duration_s: float = 2.0
    cooldown_ms: int = 10_000
    detected_flag_seconds: float = 5.0
    defense_threshold: float = 2.5
    gravity: float = 9.81
    gyro_gain: float = 15.0
    auto_report: bool = True


@dataclass
class WarningConfig:
    wave_speed_km_s: float = 3.5      # S-wave
    min_distance_km: float = 1.0
    urgent_threshold_s: float = 10.0
    lookback_hours: float = 24.0
    settle_delay_s: float = 1.0


@dataclass
class DefenseConfig:
    reduced_brightness: float = 0.1
    brightness_floor: float = 0.2
    default_brightness: float = 0.8
    startup_low_brightness: float = 0.3
    false_alarm_minutes: float = 30.0
    lock_check_interval_s: float = 60.0


@dataclass
class LocationConfig:
    high_accuracy_timeout_s: float = 30.0
    fallback_timeout_s: float = 15.0
    stale_after_s: float = 300.0
    stale_check_interval_s: float = 30.0


@dataclass
class StorageConfig:
    backend: str = "memory"  # "memory" or "file"
    base_dir: str = "data"


@dataclass
class HistoryConfig:
    max_events: int = 100
    path: str = ""  # empty = in-memory only


@dataclass
class NotifyConfig:
    backend: str = "log"  # "log" or "http"
    url: str = ""
    timeout_s: float = 10.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    warning: WarningConfig = field(default_factory=WarningConfig)
    defense: DefenseConfig = field(default_factory=DefenseConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_ENV_PREFIX = "SHAKEGUARD"


def _coerce(value: str, current: object) -> object:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        for f in fields(section):
            env_key = f"{_ENV_PREFIX}_{section_field.name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(val, getattr(section, f.name)))


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_field in fields(config):
            values = raw.get(section_field.name)
            if not isinstance(values, dict):
                continue
            section = getattr(config, section_field.name)
            for k, v in values.items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
