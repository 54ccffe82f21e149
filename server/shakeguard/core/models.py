"""ShakeGuard — core internal data models.

These are plain dataclasses with no framework dependencies.
JSON bodies are converted to/from these at the API boundary.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


@dataclass(frozen=True)
class SensorSample:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


ZERO_SAMPLE = SensorSample()


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    accuracy_m: float | None = None
    timestamp_ms: int = 0


@dataclass(frozen=True)
class EarthquakeEvent:
    """A finalized detection, as written to history and to the database."""
    start_time_ms: int
    duration_seconds: float
    average_intensity: float
    peak_acceleration: float
    latitude: float | None = None
    longitude: float | None = None
    user_id: str = ""

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EarthquakeReport:
    id: str
    user_id: str
    latitude: float
    longitude: float
    intensity: float
    timestamp_ms: int
    description: str = ""
    created_at_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class UserLocationSample:
    user_id: str
    latitude: float
    longitude: float
    timestamp_ms: int
    emergency: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class WarningCalculation:
    user_id: str
    distance_km: float
    arrival_time_seconds: float
    is_urgent: bool
    user_location: tuple[float, float]


class NotificationPriority(str, Enum):
    HIGH = "high"
    MAX = "max"


@dataclass(frozen=True)
class Notification:
    user_id: str
    title: str
    body: str
    priority: NotificationPriority
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class DetectionSignals:
    """Live detector output, refreshed every sampling tick."""
    is_detected: bool
    current_intensity: float
    is_in_event: bool
    current_event_location: tuple[float, float] | None = None
    last_detection_ms: int | None = None
    defense_activated: bool = False

    def to_dict(self) -> dict:
        loc = self.current_event_location
        return {
            "is_detected": self.is_detected,
            "current_intensity": round(self.current_intensity, 4),
            "is_in_event": self.is_in_event,
            "current_event_location": (
                {"latitude": loc[0], "longitude": loc[1]} if loc else None
            ),
            "last_detection_ms": self.last_detection_ms,
            "defense_activated": self.defense_activated,
        }


@dataclass
class DefenseState:
    is_active: bool = False
    original_brightness: float | None = None
    battery_saving_enabled: bool = False
    location_sent: bool = False
    false_alarm_disabled: bool = False
    false_alarm_disabled_until: float | None = None  # epoch seconds
    brightness_reduced: bool = False  # a dimming write actually happened
    brightness_restored: bool = False
    is_initialized: bool = False


@dataclass(frozen=True)
class DefenseStatus:
    mode: str
    is_active: bool
    brightness_reduced: bool
    brightness_restored: bool
    battery_saving_enabled: bool
    location_sent: bool
    false_alarm_disabled: bool
    false_alarm_minutes_remaining: int
    is_initialized: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DefenseResult:
    """Outcome of a user-facing defense action, with the message to show."""
    success: bool
    title: str
    message: str
    measures: dict[str, bool] = field(default_factory=dict)
    minutes_remaining: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Settings:
    sensitivity: float = 1.0
    update_rate_ms: int = 2000

    def to_dict(self) -> dict:
        return asdict(self)
