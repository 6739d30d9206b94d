from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


TRIP_STARTED = "trip_started"
TRIP_COMPLETED = "trip_completed"
TRIP_CANCELLED = "trip_cancelled"

EVENT_TYPES: dict[str, tuple[str, ...]] = {
    "trip_lifecycle": (TRIP_STARTED, TRIP_COMPLETED, TRIP_CANCELLED),
    "location": ("location_ping", "signal_lost", "signal_recovered"),
    "vehicle_state": ("vehicle_stopped", "vehicle_moving", "speed_violation"),
    "telemetry": ("vehicle_telemetry", "device_error"),
    "warnings": ("battery_low", "fuel_level_low"),
    "fuel": ("refueling_started", "refueling_completed"),
}

SPEED_OPTIONS = (1, 5, 10, 50, 100)


class TripStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class Movement:
    speed_kmh: float | None
    heading_degrees: float | None


@dataclass(frozen=True)
class TelemetryEvent:
    event_id: str
    event_type: str
    timestamp_ms: int
    timestamp: str
    location: Location | None = None
    movement: Movement | None = None
    estimated_duration_hours: float | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Trip:
    """One vehicle trip and its immutable, source-ordered event log."""

    trip_id: str
    display_name: str
    events: tuple[TelemetryEvent, ...] = ()
    event_times_ms: np.ndarray = field(init=False, repr=False, compare=False)
    is_time_ordered: bool = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        events = tuple(self.events)
        times = np.array([event.timestamp_ms for event in events], dtype=np.int64)
        times.setflags(write=False)
        ordered = bool(times.size < 2 or np.all(np.diff(times) >= 0))
        # Frozen dataclass: derived fields are set once here and never again.
        object.__setattr__(self, "events", events)
        object.__setattr__(self, "event_times_ms", times)
        object.__setattr__(self, "is_time_ordered", ordered)

    @property
    def first_event_ms(self) -> int | None:
        if not self.events:
            return None
        return self.events[0].timestamp_ms

    @property
    def last_event_ms(self) -> int | None:
        if not self.events:
            return None
        return int(self.event_times_ms.max())


@dataclass(frozen=True)
class TripProgress:
    status: TripStatus
    percent: int | None


@dataclass(frozen=True)
class FleetSummary:
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    cancelled: int = 0
    not_started: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "cancelled": self.cancelled,
            "not_started": self.not_started,
        }


@dataclass(frozen=True)
class ClockState:
    current_time_ms: float
    initial_time_ms: int
    speed_multiplier: float
    playing: bool


@dataclass(frozen=True)
class TripSnapshot:
    trip_id: str
    display_name: str
    progress: TripProgress
    last_location: TelemetryEvent | None
    visible_count: int
    recent_events: tuple[TelemetryEvent, ...]


@dataclass(frozen=True)
class FleetSnapshot:
    at_ms: float
    clock: ClockState
    summary: FleetSummary
    trips: tuple[TripSnapshot, ...]
