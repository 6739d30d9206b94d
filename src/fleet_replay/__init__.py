"""fleet_replay package."""

from .clock import ClockRunner, SimulationClock
from .config import RuntimeConfig, load_runtime_config
from .fleet import aggregate, build_snapshot, format_sim_time, snapshot_to_dict, trip_snapshot
from .ingestion import TripLoader, TripLoadError, build_events
from .models import (
    EVENT_TYPES,
    SPEED_OPTIONS,
    ClockState,
    FleetSnapshot,
    FleetSummary,
    Location,
    Movement,
    TelemetryEvent,
    Trip,
    TripProgress,
    TripSnapshot,
    TripStatus,
)
from .simulation import FleetSimulation
from .status import last_location, resolve_progress
from .visibility import visible_count, visible_events

__all__ = [
    "EVENT_TYPES",
    "SPEED_OPTIONS",
    "ClockRunner",
    "ClockState",
    "FleetSimulation",
    "FleetSnapshot",
    "FleetSummary",
    "Location",
    "Movement",
    "RuntimeConfig",
    "SimulationClock",
    "TelemetryEvent",
    "Trip",
    "TripLoadError",
    "TripLoader",
    "TripProgress",
    "TripSnapshot",
    "TripStatus",
    "aggregate",
    "build_events",
    "build_snapshot",
    "format_sim_time",
    "last_location",
    "load_runtime_config",
    "resolve_progress",
    "snapshot_to_dict",
    "trip_snapshot",
    "visible_count",
    "visible_events",
]
