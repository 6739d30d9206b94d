from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Sequence

from .models import (
    ClockState,
    FleetSnapshot,
    FleetSummary,
    TelemetryEvent,
    Trip,
    TripSnapshot,
    TripStatus,
)
from .status import last_location, resolve_progress
from .visibility import visible_events


DEFAULT_RECENT_EVENTS = 5
SIM_TIME_FORMAT = "%b %d, %Y, %I:%M:%S %p"


def aggregate(trips: Sequence[Trip], at_ms: float) -> FleetSummary:
    """Tally trips per lifecycle status at ``at_ms``.

    Recomputed from scratch on every call; counts always sum to ``total``.
    """
    counts = {status: 0 for status in TripStatus}
    for trip in trips:
        progress = resolve_progress(visible_events(trip, at_ms))
        counts[progress.status] += 1

    return FleetSummary(
        total=len(trips),
        completed=counts[TripStatus.COMPLETED],
        in_progress=counts[TripStatus.IN_PROGRESS],
        cancelled=counts[TripStatus.CANCELLED],
        not_started=counts[TripStatus.NOT_STARTED],
    )


def trip_snapshot(
    trip: Trip,
    at_ms: float,
    recent_events: int = DEFAULT_RECENT_EVENTS,
) -> TripSnapshot:
    visible = visible_events(trip, at_ms)
    recent = tuple(reversed(visible[-recent_events:])) if recent_events > 0 else ()
    return TripSnapshot(
        trip_id=trip.trip_id,
        display_name=trip.display_name,
        progress=resolve_progress(visible),
        last_location=last_location(visible),
        visible_count=len(visible),
        recent_events=recent,
    )


def build_snapshot(
    trips: Sequence[Trip],
    clock: ClockState,
    at_ms: float | None = None,
    recent_events: int = DEFAULT_RECENT_EVENTS,
) -> FleetSnapshot:
    resolved_at = clock.current_time_ms if at_ms is None else at_ms
    return FleetSnapshot(
        at_ms=resolved_at,
        clock=clock,
        summary=aggregate(trips, resolved_at),
        trips=tuple(
            trip_snapshot(trip, resolved_at, recent_events=recent_events) for trip in trips
        ),
    )


def ms_to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def format_sim_time(ms: float | None) -> str:
    if ms is None:
        return "Loading..."
    return ms_to_datetime(ms).strftime(SIM_TIME_FORMAT)


def _iso(ms: float) -> str:
    return ms_to_datetime(ms).isoformat().replace("+00:00", "Z")


def _event_to_dict(event: TelemetryEvent | None) -> dict[str, Any] | None:
    if event is None:
        return None
    return {
        "event_id": event.event_id,
        "event_type": event.event_type,
        "timestamp": event.timestamp,
        "location": asdict(event.location) if event.location is not None else None,
        "movement": asdict(event.movement) if event.movement is not None else None,
    }


def snapshot_to_dict(snapshot: FleetSnapshot) -> dict[str, Any]:
    clock = snapshot.clock
    return {
        "at_utc": _iso(snapshot.at_ms),
        "at_ms": snapshot.at_ms,
        "clock": {
            "current_time_utc": _iso(clock.current_time_ms),
            "initial_time_utc": _iso(clock.initial_time_ms),
            "display_time": format_sim_time(clock.current_time_ms),
            "speed_multiplier": clock.speed_multiplier,
            "playing": clock.playing,
        },
        "summary": snapshot.summary.as_dict(),
        "trips": [
            {
                "trip_id": trip.trip_id,
                "display_name": trip.display_name,
                "status": trip.progress.status.value,
                "percent": trip.progress.percent,
                "visible_count": trip.visible_count,
                "last_location": _event_to_dict(trip.last_location),
                "recent_events": [_event_to_dict(event) for event in trip.recent_events],
            }
            for trip in snapshot.trips
        ],
    }
