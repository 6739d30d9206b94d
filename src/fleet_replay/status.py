from __future__ import annotations

import math
from typing import Sequence

from .models import (
    TRIP_CANCELLED,
    TRIP_COMPLETED,
    TRIP_STARTED,
    TelemetryEvent,
    TripProgress,
    TripStatus,
)


MS_PER_HOUR = 3_600_000
MAX_PERCENT = 100


def _first_of_type(events: Sequence[TelemetryEvent], event_type: str) -> TelemetryEvent | None:
    for event in events:
        if event.event_type == event_type:
            return event
    return None


def _planned_duration_ms(start: TelemetryEvent) -> float:
    hours = start.estimated_duration_hours
    if hours is None or not math.isfinite(hours):
        return 0.0
    return hours * MS_PER_HOUR


def resolve_progress(events: Sequence[TelemetryEvent] | None) -> TripProgress:
    """Derive lifecycle status and completion percent from the visible events.

    Terminal events win by presence anywhere in the set, so status only moves
    forward while the simulation time increases. The in-progress percent is
    capped at 100 and has no lower bound: a start event later than the latest
    visible event yields a negative value.
    """
    if not events:
        return TripProgress(status=TripStatus.NOT_STARTED, percent=0)

    if _first_of_type(events, TRIP_COMPLETED) is not None:
        return TripProgress(status=TripStatus.COMPLETED, percent=MAX_PERCENT)

    if _first_of_type(events, TRIP_CANCELLED) is not None:
        return TripProgress(status=TripStatus.CANCELLED, percent=None)

    start = _first_of_type(events, TRIP_STARTED)
    # A lone trip_started is not enough: progress needs a second visible event.
    if start is not None and len(events) > 1:
        planned_ms = _planned_duration_ms(start)
        if planned_ms > 0:
            elapsed_ms = events[-1].timestamp_ms - start.timestamp_ms
            percent = math.floor(elapsed_ms / planned_ms * 100)
            return TripProgress(
                status=TripStatus.IN_PROGRESS,
                percent=min(percent, MAX_PERCENT),
            )

    return TripProgress(status=TripStatus.NOT_STARTED, percent=0)


def last_location(events: Sequence[TelemetryEvent] | None) -> TelemetryEvent | None:
    if not events:
        return None
    for event in reversed(events):
        if event.location is not None:
            return event
    return None
