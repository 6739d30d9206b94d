from __future__ import annotations

from typing import Sequence

import numpy as np

from .models import TelemetryEvent, Trip


def _cutoff_index(trip: Trip, at_ms: float) -> int | None:
    """Number of leading events at or before ``at_ms``; None if the log is unordered."""
    if not trip.is_time_ordered:
        return None
    return int(np.searchsorted(trip.event_times_ms, at_ms, side="right"))


def visible_events(
    trip: Trip | Sequence[TelemetryEvent] | None,
    at_ms: float,
) -> tuple[TelemetryEvent, ...]:
    """Events whose timestamp is <= ``at_ms``, in source order.

    Time-ordered logs are cut with a binary search; anything else falls back to a
    full scan. Both paths are stateless, so backward jumps (reset) are safe.
    """
    if trip is None:
        return ()
    if not isinstance(trip, Trip):
        return tuple(event for event in trip if event.timestamp_ms <= at_ms)
    if not trip.events:
        return ()

    cutoff = _cutoff_index(trip, at_ms)
    if cutoff is not None:
        return trip.events[:cutoff]
    return tuple(event for event in trip.events if event.timestamp_ms <= at_ms)


def visible_count(trip: Trip | None, at_ms: float) -> int:
    if trip is None or not trip.events:
        return 0
    cutoff = _cutoff_index(trip, at_ms)
    if cutoff is not None:
        return cutoff
    return int(np.count_nonzero(trip.event_times_ms <= at_ms))
