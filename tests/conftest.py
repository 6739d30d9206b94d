from __future__ import annotations

import json
import shutil
import uuid
from pathlib import Path
from typing import Any, Callable

import pytest

from fleet_replay.ingestion import parse_timestamp_ms
from fleet_replay.models import Location, Movement, TelemetryEvent, Trip


BASE_ISO = "2025-11-03T08:00:00.000Z"
HOUR_MS = 3_600_000
MINUTE_MS = 60_000


@pytest.fixture
def tmp_path() -> Path:
    """Repo-local temporary dirs with explicit mkdir avoid host tmp ACL issues."""
    root = Path.cwd() / ".pytest-local"
    root.mkdir(parents=True, exist_ok=True)
    path = root / f"case-{uuid.uuid4().hex}"
    path.mkdir(parents=False, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def base_ms() -> int:
    return parse_timestamp_ms(BASE_ISO)


@pytest.fixture
def make_event(base_ms: int) -> Callable[..., TelemetryEvent]:
    counter = {"n": 0}

    def _make(
        event_type: str,
        offset_ms: int = 0,
        *,
        location: tuple[float, float] | None = None,
        movement: tuple[float, float] | None = None,
        duration_h: float | None = None,
    ) -> TelemetryEvent:
        counter["n"] += 1
        return TelemetryEvent(
            event_id=f"ev-{counter['n']:04d}",
            event_type=event_type,
            timestamp_ms=base_ms + offset_ms,
            timestamp=str(base_ms + offset_ms),
            location=Location(*location) if location is not None else None,
            movement=Movement(*movement) if movement is not None else None,
            estimated_duration_hours=duration_h,
        )

    return _make


@pytest.fixture
def make_trip() -> Callable[..., Trip]:
    def _make(events: list[TelemetryEvent], trip_id: str = "trip") -> Trip:
        return Trip(trip_id=trip_id, display_name=trip_id.title(), events=tuple(events))

    return _make


@pytest.fixture
def fleet(make_event: Callable[..., TelemetryEvent], make_trip: Callable[..., Trip]) -> list[Trip]:
    """Five trips that, at base + 3h, are Completed/Cancelled/InProgress/NotStarted x2."""
    completed = make_trip(
        [
            make_event("trip_started", 0, location=(40.0, -74.0), duration_h=2.0),
            make_event("location_ping", HOUR_MS, location=(40.5, -74.5)),
            make_event("trip_completed", 2 * HOUR_MS, location=(41.0, -75.0)),
        ],
        trip_id="completed",
    )
    cancelled = make_trip(
        [
            make_event("trip_started", 30 * MINUTE_MS, location=(39.7, -104.9), duration_h=10.0),
            make_event("location_ping", HOUR_MS, location=(39.8, -105.0)),
            make_event("trip_cancelled", 2 * HOUR_MS),
        ],
        trip_id="cancelled",
    )
    in_progress = make_trip(
        [
            make_event("trip_started", 0, location=(29.7, -95.3), duration_h=6.0),
            make_event("location_ping", 90 * MINUTE_MS, location=(29.9, -95.6)),
            make_event("signal_lost", 3 * HOUR_MS),
        ],
        trip_id="in_progress",
    )
    later = make_trip(
        [
            make_event("trip_started", 5 * HOUR_MS, location=(47.6, -122.3), duration_h=8.0),
            make_event("location_ping", 6 * HOUR_MS, location=(47.7, -122.4)),
        ],
        trip_id="later",
    )
    empty = make_trip([], trip_id="empty")
    return [completed, cancelled, in_progress, later, empty]


@pytest.fixture
def write_trip_file(tmp_path: Path) -> Callable[[str, Any], Path]:
    def _write(filename: str, payload: Any) -> Path:
        path = tmp_path / filename
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
