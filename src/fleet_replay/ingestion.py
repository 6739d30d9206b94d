from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Mapping, Sequence

import jsonschema
import pandas as pd

from .models import Location, Movement, TelemetryEvent, Trip


DEFAULT_TRIP_FILES = (
    "trip1crosscountry.json",
    "trip2urbandense.json",
    "trip3mountaincancelled.json",
    "trip4southerntechnical.json",
    "trip5regionallogistics.json",
)
DEFAULT_TRIP_NAMES = {
    "trip1crosscountry.json": "Cross-Country Long Haul",
    "trip2urbandense.json": "Urban Dense Delivery",
    "trip3mountaincancelled.json": "Mountain Route (Cancelled)",
    "trip4southerntechnical.json": "Southern Technical Issues",
    "trip5regionallogistics.json": "Regional Logistics",
}

TRIP_EVENTS_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["event_id", "event_type", "timestamp"],
        "properties": {
            "event_id": {"type": ["string", "integer"]},
            "event_type": {"type": "string", "minLength": 1},
            "timestamp": {"type": "string", "minLength": 1},
        },
    },
}

_KNOWN_FIELDS = {
    "event_id",
    "event_type",
    "timestamp",
    "location",
    "movement",
    "estimated_duration_hours",
}


class TripLoadError(RuntimeError):
    """Raised when a trip event log cannot be read or fails validation."""


def parse_timestamp_ms(value: Any) -> int:
    """Parse an ISO-8601 string (or epoch milliseconds) into UTC epoch milliseconds."""
    if isinstance(value, bool):
        raise ValueError(f"Unparseable timestamp: {value!r}")
    try:
        if isinstance(value, (int, float)):
            stamp = pd.Timestamp(value, unit="ms")
        else:
            stamp = pd.Timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unparseable timestamp: {value!r}") from exc
    if pd.isna(stamp):
        raise ValueError(f"Unparseable timestamp: {value!r}")

    stamp = stamp.tz_localize("UTC") if stamp.tzinfo is None else stamp.tz_convert("UTC")
    return int(stamp.value // 1_000_000)


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _parse_location(raw: Any) -> Location | None:
    if not isinstance(raw, Mapping):
        return None
    lat = _optional_float(raw.get("lat"))
    lng = _optional_float(raw.get("lng"))
    if lat is None or lng is None:
        return None
    return Location(lat=lat, lng=lng)


def _parse_movement(raw: Any) -> Movement | None:
    if not isinstance(raw, Mapping):
        return None
    return Movement(
        speed_kmh=_optional_float(raw.get("speed_kmh")),
        heading_degrees=_optional_float(raw.get("heading_degrees")),
    )


def build_events(
    raw_events: Sequence[Mapping[str, Any]],
    *,
    source: str = "<memory>",
) -> tuple[TelemetryEvent, ...]:
    """Validate decoded event records and convert them, keeping source order."""
    try:
        instance = list(raw_events) if isinstance(raw_events, tuple) else raw_events
        jsonschema.validate(instance=instance, schema=TRIP_EVENTS_SCHEMA)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise TripLoadError(f"Invalid event log {source} at {location}: {exc.message}") from exc

    if not raw_events:
        return ()

    raw_stamps = [item["timestamp"] for item in raw_events]
    parsed = pd.to_datetime(pd.Series(raw_stamps), utc=True, format="ISO8601", errors="coerce")
    bad = [raw_stamps[idx] for idx in parsed.index[parsed.isna()]]
    if bad:
        raise TripLoadError(f"Invalid event log {source}: unparseable timestamps {bad[:3]}")
    timestamps_ms = [int(stamp.value // 1_000_000) for stamp in parsed]

    events: list[TelemetryEvent] = []
    for item, timestamp_ms in zip(raw_events, timestamps_ms):
        events.append(
            TelemetryEvent(
                event_id=str(item["event_id"]),
                event_type=str(item["event_type"]),
                timestamp_ms=int(timestamp_ms),
                timestamp=str(item["timestamp"]),
                location=_parse_location(item.get("location")),
                movement=_parse_movement(item.get("movement")),
                estimated_duration_hours=_optional_float(item.get("estimated_duration_hours")),
                extra={key: value for key, value in item.items() if key not in _KNOWN_FIELDS},
            )
        )
    return tuple(events)


class TripLoader:
    def __init__(
        self,
        data_dir: Path | str,
        files: Sequence[str] | None = None,
        names: Mapping[str, str] | None = None,
    ) -> None:
        self.data_dir = Path(data_dir).expanduser().resolve()
        self.files = tuple(files) if files is not None else None
        self.names = dict(DEFAULT_TRIP_NAMES)
        if names:
            self.names.update(names)
        self._trips: list[Trip] | None = None

    def trip_name(self, filename: str) -> str:
        return self.names.get(filename, filename)

    def discover_files(self) -> list[Path]:
        if not self.data_dir.is_dir():
            raise TripLoadError(f"Trip data directory not found: {self.data_dir}")

        if self.files is not None:
            return [self.data_dir / name for name in self.files]

        found = {path.name: path for path in self.data_dir.glob("*.json") if path.is_file()}
        known = [found.pop(name) for name in DEFAULT_TRIP_FILES if name in found]
        return known + [found[name] for name in sorted(found)]

    def load_trip(self, path: Path | str) -> Trip:
        path = Path(path)
        if not path.exists():
            raise TripLoadError(f"Failed to load {path.name}: file not found in {path.parent}")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TripLoadError(f"Failed to load {path.name}: {exc}") from exc

        return Trip(
            trip_id=path.stem,
            display_name=self.trip_name(path.name),
            events=build_events(raw, source=path.name),
        )

    def load_trips(self) -> list[Trip]:
        """Load every trip or none: any failing file aborts the whole load."""
        if self._trips is not None:
            return list(self._trips)

        trips = [self.load_trip(path) for path in self.discover_files()]
        self._trips = trips
        return list(trips)
