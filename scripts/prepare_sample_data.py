from __future__ import annotations

import argparse
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import numpy as np


FLEET_START = datetime(2025, 11, 3, 8, 0, 0, tzinfo=timezone.utc)

# filename, start offset (h), planned duration (h), ping every (min), terminal, terminal at (h), origin
TRIP_PLANS = (
    ("trip1crosscountry.json", 0.0, 48.0, 120, "trip_completed", 46.0, (40.7128, -74.0060)),
    ("trip2urbandense.json", 0.5, 4.0, 10, "trip_completed", 4.25, (41.8781, -87.6298)),
    ("trip3mountaincancelled.json", 1.0, 10.0, 20, "trip_cancelled", 3.0, (39.7392, -104.9903)),
    ("trip4southerntechnical.json", 0.25, 30.0, 30, None, None, (29.7604, -95.3698)),
    ("trip5regionallogistics.json", 6.0, 8.0, 15, "trip_completed", 7.5, (47.6062, -122.3321)),
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Prepare a synthetic five-trip fleet for local replay runs and tests."
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path(__file__).resolve().parents[1] / "data",
        help="Target directory for per-trip JSON event logs.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite trip files if they already exist.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=7,
        help="Random seed for speed/heading jitter.",
    )
    return parser.parse_args()


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _generate_trip(
    trip_key: str,
    start_h: float,
    duration_h: float,
    ping_min: int,
    terminal: str | None,
    terminal_h: float | None,
    origin: tuple[float, float],
    rng: np.random.Generator,
) -> list[dict[str, Any]]:
    started_at = FLEET_START + timedelta(hours=start_h)
    end_h = terminal_h if terminal_h is not None else duration_h * 0.8
    offsets_min = np.arange(ping_min, end_h * 60.0, ping_min)
    heading = float(rng.uniform(0.0, 360.0))

    events: list[dict[str, Any]] = [
        {
            "event_id": f"{trip_key}-0000",
            "event_type": "trip_started",
            "timestamp": _iso(started_at),
            "location": {"lat": origin[0], "lng": origin[1]},
            "estimated_duration_hours": duration_h,
        }
    ]
    lat, lng = origin
    for idx, offset in enumerate(offsets_min, start=1):
        speed = float(np.clip(rng.normal(72.0, 12.0), 0.0, 130.0))
        heading = float((heading + rng.normal(0.0, 8.0)) % 360.0)
        step_km = speed * ping_min / 60.0
        lat += step_km / 111.0 * float(np.cos(np.radians(heading)))
        lng += step_km / 85.0 * float(np.sin(np.radians(heading)))
        event: dict[str, Any] = {
            "event_id": f"{trip_key}-{idx:04d}",
            "event_type": "location_ping",
            "timestamp": _iso(started_at + timedelta(minutes=float(offset))),
            "location": {"lat": round(lat, 6), "lng": round(lng, 6)},
            "movement": {"speed_kmh": round(speed, 1), "heading_degrees": round(heading, 1)},
        }
        # Periodic telemetry gaps exercise events without positional data.
        if idx % 9 == 0:
            event = {
                "event_id": event["event_id"],
                "event_type": "signal_lost",
                "timestamp": event["timestamp"],
            }
        events.append(event)

    if terminal is not None and terminal_h is not None:
        events.append(
            {
                "event_id": f"{trip_key}-end",
                "event_type": terminal,
                "timestamp": _iso(started_at + timedelta(hours=terminal_h)),
                "location": {"lat": round(lat, 6), "lng": round(lng, 6)},
            }
        )
    return events


def main() -> None:
    args = parse_args()
    output_dir = args.output_dir.expanduser().resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    targets = [output_dir / plan[0] for plan in TRIP_PLANS]
    if not args.force and all(path.exists() for path in targets):
        print(f"Sample data already present at: {output_dir}")
        return

    rng = np.random.default_rng(args.seed)
    for filename, start_h, duration_h, ping_min, terminal, terminal_h, origin in TRIP_PLANS:
        events = _generate_trip(
            Path(filename).stem,
            start_h,
            duration_h,
            ping_min,
            terminal,
            terminal_h,
            origin,
            rng,
        )
        (output_dir / filename).write_text(json.dumps(events, indent=2), encoding="utf-8")
    print(f"Synthetic fleet data prepared at: {output_dir}")


if __name__ == "__main__":
    main()
