from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from .config import RuntimeConfig, load_runtime_config, normalize_log_format, normalize_log_level
from .fleet import format_sim_time, snapshot_to_dict
from .ingestion import TripLoader, TripLoadError, parse_timestamp_ms
from .logging_config import configure_logging, get_logger, log_event
from .models import SPEED_OPTIONS, FleetSnapshot
from .simulation import FleetSimulation


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DEFAULT_TIMELINE_OUTPUT = DEFAULT_ARTIFACTS_DIR / "fleet_timeline.csv"

DEFAULT_RUN_ID = "replay-run"
DEFAULT_STEP_SEC = 900.0
DEFAULT_REPLAY_TICKS = 10


def _resolve_optional_arg(args: argparse.Namespace, name: str, fallback: Any) -> Any:
    value = getattr(args, name, None)
    return fallback if value is None else value


def _resolve_runtime_config(args: argparse.Namespace) -> RuntimeConfig:
    runtime = load_runtime_config()
    if getattr(args, "log_level", None):
        runtime = replace(runtime, log_level=normalize_log_level(args.log_level))
    if getattr(args, "log_format", None):
        runtime = replace(runtime, log_format=normalize_log_format(args.log_format))
    return runtime


def _resolve_data_dir(args: argparse.Namespace, runtime: RuntimeConfig) -> Path:
    raw = _resolve_optional_arg(args, "data_dir", runtime.data_dir)
    path = Path(raw) if raw is not None else DEFAULT_DATA_DIR
    return path.expanduser().resolve()


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number, got '{raw}'") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"value must be > 0, got '{raw}'")
    return value


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{raw}'") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"value must be > 0, got '{raw}'")
    return value


def _make_simulation(
    args: argparse.Namespace,
    runtime: RuntimeConfig,
    logger: Any,
) -> FleetSimulation:
    data_dir = _resolve_data_dir(args, runtime)
    log_event(logger, "info", "trips_loading", run_id=args.run_id, data_dir=str(data_dir))
    trips = TripLoader(data_dir=data_dir).load_trips()

    simulation = FleetSimulation(
        speed=float(_resolve_optional_arg(args, "speed", runtime.speed)),
        tick_ms=runtime.tick_ms,
        fallback_start_ms=runtime.fallback_start_ms,
        recent_events=runtime.recent_events,
    )
    simulation.load_trips(trips)
    return simulation


def _summary_fields(snapshot: FleetSnapshot) -> dict[str, Any]:
    return {
        "sim_time": format_sim_time(snapshot.at_ms),
        **snapshot.summary.as_dict(),
    }


def _cmd_snapshot(args: argparse.Namespace, runtime: RuntimeConfig, logger: Any) -> int:
    simulation = _make_simulation(args, runtime, logger)
    at_ms: float | None = None
    if args.at is not None:
        at_ms = float(parse_timestamp_ms(args.at))
    elif args.offset_sec is not None:
        at_ms = simulation.clock.initial_time_ms + float(args.offset_sec) * 1000.0

    snapshot = simulation.snapshot(at_ms=at_ms)
    payload = json.dumps(snapshot_to_dict(snapshot), indent=2)

    if args.output is None:
        sys.stdout.write(payload + "\n")
    else:
        output_path = args.output.expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload, encoding="utf-8")

    log_event(
        logger,
        "info",
        "snapshot_complete",
        run_id=args.run_id,
        output_path=str(args.output) if args.output is not None else "-",
        **_summary_fields(snapshot),
    )
    return 0


def _cmd_timeline(args: argparse.Namespace, runtime: RuntimeConfig, logger: Any) -> int:
    started = time.perf_counter()
    simulation = _make_simulation(args, runtime, logger)
    until_ms = float(parse_timestamp_ms(args.until)) if args.until is not None else None
    timeline_df = simulation.timeline(step_ms=args.step_sec * 1000.0, until_ms=until_ms)

    output_path = args.output.expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    timeline_df.to_csv(output_path, index=False)

    elapsed = time.perf_counter() - started
    log_event(
        logger,
        "info",
        "timeline_complete",
        run_id=args.run_id,
        rows=int(len(timeline_df)),
        output_path=str(output_path),
        elapsed_sec=round(elapsed, 3),
    )
    return 0


def _cmd_replay(args: argparse.Namespace, runtime: RuntimeConfig, logger: Any) -> int:
    simulation = _make_simulation(args, runtime, logger)
    interval_sec = float(
        _resolve_optional_arg(args, "tick_interval_sec", runtime.tick_interval_sec)
    )
    done = threading.Event()
    ticks_seen = 0

    def _on_snapshot(snapshot: FleetSnapshot) -> None:
        nonlocal ticks_seen
        ticks_seen += 1
        log_event(logger, "info", "replay_tick", run_id=args.run_id, **_summary_fields(snapshot))
        if ticks_seen >= args.ticks:
            done.set()

    initial = simulation.snapshot()
    log_event(logger, "info", "replay_start", run_id=args.run_id, **_summary_fields(initial))

    runner = simulation.start(listener=_on_snapshot, interval_sec=interval_sec, max_ticks=args.ticks)
    try:
        while not done.wait(interval_sec) and runner.running:
            pass
    finally:
        simulation.stop(timeout=interval_sec * 2)

    final = simulation.snapshot()
    log_event(
        logger,
        "info",
        "replay_complete",
        run_id=args.run_id,
        ticks=runner.ticks_fired,
        snapshots_delivered=ticks_seen,
        **_summary_fields(final),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--run-id",
        type=str,
        default=DEFAULT_RUN_ID,
        help=f"Run identifier for logs. Default: {DEFAULT_RUN_ID}",
    )
    common.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    common.add_argument(
        "--log-format",
        type=str,
        default=None,
        help="Override log format (auto, json, console).",
    )
    common.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help=f"Directory of per-trip JSON event logs. Default: FLEET_REPLAY_DATA_DIR or {DEFAULT_DATA_DIR}",
    )

    parser = argparse.ArgumentParser(
        prog="fleet-replay",
        description="Replay historical fleet telemetry against a virtual clock.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_snapshot = subparsers.add_parser(
        "snapshot", parents=[common], description="Derive per-trip state and fleet counts at one instant."
    )
    when = parser_snapshot.add_mutually_exclusive_group()
    when.add_argument(
        "--at",
        type=str,
        default=None,
        help="ISO-8601 simulation instant. Default: the fleet's initial time.",
    )
    when.add_argument(
        "--offset-sec",
        type=float,
        default=None,
        help="Simulation instant as seconds after the fleet's initial time.",
    )
    parser_snapshot.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output JSON path. Default: stdout.",
    )
    parser_snapshot.set_defaults(handler=_cmd_snapshot)

    parser_timeline = subparsers.add_parser(
        "timeline", parents=[common], description="Export fleet status counts over simulated time."
    )
    parser_timeline.add_argument(
        "--step-sec",
        type=_positive_float,
        default=DEFAULT_STEP_SEC,
        help=f"Simulated seconds between samples. Default: {DEFAULT_STEP_SEC}",
    )
    parser_timeline.add_argument(
        "--until",
        type=str,
        default=None,
        help="ISO-8601 end instant. Default: the latest event in the fleet.",
    )
    parser_timeline.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_TIMELINE_OUTPUT,
        help=f"Output CSV path. Default: {DEFAULT_TIMELINE_OUTPUT}",
    )
    parser_timeline.set_defaults(handler=_cmd_timeline)

    parser_replay = subparsers.add_parser(
        "replay", parents=[common], description="Run the live replay clock and log fleet counts per tick."
    )
    parser_replay.add_argument(
        "--speed",
        type=_positive_float,
        default=None,
        help=f"Playback speed multiplier (presets: {', '.join(map(str, SPEED_OPTIONS))}).",
    )
    parser_replay.add_argument(
        "--ticks",
        type=_positive_int,
        default=DEFAULT_REPLAY_TICKS,
        help=f"Number of ticks to run before exiting. Default: {DEFAULT_REPLAY_TICKS}",
    )
    parser_replay.add_argument(
        "--tick-interval-sec",
        type=_positive_float,
        default=None,
        help="Real seconds between ticks. Default: FLEET_REPLAY_TICK_INTERVAL_SEC or 1.0",
    )
    parser_replay.set_defaults(handler=_cmd_replay)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    runtime = _resolve_runtime_config(args)
    effective_log_format = configure_logging(runtime.log_level, runtime.log_format)
    logger = get_logger("fleet_replay.cli")
    log_event(
        logger,
        "info",
        "command_start",
        run_id=args.run_id,
        command=args.command,
        log_level=runtime.log_level,
        log_format=effective_log_format,
    )

    try:
        return int(args.handler(args, runtime, logger))
    except KeyboardInterrupt:
        log_event(
            logger,
            "warning",
            "command_interrupted",
            run_id=args.run_id,
            command=args.command,
        )
        return 130
    except (TripLoadError, ValueError, OSError, json.JSONDecodeError) as exc:
        log_event(
            logger,
            "error",
            "command_failed",
            run_id=args.run_id,
            command=args.command,
            error=str(exc),
        )
        return 1
