from __future__ import annotations

import json
import os
from pathlib import Path
import subprocess
import sys

import pandas as pd
import pytest

from fleet_replay.cli import build_parser, main


PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _pythonpath_env() -> dict[str, str]:
    env = os.environ.copy()
    src_path = str(PROJECT_ROOT / "src")
    existing_pythonpath = env.get("PYTHONPATH")
    env["PYTHONPATH"] = (
        src_path if not existing_pythonpath else f"{src_path}{os.pathsep}{existing_pythonpath}"
    )
    env["FLEET_REPLAY_LOG_FORMAT"] = "json"
    return env


def _run_module(args: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "fleet_replay", *args],
        cwd=PROJECT_ROOT,
        env=_pythonpath_env(),
        capture_output=True,
        text=True,
        check=False,
    )


@pytest.fixture
def sample_data_dir(tmp_path: Path) -> Path:
    output_dir = tmp_path / "data"
    result = subprocess.run(
        [
            sys.executable,
            str(PROJECT_ROOT / "scripts" / "prepare_sample_data.py"),
            "--output-dir",
            str(output_dir),
        ],
        cwd=PROJECT_ROOT,
        env=_pythonpath_env(),
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0, (
        f"prepare_sample_data.py failed.\nstdout:\n{result.stdout}\nstderr:\n{result.stderr}"
    )
    return output_dir


def test_python_module_help() -> None:
    result = _run_module(["--help"])
    assert result.returncode == 0, result.stderr
    assert "snapshot" in result.stdout
    assert "timeline" in result.stdout
    assert "replay" in result.stdout


def test_python_module_invalid_command_returns_non_zero() -> None:
    result = _run_module(["not-a-command"])
    assert result.returncode != 0
    assert "invalid choice" in result.stderr.lower()


def test_prepare_sample_data_writes_five_trips(sample_data_dir: Path) -> None:
    files = sorted(path.name for path in sample_data_dir.glob("*.json"))
    assert len(files) == 5
    events = json.loads((sample_data_dir / "trip1crosscountry.json").read_text(encoding="utf-8"))
    assert events[0]["event_type"] == "trip_started"
    assert events[-1]["event_type"] == "trip_completed"


def test_snapshot_writes_json_to_stdout(sample_data_dir: Path) -> None:
    result = _run_module(
        ["snapshot", "--data-dir", str(sample_data_dir), "--offset-sec", str(4 * 3600)]
    )
    assert result.returncode == 0, (
        f"snapshot failed.\nstdout:\n{result.stdout}\nstderr:\n{result.stderr}"
    )
    payload = json.loads(result.stdout)
    summary = payload["summary"]
    assert summary["total"] == 5
    assert (
        summary["completed"] + summary["in_progress"] + summary["cancelled"] + summary["not_started"]
        == 5
    )
    assert summary["cancelled"] == 1
    by_id = {trip["trip_id"]: trip for trip in payload["trips"]}
    assert by_id["trip3mountaincancelled"]["status"] == "Cancelled"
    assert by_id["trip5regionallogistics"]["status"] == "Not Started"
    assert by_id["trip1crosscountry"]["display_name"] == "Cross-Country Long Haul"
    assert payload["clock"]["initial_time_utc"] == "2025-11-03T08:00:00Z"
    assert "snapshot_complete" in result.stderr


def test_snapshot_at_explicit_instant_to_file(sample_data_dir: Path, tmp_path: Path) -> None:
    output = tmp_path / "out" / "snapshot.json"
    result = _run_module(
        [
            "snapshot",
            "--data-dir",
            str(sample_data_dir),
            "--at",
            "2025-11-06T00:00:00Z",
            "--output",
            str(output),
        ]
    )
    assert result.returncode == 0, result.stderr
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["summary"]["completed"] == 3
    assert payload["summary"]["cancelled"] == 1
    assert payload["summary"]["in_progress"] == 1


def test_timeline_writes_csv(sample_data_dir: Path, tmp_path: Path) -> None:
    output = tmp_path / "timeline.csv"
    result = _run_module(
        [
            "timeline",
            "--data-dir",
            str(sample_data_dir),
            "--step-sec",
            "3600",
            "--output",
            str(output),
        ]
    )
    assert result.returncode == 0, result.stderr
    timeline = pd.read_csv(output)
    assert {"sim_time_utc", "total", "completed", "not_started"}.issubset(timeline.columns)
    assert (timeline["total"] == 5).all()
    assert int(timeline["completed"].iloc[-1]) == 3


def test_replay_runs_requested_ticks(sample_data_dir: Path) -> None:
    result = _run_module(
        [
            "replay",
            "--data-dir",
            str(sample_data_dir),
            "--speed",
            "100",
            "--ticks",
            "3",
            "--tick-interval-sec",
            "0.05",
        ]
    )
    assert result.returncode == 0, result.stderr
    assert 1 <= result.stderr.count("replay_tick") <= 3
    records = [json.loads(line) for line in result.stderr.splitlines() if line.startswith("{")]
    complete = [record for record in records if record.get("event") == "replay_complete"]
    assert len(complete) == 1
    assert complete[0]["ticks"] == 3
    assert complete[0]["snapshots_delivered"] == result.stderr.count("replay_tick")


def test_missing_data_dir_returns_error(tmp_path: Path) -> None:
    result = _run_module(["snapshot", "--data-dir", str(tmp_path / "missing")])
    assert result.returncode == 1
    assert "command_failed" in result.stderr


def test_main_returns_error_code_on_bad_instant(sample_data_dir: Path) -> None:
    assert main(["snapshot", "--data-dir", str(sample_data_dir), "--at", "whenever"]) == 1


def test_parser_rejects_non_positive_speed() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["replay", "--speed", "0"])
