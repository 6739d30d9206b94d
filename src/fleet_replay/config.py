from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from .ingestion import parse_timestamp_ms


DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "auto"
DEFAULT_TICK_INTERVAL_SEC = 1.0
DEFAULT_TICK_MS = 1000
DEFAULT_SPEED = 1.0
DEFAULT_FALLBACK_START = "2025-11-03T08:00:00.000Z"
DEFAULT_RECENT_EVENTS = 5

_VALID_LOG_FORMATS = {"auto", "json", "console"}
_VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


@dataclass(frozen=True)
class RuntimeConfig:
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    data_dir: str | None = None
    tick_interval_sec: float = DEFAULT_TICK_INTERVAL_SEC
    tick_ms: int = DEFAULT_TICK_MS
    speed: float = DEFAULT_SPEED
    fallback_start_ms: int = parse_timestamp_ms(DEFAULT_FALLBACK_START)
    recent_events: int = DEFAULT_RECENT_EVENTS


def normalize_log_level(value: str) -> str:
    level = str(value).strip().upper()
    if level in _VALID_LOG_LEVELS:
        return level

    # Also allow numeric logging levels.
    try:
        numeric = int(level)
    except ValueError as exc:
        raise ValueError(
            f"Invalid FLEET_REPLAY_LOG_LEVEL '{value}'. "
            f"Expected one of {sorted(_VALID_LOG_LEVELS)} or a numeric level."
        ) from exc

    if numeric < 0:
        raise ValueError(
            f"Invalid FLEET_REPLAY_LOG_LEVEL '{value}'. Numeric levels must be >= 0."
        )
    return str(numeric)


def normalize_log_format(value: str) -> str:
    fmt = str(value).strip().lower()
    if fmt not in _VALID_LOG_FORMATS:
        raise ValueError(
            f"Invalid FLEET_REPLAY_LOG_FORMAT '{value}'. "
            f"Expected one of {sorted(_VALID_LOG_FORMATS)}."
        )
    return fmt


def parse_positive_float(value: str, *, env_var: str) -> float:
    try:
        parsed = float(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid {env_var} '{value}'. Expected a positive float.") from exc
    if not math.isfinite(parsed) or parsed <= 0:
        raise ValueError(f"Invalid {env_var} '{value}'. Value must be > 0.")
    return parsed


def parse_positive_int(value: str, *, env_var: str) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid {env_var} '{value}'. Expected a positive integer.") from exc
    if parsed <= 0:
        raise ValueError(f"Invalid {env_var} '{value}'. Value must be > 0.")
    return parsed


def parse_non_negative_int(value: str, *, env_var: str) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(
            f"Invalid {env_var} '{value}'. Expected a non-negative integer."
        ) from exc
    if parsed < 0:
        raise ValueError(f"Invalid {env_var} '{value}'. Value must be >= 0.")
    return parsed


def parse_optional_dir(value: str, *, env_var: str) -> str | None:
    stripped = str(value).strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def parse_instant(value: str, *, env_var: str) -> int:
    try:
        return parse_timestamp_ms(str(value).strip())
    except ValueError as exc:
        raise ValueError(
            f"Invalid {env_var} '{value}'. Expected an ISO-8601 timestamp."
        ) from exc


def load_runtime_config(env: Mapping[str, str] | None = None) -> RuntimeConfig:
    if env is None:
        load_dotenv(override=False)
    source = env if env is not None else os.environ

    log_level = normalize_log_level(source.get("FLEET_REPLAY_LOG_LEVEL", DEFAULT_LOG_LEVEL))
    log_format = normalize_log_format(source.get("FLEET_REPLAY_LOG_FORMAT", DEFAULT_LOG_FORMAT))
    data_dir = parse_optional_dir(
        source.get("FLEET_REPLAY_DATA_DIR", ""),
        env_var="FLEET_REPLAY_DATA_DIR",
    )
    tick_interval_sec = parse_positive_float(
        source.get("FLEET_REPLAY_TICK_INTERVAL_SEC", str(DEFAULT_TICK_INTERVAL_SEC)),
        env_var="FLEET_REPLAY_TICK_INTERVAL_SEC",
    )
    tick_ms = parse_positive_int(
        source.get("FLEET_REPLAY_TICK_MS", str(DEFAULT_TICK_MS)),
        env_var="FLEET_REPLAY_TICK_MS",
    )
    speed = parse_positive_float(
        source.get("FLEET_REPLAY_SPEED", str(DEFAULT_SPEED)),
        env_var="FLEET_REPLAY_SPEED",
    )
    fallback_start_ms = parse_instant(
        source.get("FLEET_REPLAY_FALLBACK_START", DEFAULT_FALLBACK_START),
        env_var="FLEET_REPLAY_FALLBACK_START",
    )
    recent_events = parse_non_negative_int(
        source.get("FLEET_REPLAY_RECENT_EVENTS", str(DEFAULT_RECENT_EVENTS)),
        env_var="FLEET_REPLAY_RECENT_EVENTS",
    )

    return RuntimeConfig(
        log_level=log_level,
        log_format=log_format,
        data_dir=data_dir,
        tick_interval_sec=tick_interval_sec,
        tick_ms=tick_ms,
        speed=speed,
        fallback_start_ms=fallback_start_ms,
        recent_events=recent_events,
    )
