from __future__ import annotations

from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd

from .clock import (
    DEFAULT_FALLBACK_START_MS,
    DEFAULT_TICK_INTERVAL_SEC,
    DEFAULT_TICK_MS,
    ClockRunner,
    SimulationClock,
)
from .fleet import DEFAULT_RECENT_EVENTS, aggregate, build_snapshot, ms_to_datetime
from .logging_config import get_logger, log_event
from .models import ClockState, FleetSnapshot, FleetSummary, Trip


SnapshotListener = Callable[[FleetSnapshot], Any]

TIMELINE_COLUMNS = (
    "sim_time_ms",
    "sim_time_utc",
    "total",
    "completed",
    "in_progress",
    "cancelled",
    "not_started",
)

_logger = get_logger("fleet_replay.simulation")


class FleetSimulation:
    """Owns the loaded trips and the replay clock, and derives fleet views on demand."""

    def __init__(
        self,
        trips: Sequence[Trip] = (),
        speed: float = 1.0,
        tick_ms: int = DEFAULT_TICK_MS,
        fallback_start_ms: int = DEFAULT_FALLBACK_START_MS,
        recent_events: int = DEFAULT_RECENT_EVENTS,
    ) -> None:
        if recent_events < 0:
            raise ValueError("recent_events must be >= 0.")
        self._trips: tuple[Trip, ...] = tuple(trips)
        self.recent_events = int(recent_events)
        self.clock = SimulationClock(
            trips=self._trips,
            speed=speed,
            tick_ms=tick_ms,
            fallback_start_ms=fallback_start_ms,
        )
        self._runner: ClockRunner | None = None

    @property
    def trips(self) -> tuple[Trip, ...]:
        return self._trips

    def load_trips(self, trips: Sequence[Trip]) -> ClockState:
        self._trips = tuple(trips)
        state = self.clock.load_trips(self._trips)
        log_event(
            _logger,
            "info",
            "trips_loaded",
            trips=len(self._trips),
            events=sum(len(trip.events) for trip in self._trips),
        )
        return state

    def tick(self) -> bool:
        return self.clock.tick()

    def set_speed(self, speed: float) -> None:
        self.clock.set_speed(speed)

    def toggle_play(self) -> bool:
        return self.clock.toggle_play()

    def reset(self) -> ClockState:
        return self.clock.reset()

    def summary(self, at_ms: float | None = None) -> FleetSummary:
        resolved = self.clock.current_time_ms if at_ms is None else at_ms
        return aggregate(self._trips, resolved)

    def snapshot(self, at_ms: float | None = None) -> FleetSnapshot:
        return build_snapshot(
            self._trips,
            self.clock.state(),
            at_ms=at_ms,
            recent_events=self.recent_events,
        )

    def last_event_ms(self) -> int | None:
        lasts = [trip.last_event_ms for trip in self._trips if trip.last_event_ms is not None]
        return max(lasts) if lasts else None

    def timeline(self, step_ms: float, until_ms: float | None = None) -> pd.DataFrame:
        """Fleet counts sampled every ``step_ms`` from the initial time through ``until_ms``.

        ``until_ms`` defaults to the latest event across the fleet; the final
        sample always lands on it so the closing state is included.
        """
        if step_ms <= 0:
            raise ValueError("step_ms must be > 0.")
        start = float(self.clock.initial_time_ms)
        end_default = self.last_event_ms()
        end = float(until_ms if until_ms is not None else (end_default or start))
        if end < start:
            end = start

        samples = np.arange(start, end, float(step_ms), dtype=np.float64)
        samples = np.append(samples, end)

        rows: list[dict[str, Any]] = []
        for at_ms in samples:
            summary = aggregate(self._trips, float(at_ms))
            rows.append(
                {
                    "sim_time_ms": float(at_ms),
                    "sim_time_utc": ms_to_datetime(float(at_ms)),
                    **summary.as_dict(),
                }
            )
        return pd.DataFrame(rows, columns=list(TIMELINE_COLUMNS))

    def start(
        self,
        listener: SnapshotListener | None = None,
        interval_sec: float = DEFAULT_TICK_INTERVAL_SEC,
        max_ticks: int | None = None,
    ) -> ClockRunner:
        if self._runner is not None and self._runner.running:
            raise RuntimeError("Simulation is already running.")

        def _on_tick(state: ClockState) -> None:
            if listener is not None:
                listener(self.snapshot(at_ms=state.current_time_ms))

        self._runner = ClockRunner(
            self.clock,
            listener=_on_tick,
            interval_sec=interval_sec,
            max_ticks=max_ticks,
        )
        self._runner.start()
        log_event(
            _logger,
            "info",
            "simulation_started",
            interval_sec=interval_sec,
            speed_multiplier=self.clock.speed_multiplier,
        )
        return self._runner

    def stop(self, timeout: float | None = None) -> None:
        if self._runner is None:
            return
        self._runner.stop(timeout)
        log_event(_logger, "info", "simulation_stopped", ticks_fired=self._runner.ticks_fired)
        self._runner = None
