from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

from .ingestion import parse_timestamp_ms
from .logging_config import get_logger, log_event
from .models import ClockState, Trip


DEFAULT_FALLBACK_START_MS = parse_timestamp_ms("2025-11-03T08:00:00.000Z")
DEFAULT_TICK_MS = 1000
DEFAULT_TICK_INTERVAL_SEC = 1.0

TickListener = Callable[[ClockState], Any]

_logger = get_logger("fleet_replay.clock")


def initial_time_for(trips: Sequence[Trip], fallback_ms: int = DEFAULT_FALLBACK_START_MS) -> int:
    """Earliest first-event time across trips; trips without events are ignored."""
    firsts = [trip.first_event_ms for trip in trips if trip.first_event_ms is not None]
    return min(firsts) if firsts else int(fallback_ms)


def validate_speed(speed: float) -> float:
    if isinstance(speed, bool):
        raise ValueError(f"Invalid speed multiplier {speed!r}. Value must be a number > 0.")
    try:
        value = float(speed)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid speed multiplier {speed!r}. Value must be a number > 0.") from exc
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Invalid speed multiplier {speed!r}. Value must be a number > 0.")
    return value


class SimulationClock:
    """Virtual replay clock.

    All state changes go through one lock, so a reader calling :meth:`state`
    never observes a tick or reset half applied, and speed or play changes land
    between ticks rather than inside one.
    """

    def __init__(
        self,
        trips: Sequence[Trip] = (),
        speed: float = 1.0,
        tick_ms: int = DEFAULT_TICK_MS,
        fallback_start_ms: int = DEFAULT_FALLBACK_START_MS,
    ) -> None:
        if tick_ms <= 0:
            raise ValueError("tick_ms must be > 0.")
        self.tick_ms = int(tick_ms)
        self.fallback_start_ms = int(fallback_start_ms)
        self._lock = threading.Lock()
        self._speed = validate_speed(speed)
        self._initial_time_ms = initial_time_for(trips, self.fallback_start_ms)
        self._current_time_ms = float(self._initial_time_ms)
        self._playing = True

    def initialize(self, trips: Sequence[Trip]) -> ClockState:
        initial = initial_time_for(trips, self.fallback_start_ms)
        with self._lock:
            self._initial_time_ms = initial
            self._current_time_ms = float(initial)
            self._playing = True
            return self._state_locked()

    def load_trips(self, trips: Sequence[Trip]) -> ClockState:
        """Re-anchor the clock on a new trip set without touching play state."""
        initial = initial_time_for(trips, self.fallback_start_ms)
        with self._lock:
            self._initial_time_ms = initial
            self._current_time_ms = float(initial)
            state = self._state_locked()
        log_event(_logger, "info", "clock_reanchored", trips=len(trips), initial_time_ms=initial)
        return state

    def tick(self) -> bool:
        with self._lock:
            if not self._playing:
                return False
            self._current_time_ms += self.tick_ms * self._speed
            return True

    def set_speed(self, speed: float) -> None:
        value = validate_speed(speed)
        with self._lock:
            self._speed = value
        log_event(_logger, "info", "speed_changed", speed_multiplier=value)

    def toggle_play(self) -> bool:
        with self._lock:
            self._playing = not self._playing
            playing = self._playing
        log_event(_logger, "info", "playback_toggled", playing=playing)
        return playing

    def reset(self) -> ClockState:
        with self._lock:
            self._current_time_ms = float(self._initial_time_ms)
            self._playing = True
            state = self._state_locked()
        log_event(_logger, "info", "clock_reset", initial_time_ms=state.initial_time_ms)
        return state

    def state(self) -> ClockState:
        with self._lock:
            return self._state_locked()

    @property
    def current_time_ms(self) -> float:
        with self._lock:
            return self._current_time_ms

    @property
    def initial_time_ms(self) -> int:
        with self._lock:
            return self._initial_time_ms

    @property
    def speed_multiplier(self) -> float:
        with self._lock:
            return self._speed

    @property
    def playing(self) -> bool:
        with self._lock:
            return self._playing

    def _state_locked(self) -> ClockState:
        return ClockState(
            current_time_ms=self._current_time_ms,
            initial_time_ms=self._initial_time_ms,
            speed_multiplier=self._speed,
            playing=self._playing,
        )


class ClockRunner:
    """Advances a clock once per real-time interval on a daemon thread.

    Ticks are scheduled against fixed deadlines, so consumer work never delays
    the next advance. The listener runs on a single worker thread; while it is
    busy, newer states replace older undelivered ones and only the latest is
    handed over once the listener is free.
    """

    def __init__(
        self,
        clock: SimulationClock,
        listener: TickListener | None = None,
        interval_sec: float = DEFAULT_TICK_INTERVAL_SEC,
        max_ticks: int | None = None,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0.")
        if max_ticks is not None and max_ticks <= 0:
            raise ValueError("max_ticks must be > 0.")
        self.clock = clock
        self.listener = listener
        self.interval_sec = float(interval_sec)
        self.max_ticks = max_ticks
        self.ticks_fired = 0
        self.states_delivered = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._delivery_lock = threading.Lock()
        self._pending: ClockState | None = None
        self._delivering = False
        self._local = threading.local()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            raise RuntimeError("ClockRunner is already running.")
        self._stop.clear()
        if self.listener is not None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="fleet-replay-listener"
            )
        self._thread = threading.Thread(
            target=self._run, name="fleet-replay-clock", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        # A listener stopping its own runner must not wait on its own delivery.
        if getattr(self._local, "in_listener", False):
            return
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        next_deadline = time.monotonic() + self.interval_sec
        try:
            while not self._stop.wait(max(0.0, next_deadline - time.monotonic())):
                next_deadline += self.interval_sec
                if not self.clock.tick():
                    continue
                self.ticks_fired += 1
                if self.listener is not None:
                    self._deliver(self.clock.state())
                if self.max_ticks is not None and self.ticks_fired >= self.max_ticks:
                    self._stop.set()
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def _deliver(self, state: ClockState) -> None:
        with self._delivery_lock:
            self._pending = state
            if self._delivering:
                return
            self._delivering = True
        assert self._executor is not None
        self._executor.submit(self._drain)

    def _drain(self) -> None:
        self._local.in_listener = True
        try:
            while True:
                with self._delivery_lock:
                    state = self._pending
                    self._pending = None
                    if state is None:
                        self._delivering = False
                        return
                self.states_delivered += 1
                try:
                    self.listener(state)  # type: ignore[misc]
                except Exception as exc:
                    log_event(
                        _logger,
                        "error",
                        "tick_listener_failed",
                        error=str(exc),
                        ticks_fired=self.ticks_fired,
                    )
        finally:
            self._local.in_listener = False
