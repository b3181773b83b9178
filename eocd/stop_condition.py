"""
Multi-criteria stop condition for the ensemble optimizer.

Four independent counters are tracked while a search runs:
    - evaluations performed
    - generations (steps) completed
    - generations without improvement of the best cost
    - elapsed milliseconds

Each counter has a (min, max) pair. The search keeps running until the
evaluations, generations or time counter reaches its maximum. The
no-improvement maximum only stops the search once every minimum has been
reached, so early noisy generations cannot end the run prematurely.

Elapsed time is refreshed by a background ticker thread that wakes every
250 ms and exits by itself once the condition stops running.
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)

UNBOUNDED = None
TICK_SECONDS = 0.25


class _Bound:
    """One bounded counter: count plus (min, max) flags."""

    def __init__(self, min_value, max_value):
        if max_value is not None and min_value > max_value:
            raise ValueError(f"minimum {min_value} is greater than maximum {max_value}")
        self.min_value = min_value
        self.max_value = max_value
        self.count = 0

    def reset(self):
        self.count = 0

    def add(self, value):
        self.count += value

    def min_reached(self):
        return self.count >= self.min_value

    def max_reached(self):
        return self.max_value is not None and self.count >= self.max_value


def _normalize_max(value):
    # -1 is accepted as "unbounded" as well as None
    if value is None or value < 0:
        return UNBOUNDED
    return value


class StopCondition:
    """
    Termination tracker shared between the GA loop and a time ticker.

    Parameters:
    -----------
    min_evaluations, max_evaluations : int
        Bounds on objective evaluations.
    min_generations, max_generations : int
        Bounds on completed generations.
    max_no_improvement : int
        Generations allowed without a new best solution.
    min_seconds, max_seconds : int
        Wall-clock bounds in seconds.

    Any maximum given as None (or -1) is unbounded.
    """

    def __init__(self, min_evaluations=0, max_evaluations=None,
                 min_generations=0, max_generations=None,
                 max_no_improvement=None,
                 min_seconds=0, max_seconds=None):
        if min_evaluations < 0 or min_generations < 0 or min_seconds < 0:
            raise ValueError("minimum bounds must be non-negative")

        max_seconds = _normalize_max(max_seconds)

        self.evaluations = _Bound(min_evaluations, _normalize_max(max_evaluations))
        self.generations = _Bound(min_generations, _normalize_max(max_generations))
        self.no_improvement = _Bound(0, _normalize_max(max_no_improvement))
        self.milliseconds = _Bound(min_seconds * 1000,
                                   None if max_seconds is None else max_seconds * 1000)

        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._running = False
        self._start_time = 0.0
        self._ticker = None

    # ------------ lifecycle ------------

    def reset(self):
        with self._lock:
            self._running = False
            self.evaluations.reset()
            self.generations.reset()
            self.no_improvement.reset()
            self.milliseconds.reset()

    def start(self):
        """Reset every counter and start tracking wall-clock time."""
        self.reset()
        with self._lock:
            self._start_time = time.monotonic()
            self._running = True
            self._stopped.clear()

        self._ticker = threading.Thread(target=self._tick, name="stop-condition-ticker", daemon=True)
        self._ticker.start()

    def stop(self):
        """Freeze elapsed time. Calling it twice is harmless."""
        with self._lock:
            if self._running:
                self._update_time()
                self._running = False
        self._stopped.set()

    def _tick(self):
        while True:
            with self._lock:
                if not self._is_running_locked() or self.milliseconds.max_reached():
                    return
                self._update_time()
            if self._stopped.wait(TICK_SECONDS):
                return

    def _update_time(self):
        self.milliseconds.count = int((time.monotonic() - self._start_time) * 1000)

    # ------------ events from the optimizer ------------

    def evaluation(self):
        with self._lock:
            if self._running:
                self.evaluations.add(1)

    def iteration(self):
        with self._lock:
            if self._running:
                self.generations.add(1)
                self.no_improvement.add(1)

    def record_improvement(self):
        with self._lock:
            if self._running:
                self.no_improvement.reset()

    # ------------ queries ------------

    def _minimums_reached(self):
        return (self.evaluations.min_reached()
                and self.generations.min_reached()
                and self.milliseconds.min_reached())

    def _is_running_locked(self):
        if not self._running:
            return False
        if (self.evaluations.max_reached()
                or self.generations.max_reached()
                or self.milliseconds.max_reached()):
            return False
        # stagnation only counts once the baseline search has been done
        if self.no_improvement.max_reached() and self._minimums_reached():
            return False
        return True

    def is_running(self):
        with self._lock:
            return self._is_running_locked()

    def performed_evaluations(self):
        return self.evaluations.count

    def performed_iterations(self):
        return self.generations.count

    def performed_iterations_without_improvement(self):
        return self.no_improvement.count

    def performed_seconds(self):
        return self.milliseconds.count // 1000

    def max_allowed_evaluations(self):
        return self.evaluations.max_value

    def max_allowed_iterations(self):
        return self.generations.max_value

    def max_allowed_iterations_without_improvement(self):
        return self.no_improvement.max_value

    def max_allowed_seconds(self):
        if self.milliseconds.max_value is None:
            return None
        return self.milliseconds.max_value // 1000

    def __str__(self):
        labels = ["Steps", "NoUpdate", "Evaluations", "Seconds"]
        maxima = [self.max_allowed_iterations(),
                  self.max_allowed_iterations_without_improvement(),
                  self.max_allowed_evaluations(),
                  self.max_allowed_seconds()]
        current = [self.performed_iterations(),
                   self.performed_iterations_without_improvement(),
                   self.performed_evaluations(),
                   self.performed_seconds()]

        parts = ["StopCondition:"]
        for label, cur, top in zip(labels, current, maxima):
            if top is not None:
                parts.append(f"{label}({cur}/{top})")
            else:
                parts.append(f"{label}({cur})")
        return " ".join(parts)
