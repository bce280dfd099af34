"""Cumulative counter to smoothed per-second rate conversion."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field


COUNTER_RANGE_32 = 2**32


@dataclass(frozen=True)
class RateBounds:
    """Plausibility window for one counter family.

    A sample is rejected when the time delta is ``<= min_interval_s`` or
    ``>= max_interval_s``, or when the rate falls outside ``[0, upper_bound)``.
    """

    min_interval_s: float = 0.1
    max_interval_s: float = 10.0
    upper_bound: float = math.inf


@dataclass
class CounterState:
    previous_value: int
    previous_timestamp: float
    history: deque[float] = field(default_factory=lambda: deque(maxlen=100))
    accumulated: float = 0.0


class RateCounter:
    def __init__(self, history_size: int = 100, smoothing_window: int = 10) -> None:
        self.history_size = max(1, int(history_size))
        self.smoothing_window = max(1, min(int(smoothing_window), self.history_size))
        self._states: dict[str, CounterState] = {}

    def observe(
        self,
        key: str,
        raw_value: int,
        timestamp: float,
        *,
        counter_range: int | None = None,
        scale: float = 1.0,
        bounds: RateBounds | None = None,
    ) -> float | None:
        """Fold one raw reading; return the smoothed rate or ``None``.

        ``scale`` converts counter units into the target unit before dividing by
        seconds (``1e-6`` turns microjoules into joules, so the rate is watts).
        """
        bounds = bounds or RateBounds()
        state = self._states.get(key)
        if state is None:
            self._states[key] = CounterState(
                previous_value=raw_value,
                previous_timestamp=timestamp,
                history=deque(maxlen=self.history_size),
            )
            return None

        try:
            delta = raw_value - state.previous_value
            if delta < 0:
                if counter_range is None:
                    # Unbounded counter went backwards: hardware reset, start over.
                    return None
                delta = raw_value + (counter_range - state.previous_value)

            elapsed = timestamp - state.previous_timestamp
            if elapsed <= bounds.min_interval_s or elapsed >= bounds.max_interval_s:
                return None

            rate = (delta * scale) / elapsed
            if not (0.0 <= rate < bounds.upper_bound):
                return None

            state.history.append(rate)
            state.accumulated += delta * scale
            recent = list(state.history)[-self.smoothing_window:]
            return sum(recent) / len(recent)
        finally:
            state.previous_value = raw_value
            state.previous_timestamp = timestamp

    def state(self, key: str) -> CounterState | None:
        return self._states.get(key)

    def accumulated(self, key: str) -> float:
        state = self._states.get(key)
        return state.accumulated if state is not None else 0.0
