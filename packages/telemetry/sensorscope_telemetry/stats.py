"""Session-lifetime running statistics keyed by metric name."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from .models import StatSummary


@dataclass(frozen=True)
class KeyFilter:
    """Accept only values in ``[low, high]`` for keys containing ``substring``."""

    substring: str
    low: float
    high: float

    def matches(self, key: str) -> bool:
        return self.substring in key

    def accepts(self, value: float) -> bool:
        return self.low <= value <= self.high


DEFAULT_FILTERS = (KeyFilter("power", 0.0, 1000.0),)


@dataclass
class StatRecord:
    min: float
    max: float
    sum: float
    count: int
    current: float
    valid_count: int

    def summary(self) -> StatSummary:
        return StatSummary(
            current=self.current,
            min=self.min,
            max=self.max,
            avg=self.sum / self.valid_count,
        )


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


class StatsTracker:
    """Incremental min/max/avg/current per key.

    Records are never reset: min only decreases and max only increases for the
    lifetime of the tracker. ``last_valid_value`` keeps the most recent accepted
    reading so callers can show a last known good value for intermittent sensors.
    """

    def __init__(self, filters: Iterable[KeyFilter] = DEFAULT_FILTERS) -> None:
        self._filters = tuple(filters)
        self._records: dict[str, StatRecord] = {}
        self._last_valid: dict[str, float] = {}
        self._seen: dict[str, int] = {}

    def update(self, key: str, value: Any) -> bool:
        number = _as_number(value)
        if number is None:
            return False

        self._seen[key] = self._seen.get(key, 0) + 1
        for key_filter in self._filters:
            if key_filter.matches(key) and not key_filter.accepts(number):
                return False

        record = self._records.get(key)
        if record is None:
            self._records[key] = StatRecord(
                min=number,
                max=number,
                sum=number,
                count=self._seen[key],
                current=number,
                valid_count=1,
            )
        else:
            record.min = min(record.min, number)
            record.max = max(record.max, number)
            record.sum += number
            record.count = self._seen[key]
            record.current = number
            record.valid_count += 1
        self._last_valid[key] = number
        return True

    def get(self, key: str) -> StatSummary | None:
        record = self._records.get(key)
        return record.summary() if record is not None else None

    def get_all(self) -> dict[str, StatSummary]:
        return {key: record.summary() for key, record in self._records.items()}

    def record(self, key: str) -> StatRecord | None:
        return self._records.get(key)

    def has_last_valid_value(self, key: str) -> bool:
        return key in self._last_valid

    def last_valid_value(self, key: str) -> float | None:
        return self._last_valid.get(key)

    def keys(self) -> list[str]:
        return list(self._records)
