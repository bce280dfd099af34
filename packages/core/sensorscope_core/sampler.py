"""Fixed-cadence sampling loop with tick skipping, cache sweeps and overhead checks."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sensorscope_telemetry import FetchCycleError, Snapshot, SnapshotAssembler, TieredCache

from .performance import BudgetStatus, PerformanceController


_log = logging.getLogger("sensorscope.sampler")


@dataclass
class SamplerStatus:
    running: bool = False
    ticks: int = 0
    snapshots: int = 0
    skipped_ticks: int = 0
    failed_cycles: int = 0
    sweeps: int = 0
    last_fetch_ms: float = 0.0
    last_error: str | None = None
    cpu_percent: float = 0.0
    rss_mb: float = 0.0


class SamplingLoop:
    """Drives ``SnapshotAssembler.fetch`` on a fixed grid of ``poll_ms``.

    Ticks that came due while a fetch was still running are skipped, never queued.
    A failed cycle is logged and the loop keeps ticking.
    """

    def __init__(
        self,
        assembler: SnapshotAssembler,
        cache: TieredCache,
        poll_ms: int = 100,
        sweep_interval_s: float = 120.0,
        on_snapshot: Callable[[Snapshot], None] | None = None,
        performance: PerformanceController | None = None,
        performance_every_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.assembler = assembler
        self.cache = cache
        self.poll_ms = poll_ms
        self.sweep_interval_s = sweep_interval_s
        self.on_snapshot = on_snapshot
        self.performance = performance
        self.performance_every_s = performance_every_s
        self._clock = clock

        self._status = SamplerStatus()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._events: list[dict[str, Any]] = []
        self._last_sweep_at: float | None = None
        self._last_budget_at: float | None = None

    @property
    def status(self) -> SamplerStatus:
        return self._status

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return self._events[-limit:]

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "ticks": self._status.ticks,
        }
        row.update(fields)
        self._events.append(row)
        if len(self._events) > 1000:
            self._events = self._events[-1000:]

    def tick(self) -> Snapshot | None:
        with self._lock:
            self._status.ticks += 1
            start = time.perf_counter()
            try:
                snapshot = self.assembler.fetch()
            except FetchCycleError as exc:
                self._status.failed_cycles += 1
                self._status.last_error = str(exc)
                self._log_event("fetch_failed", error=str(exc))
                _log.error("fetch cycle failed", exc_info=True, extra={"event": "fetch_failed"})
                snapshot = None
            else:
                if snapshot is None:
                    self._status.skipped_ticks += 1
                    self._log_event("tick_skipped", reason="busy")
                else:
                    self._status.snapshots += 1
                    self._status.last_error = None
            self._status.last_fetch_ms = (time.perf_counter() - start) * 1000.0

            now = self._clock()
            self._maybe_sweep(now)
            self._maybe_check_budget(now)

        if snapshot is not None and self.on_snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    def _maybe_sweep(self, now: float) -> None:
        if self._last_sweep_at is None:
            self._last_sweep_at = now
            return
        if now - self._last_sweep_at < self.sweep_interval_s:
            return
        self._last_sweep_at = now
        dropped = self.cache.sweep(now)
        self._status.sweeps += 1
        if dropped:
            self._log_event("cache_swept", tiers=[tier.value for tier in dropped])
            _log.info(
                "dropped stale cache tiers %s",
                ",".join(tier.value for tier in dropped),
                extra={"event": "cache_swept"},
            )

    def _maybe_check_budget(self, now: float) -> BudgetStatus | None:
        if self.performance is None:
            return None
        if self._last_budget_at is not None and now - self._last_budget_at < self.performance_every_s:
            return None
        self._last_budget_at = now
        budget = self.performance.sample(self._status.last_fetch_ms, self.poll_ms)
        self._status.cpu_percent = budget.cpu_percent
        self._status.rss_mb = budget.rss_mb
        if budget.warning is not None:
            self._log_event(
                "budget_warning",
                warning=budget.warning,
                cpu_percent=budget.cpu_percent,
                rss_mb=budget.rss_mb,
                fetch_ms=budget.fetch_ms,
            )
            _log.warning(
                "sampler over budget: %s cpu=%.1f%% rss=%.1fMB fetch=%.1fms",
                budget.warning,
                budget.cpu_percent,
                budget.rss_mb,
                budget.fetch_ms,
                extra={"event": "budget_warning"},
            )
        return budget

    def run_for(self, seconds: float | None = None) -> None:
        """Run on the calling thread until ``seconds`` elapse or ``stop()`` is called."""
        self._stop.clear()
        self._run(None if seconds is None else self._clock() + seconds)

    def _run(self, deadline: float | None) -> None:
        interval = self.poll_ms / 1000.0
        self._status.running = True
        self._log_event("loop_start", poll_ms=self.poll_ms)
        try:
            next_tick = self._clock()
            while not self._stop.is_set():
                if deadline is not None and self._clock() >= deadline:
                    break
                self.tick()
                next_tick += interval
                now = self._clock()
                if now > next_tick:
                    missed = int((now - next_tick) // interval) + 1
                    self._status.skipped_ticks += missed
                    next_tick += missed * interval
                    self._log_event("tick_skipped", reason="overrun", missed=missed)
                wait_for = next_tick - now
                if deadline is not None:
                    wait_for = min(wait_for, max(0.0, deadline - now))
                self._stop.wait(max(0.0, wait_for))
        finally:
            self._status.running = False
            self._log_event("loop_stop")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(None,), name="sensorscope-sampler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
