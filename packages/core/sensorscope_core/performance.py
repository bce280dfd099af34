"""Self-overhead budgeting for the sampling loop."""

from __future__ import annotations

from dataclasses import dataclass

import psutil


@dataclass(frozen=True)
class PerformanceTargets:
    cpu_percent_max: float = 5.0
    rss_mb_max: float = 200.0


@dataclass(frozen=True)
class BudgetStatus:
    cpu_percent: float
    rss_mb: float
    fetch_ms: float
    poll_ms: int
    overloaded: bool
    warning: str | None


class PerformanceController:
    def __init__(self, targets: PerformanceTargets | None = None, process: psutil.Process | None = None) -> None:
        self.targets = targets or PerformanceTargets()
        self._process = process or psutil.Process()
        # Prime non-blocking CPU measurement.
        self._process.cpu_percent(interval=None)

    def sample(self, fetch_ms: float, poll_ms: int) -> BudgetStatus:
        cpu = float(self._process.cpu_percent(interval=None))
        rss_mb = float(self._process.memory_info().rss) / (1024 * 1024)
        overloaded = cpu > self.targets.cpu_percent_max or rss_mb > self.targets.rss_mb_max

        warning = None
        if overloaded:
            warning = "resource_overload"
        elif fetch_ms > poll_ms:
            warning = "fetch_slower_than_poll"

        return BudgetStatus(
            cpu_percent=cpu,
            rss_mb=rss_mb,
            fetch_ms=float(fetch_ms),
            poll_ms=int(poll_ms),
            overloaded=overloaded,
            warning=warning,
        )
