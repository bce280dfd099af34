"""Snapshot assembly: tiered refresh, concurrent fan-out, rate derivation, stats fold."""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from .cache import Tier, TieredCache
from .metrics import metric_leaves, power_key
from .models import (
    BatteryMetrics,
    CpuLoad,
    CpuMetrics,
    DiskIORate,
    DiskMetrics,
    EnergyCounter,
    NetworkInterface,
    PowerDomain,
    Snapshot,
    SystemInfo,
)
from .providers import Category, ProviderDispatch
from .rates import COUNTER_RANGE_32, RateBounds, RateCounter
from .smart import SmartCollector
from .stats import StatsTracker


_log = logging.getLogger("sensorscope.telemetry.assembler")

SMART_JOB = "smart"

TIER_CATEGORIES: dict[Tier, tuple[Category, ...]] = {
    Tier.STATIC: (Category.SYSTEM_INFO, Category.DISK_LAYOUT),
    Tier.MEDIUM: (
        Category.BATTERY,
        Category.FANS,
        Category.POWER_SENSORS,
        Category.ENERGY_COUNTERS,
        Category.DISK_TEMPERATURES,
        Category.CPU_TEMPERATURES,
        Category.SYSTEM_TEMPERATURES,
        Category.DDR5_TEMPERATURES,
    ),
}

FAST_CATEGORIES: tuple[Category, ...] = (
    Category.CPU_LOAD,
    Category.CPU_FREQUENCIES,
    Category.MEMORY,
    Category.DISK_COUNTERS,
    Category.NETWORK_COUNTERS,
    Category.GPUS,
)

REQUIRED_CATEGORIES = frozenset({Category.CPU_LOAD, Category.MEMORY})

_DEFAULTS: dict[str, Callable[[], Any]] = {
    Category.SYSTEM_INFO.value: SystemInfo,
    Category.DISK_LAYOUT.value: tuple,
    Category.BATTERY.value: lambda: None,
    Category.FANS.value: tuple,
    Category.POWER_SENSORS.value: tuple,
    Category.ENERGY_COUNTERS.value: dict,
    Category.DISK_TEMPERATURES.value: dict,
    Category.CPU_TEMPERATURES.value: tuple,
    Category.SYSTEM_TEMPERATURES.value: tuple,
    Category.DDR5_TEMPERATURES.value: tuple,
    Category.CPU_FREQUENCIES.value: tuple,
    Category.DISK_COUNTERS.value: dict,
    Category.NETWORK_COUNTERS.value: tuple,
    Category.GPUS.value: tuple,
    SMART_JOB: dict,
}


class FetchCycleError(RuntimeError):
    """A required always-fresh category failed; the whole cycle is abandoned."""


@dataclass(frozen=True)
class RateSettings:
    energy: RateBounds = field(default_factory=lambda: RateBounds(0.1, 10.0, 1000.0))
    io: RateBounds = field(default_factory=lambda: RateBounds(0.0, 10.0, math.inf))
    energy_counter_range: int = COUNTER_RANGE_32


@dataclass(frozen=True)
class _EnergyRate:
    watts: float | None
    joules: float
    total_wh: float


class SnapshotAssembler:
    """Single entry point ``fetch()``, driven by an external fixed-cadence timer.

    At most one fetch runs at a time; an overlapping call returns ``None`` without
    doing any work. ``sink`` is any object with ``log(snapshot)``.
    """

    def __init__(
        self,
        dispatch: ProviderDispatch,
        cache: TieredCache,
        rates: RateCounter,
        stats: StatsTracker,
        smart: SmartCollector | None = None,
        sink: Any | None = None,
        settings: RateSettings | None = None,
        startup_delay_s: float = 1.0,
        max_workers: int = 8,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.dispatch = dispatch
        self.cache = cache
        self.rates = rates
        self.stats = stats
        self.smart = smart
        self.sink = sink
        self.settings = settings or RateSettings()
        self.startup_delay_s = startup_delay_s
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sensorscope-fetch"
        )
        self._clock = clock
        self._wall_clock = wall_clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._inflight = threading.Lock()
        self._started = False
        self._last_battery: BatteryMetrics | None = None
        self.last_snapshot: Snapshot | None = None

    @property
    def busy(self) -> bool:
        return self._inflight.locked()

    def fetch(self) -> Snapshot | None:
        if not self._inflight.acquire(blocking=False):
            _log.debug("fetch skipped, previous fetch still in flight")
            return None
        try:
            return self._fetch_locked()
        finally:
            self._inflight.release()

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _run_job(self, name: str, fn: Callable[[], Any], required: bool) -> Any:
        try:
            return fn()
        except Exception as exc:
            if required:
                raise
            _log.warning(
                "category %s failed, using empty payload this cycle: %s",
                name,
                exc,
                extra={"event": "category_failed"},
            )
            return _DEFAULTS[name]()

    def _submit(self, name: str, fn: Callable[[], Any], required: bool = False) -> Future:
        return self._executor.submit(self._run_job, name, fn, required)

    def _collect(self, stale: list[Tier]) -> dict[str, Any]:
        futures: dict[str, Future] = {}
        for tier in stale:
            for category in TIER_CATEGORIES.get(tier, ()):
                futures[category.value] = self._submit(category.value, self._caller(category))
        if Tier.SMART in stale:
            collect = self.smart.collect if self.smart is not None else dict
            futures[SMART_JOB] = self._submit(SMART_JOB, collect)
        for category in FAST_CATEGORIES:
            futures[category.value] = self._submit(
                category.value, self._caller(category), required=category in REQUIRED_CATEGORIES
            )

        results: dict[str, Any] = {}
        failure: tuple[str, Exception] | None = None
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as exc:
                if failure is None:
                    failure = (name, exc)
        if failure is not None:
            name, exc = failure
            raise FetchCycleError(f"required category {name} failed: {exc}") from exc
        return results

    def _caller(self, category: Category) -> Callable[[], Any]:
        return lambda: self.dispatch.call(category)

    def _fetch_locked(self) -> Snapshot:
        if not self._started:
            if self.startup_delay_s > 0:
                self._sleep(self.startup_delay_s)
            self._started = True

        now = self._clock()
        stale = self.cache.stale_tiers(now)
        results = self._collect(stale)

        fresh_static = fresh_medium = fresh_smart = None
        if Tier.STATIC in stale:
            fresh_static = {c.value: results[c.value] for c in TIER_CATEGORIES[Tier.STATIC]}
        if Tier.MEDIUM in stale:
            fresh_medium = {c.value: results[c.value] for c in TIER_CATEGORIES[Tier.MEDIUM]}
            fresh_medium["energy_rates"] = self._derive_energy(
                fresh_medium[Category.ENERGY_COUNTERS.value], now
            )
        if Tier.SMART in stale:
            fresh_smart = results[SMART_JOB]

        # Nothing is stored until every required category succeeded.
        if fresh_static is not None:
            self.cache.store(Tier.STATIC, fresh_static, now)
        if fresh_medium is not None:
            self.cache.store(Tier.MEDIUM, fresh_medium, now)
        if fresh_smart is not None:
            self.cache.store(Tier.SMART, fresh_smart, now)

        static = self.cache.get(Tier.STATIC) or {}
        medium = self.cache.get(Tier.MEDIUM) or {}
        smart = self.cache.get(Tier.SMART) or {}

        base = self._build(now, results, static, medium, smart)
        for key, value in metric_leaves(base).items():
            self.stats.update(key, value)
        snapshot = self._finish(base)

        self.last_snapshot = snapshot
        if self.sink is not None:
            try:
                self.sink.log(snapshot)
            except OSError:
                _log.exception("snapshot log write failed", extra={"event": "session_log_failed"})
        return snapshot

    def _derive_energy(self, counters: dict[str, EnergyCounter], now: float) -> dict[str, _EnergyRate]:
        derived: dict[str, _EnergyRate] = {}
        for name, counter in counters.items():
            key = f"energy_{name}"
            watts = self.rates.observe(
                key,
                counter.energy_uj,
                now,
                counter_range=counter.max_range_uj or self.settings.energy_counter_range,
                scale=1e-6,
                bounds=self.settings.energy,
            )
            derived[name] = _EnergyRate(
                watts=watts,
                joules=counter.energy_uj / 1_000_000,
                total_wh=self.rates.accumulated(key) / 3600.0,
            )
        return derived

    def _disk_metrics(self, now: float, counters: dict, static: dict, medium: dict, smart: dict) -> DiskMetrics:
        bounds = self.settings.io
        per_device: dict[str, DiskIORate] = {}
        for device, c in counters.items():
            per_device[device] = DiskIORate(
                read_bytes_per_sec=self.rates.observe(f"disk_{device}_read_bytes", c.read_bytes, now, bounds=bounds),
                write_bytes_per_sec=self.rates.observe(f"disk_{device}_write_bytes", c.write_bytes, now, bounds=bounds),
            )
        reads = [r.read_bytes_per_sec for r in per_device.values() if r.read_bytes_per_sec is not None]
        writes = [r.write_bytes_per_sec for r in per_device.values() if r.write_bytes_per_sec is not None]
        return DiskMetrics(
            aggregate_io=DiskIORate(
                read_bytes_per_sec=(sum(reads) if reads else None),
                write_bytes_per_sec=(sum(writes) if writes else None),
            ),
            per_device=per_device,
            temperatures=dict(medium.get(Category.DISK_TEMPERATURES.value, {})),
            smart=dict(smart),
            layout=tuple(static.get(Category.DISK_LAYOUT.value, ())),
        )

    def _network(self, now: float, counters) -> tuple[NetworkInterface, ...]:
        bounds = self.settings.io
        result = []
        for c in counters:
            result.append(
                NetworkInterface(
                    iface=c.iface,
                    rx_bytes_total=c.rx_bytes,
                    tx_bytes_total=c.tx_bytes,
                    rx_bytes_per_sec=self.rates.observe(f"net_{c.iface}_rx_bytes", c.rx_bytes, now, bounds=bounds),
                    tx_bytes_per_sec=self.rates.observe(f"net_{c.iface}_tx_bytes", c.tx_bytes, now, bounds=bounds),
                    state=c.state,
                )
            )
        return tuple(result)

    def _battery(self, medium: dict) -> BatteryMetrics | None:
        battery = medium.get(Category.BATTERY.value)
        if battery is not None and battery.present:
            self._last_battery = battery
        return battery

    def _build(self, now: float, results: dict, static: dict, medium: dict, smart: dict) -> Snapshot:
        system: SystemInfo = static.get(Category.SYSTEM_INFO.value) or SystemInfo()
        load: CpuLoad = results[Category.CPU_LOAD.value]
        memory = results[Category.MEMORY.value]

        cpu = CpuMetrics(
            current_load=load.current_load,
            per_core_load=tuple(load.per_core_load),
            frequencies_mhz=tuple(results[Category.CPU_FREQUENCIES.value]),
            temperature_sensors=tuple(medium.get(Category.CPU_TEMPERATURES.value, ())),
            model=system.cpu_model,
            logical_cores=system.logical_cores,
        )
        power = {
            name: PowerDomain(
                name=name,
                instantaneous_watts=rate.watts,
                cumulative_joules=rate.joules,
                total_wh=rate.total_wh,
            )
            for name, rate in medium.get("energy_rates", {}).items()
        }
        return Snapshot(
            timestamp=self._wall_clock(),
            monotonic=now,
            cpu=cpu,
            memory=replace(memory, ddr5_module_temps=tuple(medium.get(Category.DDR5_TEMPERATURES.value, ()))),
            disk=self._disk_metrics(now, results[Category.DISK_COUNTERS.value], static, medium, smart),
            gpu=tuple(results[Category.GPUS.value]),
            battery=self._battery(medium),
            power=power,
            power_sensors=tuple(medium.get(Category.POWER_SENSORS.value, ())),
            fans=tuple(medium.get(Category.FANS.value, ())),
            network=self._network(now, results[Category.NETWORK_COUNTERS.value]),
            system_temps=tuple(medium.get(Category.SYSTEM_TEMPERATURES.value, ())),
            system=system,
        )

    def _finish(self, base: Snapshot) -> Snapshot:
        """Attach stats and substitute last known good values for intermittent metrics."""
        power = {}
        for name, domain in base.power.items():
            key = power_key(name)
            watts = domain.instantaneous_watts
            if watts is None:
                watts = self.stats.last_valid_value(key)
            power[name] = replace(domain, instantaneous_watts=watts, stats=self.stats.get(key))

        battery = base.battery
        if battery is None:
            # Read failed this refresh: keep showing the last good reading.
            battery = self._last_battery
        if battery is not None and battery.present:
            if battery.power_watts is None and self.stats.has_last_valid_value("battery_power"):
                battery = replace(battery, power_watts=self.stats.last_valid_value("battery_power"))
            if battery.percent is None and self.stats.has_last_valid_value("battery_percent"):
                battery = replace(battery, percent=self.stats.last_valid_value("battery_percent"))

        return replace(base, power=power, battery=battery, stats=self.stats.get_all())
