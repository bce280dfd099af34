"""Hardware telemetry sampling engine for SensorScope."""

from .assembler import FetchCycleError, RateSettings, SnapshotAssembler
from .cache import CacheEntry, Tier, TieredCache
from .models import (
    BatteryMetrics,
    CpuMetrics,
    DiskIORate,
    DiskMetrics,
    FanReading,
    GpuMetrics,
    MemoryMetrics,
    NetworkInterface,
    PowerDomain,
    SmartHealth,
    Snapshot,
    StatSummary,
    TemperatureReading,
    snapshot_to_dict,
)
from .providers import Category, ProviderDispatch, build_dispatch
from .rates import RateBounds, RateCounter
from .sensors import SensorReader
from .stats import KeyFilter, StatsTracker

__all__ = [
    "BatteryMetrics",
    "CacheEntry",
    "Category",
    "CpuMetrics",
    "DiskIORate",
    "DiskMetrics",
    "FanReading",
    "FetchCycleError",
    "GpuMetrics",
    "KeyFilter",
    "MemoryMetrics",
    "NetworkInterface",
    "PowerDomain",
    "ProviderDispatch",
    "RateBounds",
    "RateCounter",
    "RateSettings",
    "SensorReader",
    "SmartHealth",
    "Snapshot",
    "SnapshotAssembler",
    "StatSummary",
    "StatsTracker",
    "TemperatureReading",
    "Tier",
    "TieredCache",
    "build_dispatch",
    "snapshot_to_dict",
]
