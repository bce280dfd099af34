"""Typed telemetry models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class TemperatureReading:
    label: str
    celsius: float


@dataclass(frozen=True)
class FanReading:
    label: str
    rpm: float


@dataclass(frozen=True)
class PowerSensor:
    label: str
    watts: float


@dataclass(frozen=True)
class SystemInfo:
    hostname: str | None = None
    platform: str | None = None
    kernel: str | None = None
    arch: str | None = None
    cpu_model: str | None = None
    logical_cores: int | None = None
    physical_cores: int | None = None


@dataclass(frozen=True)
class BlockDevice:
    name: str
    size_bytes: int | None = None
    rotational: bool | None = None
    model: str | None = None


@dataclass(frozen=True)
class CpuLoad:
    current_load: float
    per_core_load: tuple[float, ...] = ()


@dataclass(frozen=True)
class CpuMetrics:
    current_load: float
    per_core_load: tuple[float, ...] = ()
    frequencies_mhz: tuple[float, ...] = ()
    temperature_sensors: tuple[TemperatureReading, ...] = ()
    model: str | None = None
    logical_cores: int | None = None

    @property
    def average_frequency_mhz(self) -> float | None:
        if not self.frequencies_mhz:
            return None
        return sum(self.frequencies_mhz) / len(self.frequencies_mhz)


@dataclass(frozen=True)
class MemoryMetrics:
    total: int
    used: int
    free: int
    swap_used: int = 0
    swap_total: int = 0
    ddr5_module_temps: tuple[TemperatureReading, ...] = ()

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return (self.used / self.total) * 100.0


@dataclass(frozen=True)
class DiskCounters:
    """Cumulative byte counters for one block device."""

    read_bytes: int
    write_bytes: int


@dataclass(frozen=True)
class DiskIORate:
    read_bytes_per_sec: float | None = None
    write_bytes_per_sec: float | None = None


@dataclass(frozen=True)
class SmartHealth:
    device: str
    healthy: bool = True
    temperature: int | None = None
    power_on_hours: int | None = None
    power_cycles: int | None = None
    wear_level: int | None = None
    reallocated_sectors: int | None = None
    pending_sectors: int | None = None


@dataclass(frozen=True)
class DiskMetrics:
    aggregate_io: DiskIORate = field(default_factory=DiskIORate)
    per_device: dict[str, DiskIORate] = field(default_factory=dict)
    temperatures: dict[str, float] = field(default_factory=dict)
    smart: dict[str, SmartHealth] = field(default_factory=dict)
    layout: tuple[BlockDevice, ...] = ()


@dataclass(frozen=True)
class GpuMetrics:
    index: int
    vendor: str | None
    model: str | None = None
    utilization_percent: float | None = None
    temperature_c: float | None = None
    vram_total_mb: float | None = None
    vram_used_mb: float | None = None
    power_draw_w: float | None = None
    clock_core_mhz: float | None = None
    clock_memory_mhz: float | None = None
    fan_percent: float | None = None

    @property
    def vram_percent(self) -> float | None:
        if not self.vram_total_mb or self.vram_used_mb is None:
            return None
        return (self.vram_used_mb / self.vram_total_mb) * 100.0


@dataclass(frozen=True)
class BatteryMetrics:
    present: bool
    percent: float | None = None
    state: str = "idle"
    voltage: float | None = None
    current_amps: float | None = None
    power_watts: float | None = None
    estimated_hours: float | None = None
    cycle_count: int | None = None


@dataclass(frozen=True)
class EnergyCounter:
    """Raw cumulative energy register of one power domain."""

    name: str
    energy_uj: int
    max_range_uj: int | None = None


@dataclass(frozen=True)
class StatSummary:
    current: float
    min: float
    max: float
    avg: float


@dataclass(frozen=True)
class PowerDomain:
    name: str
    instantaneous_watts: float | None
    cumulative_joules: float
    total_wh: float = 0.0
    stats: StatSummary | None = None


@dataclass(frozen=True)
class NetworkCounters:
    iface: str
    rx_bytes: int
    tx_bytes: int
    state: str = "unknown"


@dataclass(frozen=True)
class NetworkInterface:
    iface: str
    rx_bytes_total: int
    tx_bytes_total: int
    rx_bytes_per_sec: float | None = None
    tx_bytes_per_sec: float | None = None
    state: str = "unknown"


@dataclass(frozen=True)
class Snapshot:
    timestamp: datetime
    monotonic: float
    cpu: CpuMetrics
    memory: MemoryMetrics
    disk: DiskMetrics
    gpu: tuple[GpuMetrics, ...] = ()
    battery: BatteryMetrics | None = None
    power: dict[str, PowerDomain] = field(default_factory=dict)
    power_sensors: tuple[PowerSensor, ...] = ()
    fans: tuple[FanReading, ...] = ()
    network: tuple[NetworkInterface, ...] = ()
    system_temps: tuple[TemperatureReading, ...] = ()
    system: SystemInfo = field(default_factory=SystemInfo)
    stats: dict[str, StatSummary] = field(default_factory=dict)


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    payload = asdict(snapshot)
    payload["timestamp"] = snapshot.timestamp.isoformat()
    payload["memory"]["percent"] = snapshot.memory.percent
    return payload
