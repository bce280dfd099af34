"""Metric sources and per-category native/fallback dispatch.

``SysfsSource`` reads the Linux sysfs/procfs namespace directly. ``PsutilSource`` is
the portable fallback built on psutil. Both return the same typed records, so the
dispatcher can swap one for the other per operation category at runtime.
"""

from __future__ import annotations

import logging
import platform
import re
import sys
import threading
from enum import Enum

import psutil

from .gpu import GpuAdapter, build_fallback_gpu_adapter, build_native_gpu_adapter
from .models import (
    BatteryMetrics,
    BlockDevice,
    CpuLoad,
    DiskCounters,
    EnergyCounter,
    FanReading,
    GpuMetrics,
    MemoryMetrics,
    NetworkCounters,
    PowerSensor,
    SystemInfo,
    TemperatureReading,
)
from .sensors import SensorReader, parse_int
from .smart import list_block_devices


_log = logging.getLogger("sensorscope.telemetry.providers")

SECTOR_BYTES = 512

CPU_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "x86_pkg_temp")
GPU_CHIPS = ("nouveau", "amdgpu", "radeon")
DISK_CHIPS = ("nvme", "drivetemp")
DDR5_CHIP = "spd5118"

_CPU_LABEL_EXCLUDES = ("gpu", "ambient", "composite", "nvme")
_CPU_ZONE_KEYWORDS = ("cpu", "x86_pkg_temp", "core", "package")
_GPU_ZONE_KEYWORDS = ("gpu", "nvidia", "amdgpu")
_SYSTEM_LABEL_EXCLUDES = ("composite", "cpu", "core", "package")
_PACKAGE_KEYWORDS = ("package", "tctl", "x86_pkg_temp")

_DISK_NAME_RE = re.compile(r"^(sd[a-z]+|nvme\d+n\d+|vd[a-z]+|hd[a-z]+|xvd[a-z]+|mmcblk\d+)$")
_NVME_CTRL_RE = re.compile(r"nvme/nvme(\d+)$")
_CPU_DIR_RE = re.compile(r"^cpu(\d+)$")


class Category(str, Enum):
    SYSTEM_INFO = "system_info"
    DISK_LAYOUT = "disk_layout"
    CPU_LOAD = "cpu_load"
    CPU_FREQUENCIES = "cpu_frequencies"
    CPU_TEMPERATURES = "cpu_temperatures"
    SYSTEM_TEMPERATURES = "system_temperatures"
    DDR5_TEMPERATURES = "ddr5_temperatures"
    MEMORY = "memory"
    DISK_COUNTERS = "disk_counters"
    DISK_TEMPERATURES = "disk_temperatures"
    NETWORK_COUNTERS = "network_counters"
    FANS = "fans"
    POWER_SENSORS = "power_sensors"
    ENERGY_COUNTERS = "energy_counters"
    BATTERY = "battery"
    GPUS = "gpus"


def sort_cpu_temperatures(readings: list[TemperatureReading]) -> tuple[TemperatureReading, ...]:
    """Package/Tctl sensors first, then the rest by label."""

    def key(reading: TemperatureReading) -> tuple[int, str]:
        label = reading.label.lower()
        return (0 if any(k in label for k in _PACKAGE_KEYWORDS) else 1, label)

    return tuple(sorted(readings, key=key))


def _is_cpu_chip(name: str) -> bool:
    return any(chip in name for chip in CPU_CHIPS)


def _battery_state(status: str | None, percent: float | None) -> str:
    status = (status or "").strip().lower()
    if status == "charging":
        return "charging"
    if status == "discharging":
        return "discharging"
    if status == "full":
        return "full"
    if percent is not None and percent >= 99.0:
        return "full"
    return "idle"


def _estimate_hours(
    state: str, power_w: float | None, energy_now_wh: float | None, energy_full_wh: float | None
) -> float | None:
    if not power_w or power_w <= 0 or energy_now_wh is None:
        return None
    if state == "discharging":
        return energy_now_wh / power_w
    if state == "charging" and energy_full_wh is not None:
        return max(energy_full_wh - energy_now_wh, 0.0) / power_w
    return None


class MetricSource:
    """Contract shared by every metric source. Method names match ``Category`` values."""

    name = "base"

    def system_info(self) -> SystemInfo:
        raise NotImplementedError

    def disk_layout(self) -> tuple[BlockDevice, ...]:
        raise NotImplementedError

    def cpu_load(self) -> CpuLoad:
        raise NotImplementedError

    def cpu_frequencies(self) -> tuple[float, ...]:
        raise NotImplementedError

    def cpu_temperatures(self) -> tuple[TemperatureReading, ...]:
        raise NotImplementedError

    def system_temperatures(self) -> tuple[TemperatureReading, ...]:
        raise NotImplementedError

    def ddr5_temperatures(self) -> tuple[TemperatureReading, ...]:
        raise NotImplementedError

    def memory(self) -> MemoryMetrics:
        raise NotImplementedError

    def disk_counters(self) -> dict[str, DiskCounters]:
        raise NotImplementedError

    def disk_temperatures(self) -> dict[str, float]:
        raise NotImplementedError

    def network_counters(self) -> tuple[NetworkCounters, ...]:
        raise NotImplementedError

    def fans(self) -> tuple[FanReading, ...]:
        raise NotImplementedError

    def power_sensors(self) -> tuple[PowerSensor, ...]:
        raise NotImplementedError

    def energy_counters(self) -> dict[str, EnergyCounter]:
        raise NotImplementedError

    def battery(self) -> BatteryMetrics:
        raise NotImplementedError

    def gpus(self) -> tuple[GpuMetrics, ...]:
        raise NotImplementedError


class PsutilSource(MetricSource):
    """Portable source; sensors psutil does not expose come back empty."""

    name = "psutil"

    def __init__(self, reader: SensorReader, gpu: GpuAdapter | None = None) -> None:
        self._reader = reader
        self._gpu = gpu or GpuAdapter()
        # Prime non-blocking CPU measurement.
        psutil.cpu_percent(interval=None)
        psutil.cpu_percent(interval=None, percpu=True)

    def _temperatures(self) -> dict[str, list]:
        try:
            return psutil.sensors_temperatures() or {}
        except AttributeError:
            return {}

    def system_info(self) -> SystemInfo:
        return SystemInfo(
            hostname=platform.node() or None,
            platform=platform.system() or None,
            kernel=platform.release() or None,
            arch=platform.machine() or None,
            cpu_model=platform.processor() or None,
            logical_cores=psutil.cpu_count(logical=True),
            physical_cores=psutil.cpu_count(logical=False),
        )

    def disk_layout(self) -> tuple[BlockDevice, ...]:
        return list_block_devices(self._reader)

    def cpu_load(self) -> CpuLoad:
        total = float(psutil.cpu_percent(interval=None))
        per_core = tuple(float(v) for v in psutil.cpu_percent(interval=None, percpu=True))
        return CpuLoad(current_load=total, per_core_load=per_core)

    def cpu_frequencies(self) -> tuple[float, ...]:
        freqs = psutil.cpu_freq(percpu=True) or []
        return tuple(float(f.current) for f in freqs)

    def cpu_temperatures(self) -> tuple[TemperatureReading, ...]:
        readings: list[TemperatureReading] = []
        for chip, entries in self._temperatures().items():
            if not _is_cpu_chip(chip):
                continue
            for i, entry in enumerate(entries, start=1):
                label = entry.label or f"{chip}_temp{i}"
                if any(word in label.lower() for word in _CPU_LABEL_EXCLUDES):
                    continue
                if entry.current is not None:
                    readings.append(TemperatureReading(label=label, celsius=float(entry.current)))
        return sort_cpu_temperatures(readings)

    def system_temperatures(self) -> tuple[TemperatureReading, ...]:
        readings: list[TemperatureReading] = []
        for chip, entries in self._temperatures().items():
            if _is_cpu_chip(chip) or chip in GPU_CHIPS or chip in DISK_CHIPS or chip == DDR5_CHIP:
                continue
            for i, entry in enumerate(entries, start=1):
                label = entry.label or f"{chip}_temp{i}"
                if any(word in label.lower() for word in _SYSTEM_LABEL_EXCLUDES):
                    continue
                if entry.current is not None:
                    readings.append(TemperatureReading(label=label, celsius=float(entry.current)))
        return tuple(readings)

    def ddr5_temperatures(self) -> tuple[TemperatureReading, ...]:
        entries = self._temperatures().get(DDR5_CHIP, [])
        return tuple(
            TemperatureReading(label=entry.label or f"DDR5_Module_{i}", celsius=float(entry.current))
            for i, entry in enumerate(entries, start=1)
            if entry.current is not None
        )

    def memory(self) -> MemoryMetrics:
        vm = psutil.virtual_memory()
        swap = psutil.swap_memory()
        return MemoryMetrics(
            total=int(vm.total),
            used=int(vm.used),
            free=int(vm.free),
            swap_used=int(swap.used),
            swap_total=int(swap.total),
        )

    def disk_counters(self) -> dict[str, DiskCounters]:
        per_disk = psutil.disk_io_counters(perdisk=True) or {}
        return {
            name: DiskCounters(read_bytes=int(c.read_bytes), write_bytes=int(c.write_bytes))
            for name, c in per_disk.items()
            if _DISK_NAME_RE.match(name)
        }

    def disk_temperatures(self) -> dict[str, float]:
        # psutil merges every controller under one chip name; each drive contributes one
        # Composite (nvme) or unlabelled (drivetemp) entry, in controller order.
        temps: dict[str, float] = {}
        for chip in DISK_CHIPS:
            drive = 0
            for entry in self._temperatures().get(chip, []):
                label = (entry.label or "").lower()
                if label and "composite" not in label:
                    continue
                key = f"nvme{drive}n1" if chip == "nvme" else f"{chip}{drive}"
                drive += 1
                if entry.current is not None:
                    temps[key] = float(entry.current)
        return temps

    def network_counters(self) -> tuple[NetworkCounters, ...]:
        counters = psutil.net_io_counters(pernic=True) or {}
        stats = psutil.net_if_stats() or {}
        result = []
        for iface, c in counters.items():
            if iface == "lo":
                continue
            st = stats.get(iface)
            state = "unknown" if st is None else ("up" if st.isup else "down")
            result.append(
                NetworkCounters(iface=iface, rx_bytes=int(c.bytes_recv), tx_bytes=int(c.bytes_sent), state=state)
            )
        return tuple(result)

    def fans(self) -> tuple[FanReading, ...]:
        try:
            chips = psutil.sensors_fans() or {}
        except AttributeError:
            return ()
        readings = []
        for chip, entries in chips.items():
            for i, entry in enumerate(entries, start=1):
                readings.append(FanReading(label=entry.label or f"{chip}_fan{i}", rpm=float(entry.current)))
        return tuple(readings)

    def power_sensors(self) -> tuple[PowerSensor, ...]:
        return ()

    def energy_counters(self) -> dict[str, EnergyCounter]:
        return {}

    def battery(self) -> BatteryMetrics:
        try:
            bat = psutil.sensors_battery()
        except AttributeError:
            bat = None
        if bat is None:
            return BatteryMetrics(present=False)

        percent = float(bat.percent)
        if bat.power_plugged:
            state = "full" if percent >= 99.0 else "charging"
        else:
            state = "discharging"
        secs = bat.secsleft
        hours = secs / 3600.0 if isinstance(secs, (int, float)) and secs > 0 else None
        return BatteryMetrics(present=True, percent=percent, state=state, estimated_hours=hours)

    def gpus(self) -> tuple[GpuMetrics, ...]:
        return self._gpu.poll()


class SysfsSource(PsutilSource):
    """Direct sysfs/procfs reads. CPU load still comes from psutil."""

    name = "sysfs"

    def __init__(
        self,
        reader: SensorReader,
        gpu: GpuAdapter | None = None,
        max_index: int = 30,
        max_misses: int = 5,
    ) -> None:
        super().__init__(reader, gpu=gpu)
        self.max_index = max_index
        self.max_misses = max_misses

    def _hwmon(self) -> list[tuple[str, str]]:
        """``(dir, chip name)`` for every hwmon device that reports a name."""
        base = self._reader.sys("class", "hwmon")
        result = []
        for entry in self._reader.read_directory(base):
            if not entry.startswith("hwmon"):
                continue
            name = self._reader.read_scalar(base / entry / "name")
            if name:
                result.append((entry, name))
        return result

    def _scan(self, hwmon: str, prefix: str, suffix: str = "_input"):
        base = self._reader.sys("class", "hwmon", hwmon)
        return self._reader.scan_indexed(base, prefix, suffix, self.max_index, self.max_misses)

    def _label(self, hwmon: str, prefix: str, index: int) -> str | None:
        return self._reader.read_scalar(self._reader.sys("class", "hwmon", hwmon, f"{prefix}{index}_label"))

    def _thermal_zones(self) -> list[tuple[str, float]]:
        base = self._reader.sys("class", "thermal")
        zones = []
        for entry in self._reader.read_directory(base):
            if not entry.startswith("thermal_zone"):
                continue
            raw = self._reader.read_int(base / entry / "temp")
            if raw is None:
                continue
            zone_type = self._reader.read_scalar(base / entry / "type") or entry.replace("thermal_", "")
            zones.append((zone_type, raw / 1000))
        return zones

    def system_info(self) -> SystemInfo:
        info = super().system_info()
        cpuinfo = self._reader.read_scalar(self._reader.proc("cpuinfo")) or ""
        model = None
        for line in cpuinfo.splitlines():
            key, _, value = line.partition(":")
            if key.strip() == "model name":
                model = value.strip()
                break
        return SystemInfo(
            hostname=info.hostname,
            platform=info.platform,
            kernel=info.kernel,
            arch=info.arch,
            cpu_model=model or info.cpu_model,
            logical_cores=info.logical_cores,
            physical_cores=info.physical_cores,
        )

    def disk_layout(self) -> tuple[BlockDevice, ...]:
        r = self._reader
        devices = []
        for name in r.read_directory(r.sys("block")):
            if not _DISK_NAME_RE.match(name):
                continue
            sectors = r.read_int(r.sys("block", name, "size"))
            rota = r.read_scalar(r.sys("block", name, "queue", "rotational"))
            devices.append(
                BlockDevice(
                    name=name,
                    size_bytes=(sectors * SECTOR_BYTES if sectors is not None else None),
                    rotational=(rota == "1") if rota in ("0", "1") else None,
                    model=r.read_scalar(r.sys("block", name, "device", "model")) or None,
                )
            )
        return tuple(devices)

    def cpu_frequencies(self) -> tuple[float, ...]:
        base = self._reader.sys("devices", "system", "cpu")
        indexed = []
        for entry in self._reader.read_directory(base):
            match = _CPU_DIR_RE.match(entry)
            if not match:
                continue
            khz = self._reader.read_int(base / entry / "cpufreq" / "scaling_cur_freq")
            if khz is not None:
                indexed.append((int(match.group(1)), khz / 1000))
        return tuple(mhz for _, mhz in sorted(indexed))

    def cpu_temperatures(self) -> tuple[TemperatureReading, ...]:
        readings: list[TemperatureReading] = []
        for hwmon, name in self._hwmon():
            if not _is_cpu_chip(name):
                continue
            for index, raw in self._scan(hwmon, "temp"):
                value = parse_int(raw, source=f"{hwmon}/temp{index}_input")
                if value is None:
                    continue
                label = self._label(hwmon, "temp", index) or f"{name}_temp{index}"
                if any(word in label.lower() for word in _CPU_LABEL_EXCLUDES):
                    continue
                readings.append(TemperatureReading(label=label, celsius=value / 1000))

        for zone_type, celsius in self._thermal_zones():
            if any(word in zone_type.lower() for word in _CPU_ZONE_KEYWORDS):
                readings.append(TemperatureReading(label=zone_type, celsius=celsius))
        return sort_cpu_temperatures(readings)

    def system_temperatures(self) -> tuple[TemperatureReading, ...]:
        readings: list[TemperatureReading] = []
        for zone_type, celsius in self._thermal_zones():
            lowered = zone_type.lower()
            if any(word in lowered for word in _CPU_ZONE_KEYWORDS + _GPU_ZONE_KEYWORDS):
                continue
            readings.append(TemperatureReading(label=zone_type, celsius=celsius))

        for hwmon, name in self._hwmon():
            if _is_cpu_chip(name) or any(chip in name for chip in GPU_CHIPS):
                continue
            if name in DISK_CHIPS or name == DDR5_CHIP:
                continue
            for index, raw in self._scan(hwmon, "temp"):
                value = parse_int(raw, source=f"{hwmon}/temp{index}_input")
                if value is None:
                    continue
                label = self._label(hwmon, "temp", index) or f"{name}_temp{index}"
                if any(word in label.lower() for word in _SYSTEM_LABEL_EXCLUDES):
                    continue
                readings.append(TemperatureReading(label=label, celsius=value / 1000))
        return tuple(readings)

    def ddr5_temperatures(self) -> tuple[TemperatureReading, ...]:
        readings: list[TemperatureReading] = []
        module = 0
        for hwmon, name in self._hwmon():
            if DDR5_CHIP not in name:
                continue
            for index, raw in self._scan(hwmon, "temp"):
                value = parse_int(raw, source=f"{hwmon}/temp{index}_input")
                if value is None:
                    continue
                module += 1
                label = self._label(hwmon, "temp", index) or f"DDR5_Module_{module}"
                readings.append(TemperatureReading(label=label, celsius=value / 1000))
        return tuple(readings)

    def memory(self) -> MemoryMetrics:
        raw = self._reader.read_scalar(self._reader.proc("meminfo"))
        if not raw:
            raise RuntimeError("meminfo unavailable")
        kb: dict[str, int] = {}
        for line in raw.splitlines():
            key, _, rest = line.partition(":")
            value = parse_int(rest.strip().split(" ")[0], source="meminfo")
            if value is not None:
                kb[key.strip()] = value * 1024

        total = kb["MemTotal"]
        available = kb.get("MemAvailable", kb.get("MemFree", 0))
        swap_total = kb.get("SwapTotal", 0)
        return MemoryMetrics(
            total=total,
            used=total - available,
            free=kb.get("MemFree", 0),
            swap_used=swap_total - kb.get("SwapFree", 0),
            swap_total=swap_total,
        )

    def disk_counters(self) -> dict[str, DiskCounters]:
        raw = self._reader.read_scalar(self._reader.proc("diskstats"))
        if raw is None:
            raise RuntimeError("diskstats unavailable")
        counters: dict[str, DiskCounters] = {}
        for line in raw.splitlines():
            parts = line.split()
            if len(parts) < 14 or not _DISK_NAME_RE.match(parts[2]):
                continue
            counters[parts[2]] = DiskCounters(
                read_bytes=int(parts[5]) * SECTOR_BYTES,
                write_bytes=int(parts[9]) * SECTOR_BYTES,
            )
        return counters

    def disk_temperatures(self) -> dict[str, float]:
        r = self._reader
        temps: dict[str, float] = {}
        for hwmon, name in self._hwmon():
            base = r.sys("class", "hwmon", hwmon)
            if name == "nvme":
                target = r.resolve(base / "device")
                match = _NVME_CTRL_RE.search(str(target)) if target is not None else None
                if not match:
                    continue
                device = f"nvme{match.group(1)}n1"
                chosen = None
                for index, raw in self._scan(hwmon, "temp"):
                    label = (self._label(hwmon, "temp", index) or "").lower()
                    value = parse_int(raw, source=f"{hwmon}/temp{index}_input")
                    if value is None:
                        continue
                    if "composite" in label:
                        chosen = value
                        break
                    if chosen is None:
                        chosen = value
                if chosen is not None:
                    temps[device] = chosen / 1000
            elif "drivetemp" in name:
                value = r.read_int(base / "temp1_input")
                if value is None:
                    continue
                blocks = r.read_directory(base / "device" / "block")
                temps[blocks[0] if blocks else f"{name}_{hwmon}"] = value / 1000
        return temps

    def network_counters(self) -> tuple[NetworkCounters, ...]:
        r = self._reader
        base = r.sys("class", "net")
        result = []
        for iface in r.read_directory(base):
            if iface == "lo":
                continue
            rx = r.read_int(base / iface / "statistics" / "rx_bytes")
            tx = r.read_int(base / iface / "statistics" / "tx_bytes")
            if rx is None or tx is None:
                continue
            state = r.read_scalar(base / iface / "operstate") or "unknown"
            result.append(NetworkCounters(iface=iface, rx_bytes=rx, tx_bytes=tx, state=state))
        return tuple(result)

    def fans(self) -> tuple[FanReading, ...]:
        readings = []
        for hwmon, name in self._hwmon():
            for index, raw in self._scan(hwmon, "fan"):
                rpm = parse_int(raw, source=f"{hwmon}/fan{index}_input")
                if rpm is None:
                    continue
                label = self._label(hwmon, "fan", index) or f"{name}_fan{index}"
                readings.append(FanReading(label=label, rpm=float(rpm)))
        return tuple(readings)

    def power_sensors(self) -> tuple[PowerSensor, ...]:
        readings = []
        for hwmon, name in self._hwmon():
            for index, raw in self._scan(hwmon, "power"):
                microwatts = parse_int(raw, source=f"{hwmon}/power{index}_input")
                if microwatts is None:
                    continue
                label = self._label(hwmon, "power", index) or f"{name}_power{index}"
                readings.append(PowerSensor(label=label, watts=microwatts / 1_000_000))
        return tuple(readings)

    def energy_counters(self) -> dict[str, EnergyCounter]:
        r = self._reader
        base = r.sys("class", "powercap")
        counters: dict[str, EnergyCounter] = {}
        for entry in r.read_directory(base):
            if not entry.startswith("intel-rapl:"):
                continue
            name = r.read_scalar(base / entry / "name")
            energy = r.read_int(base / entry / "energy_uj")
            if not name or energy is None:
                continue
            if name in counters:
                name = f"{name}-{entry.split(':', 1)[1].replace(':', '-')}"
            counters[name] = EnergyCounter(
                name=name,
                energy_uj=energy,
                max_range_uj=r.read_int(base / entry / "max_energy_range_uj"),
            )
        return counters

    def battery(self) -> BatteryMetrics:
        r = self._reader
        base = r.sys("class", "power_supply")
        for entry in r.read_directory(base):
            supply = base / entry
            if r.read_scalar(supply / "type") != "Battery":
                continue
            if r.read_scalar(supply / "present") == "0":
                continue

            voltage_uv = r.read_int(supply / "voltage_now")
            current_ua = r.read_int(supply / "current_now")
            power_uw = r.read_int(supply / "power_now")
            voltage = voltage_uv / 1_000_000 if voltage_uv is not None else None
            # Some firmware reports discharge current as negative.
            current = abs(current_ua) / 1_000_000 if current_ua is not None else None
            if power_uw is not None:
                power = abs(power_uw) / 1_000_000
            elif voltage is not None and current is not None:
                power = voltage * current
            else:
                power = None

            energy_now = r.read_int(supply / "energy_now")
            energy_full = r.read_int(supply / "energy_full")
            if energy_now is None and voltage is not None:
                charge_now = r.read_int(supply / "charge_now")
                charge_full = r.read_int(supply / "charge_full")
                energy_now = int(charge_now * voltage) if charge_now is not None else None
                energy_full = int(charge_full * voltage) if charge_full is not None else None
            energy_now_wh = energy_now / 1_000_000 if energy_now is not None else None
            energy_full_wh = energy_full / 1_000_000 if energy_full is not None else None

            percent = r.read_float(supply / "capacity")
            if percent is None and energy_now_wh is not None and energy_full_wh:
                percent = (energy_now_wh / energy_full_wh) * 100.0

            state = _battery_state(r.read_scalar(supply / "status"), percent)
            return BatteryMetrics(
                present=True,
                percent=percent,
                state=state,
                voltage=voltage,
                current_amps=current,
                power_watts=power,
                estimated_hours=_estimate_hours(state, power, energy_now_wh, energy_full_wh),
                cycle_count=r.read_int(supply / "cycle_count"),
            )
        return BatteryMetrics(present=False)


class ProviderDispatch:
    """Routes each category to the primary source until it fails once.

    A failure demotes only the category that raised; every other category keeps
    using the primary source.
    """

    def __init__(self, primary: MetricSource, fallback: MetricSource) -> None:
        self.primary = primary
        self.fallback = fallback
        self._demoted: dict[Category, str] = {}
        self._lock = threading.Lock()

    def source_for(self, category: Category) -> MetricSource:
        with self._lock:
            return self.fallback if category in self._demoted else self.primary

    def call(self, category: Category):
        source = self.source_for(category)
        try:
            return getattr(source, category.value)()
        except Exception as exc:
            if source is self.fallback:
                raise
            self._demote(category, exc)
        return getattr(self.fallback, category.value)()

    def _demote(self, category: Category, exc: Exception) -> None:
        with self._lock:
            if category in self._demoted:
                return
            self._demoted[category] = f"{type(exc).__name__}: {exc}"
        _log.warning(
            "%s source failed for %s, using %s from now on: %s",
            self.primary.name,
            category.value,
            self.fallback.name,
            exc,
            extra={"event": "provider_demoted"},
        )

    def demoted(self) -> dict[str, str]:
        with self._lock:
            return {category.value: reason for category, reason in self._demoted.items()}

    def describe(self) -> dict[str, str]:
        return {category.value: self.source_for(category).name for category in Category}


def native_supported(reader: SensorReader) -> bool:
    return sys.platform.startswith("linux") and reader.sys_root.exists()


def build_dispatch(
    reader: SensorReader,
    prefer_native: bool = True,
    max_index: int = 30,
    max_misses: int = 5,
) -> ProviderDispatch:
    fallback = PsutilSource(reader, gpu=build_fallback_gpu_adapter(reader))
    if prefer_native and native_supported(reader):
        primary: MetricSource = SysfsSource(
            reader,
            gpu=build_native_gpu_adapter(reader),
            max_index=max_index,
            max_misses=max_misses,
        )
    else:
        primary = fallback
    _log.info(
        "metric sources selected primary=%s fallback=%s",
        primary.name,
        fallback.name,
        extra={"event": "providers_selected"},
    )
    return ProviderDispatch(primary, fallback)
