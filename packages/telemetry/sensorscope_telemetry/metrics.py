"""Stable metric keys for every dynamic numeric leaf of a snapshot."""

from __future__ import annotations

import logging
import re

from .models import Snapshot


_log = logging.getLogger("sensorscope.telemetry.metrics")

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")
_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def clean(name: str) -> str:
    return _UNSAFE_RE.sub("_", name.strip())


def valid_key(key: str) -> bool:
    return bool(_KEY_RE.match(key))


def power_key(domain: str) -> str:
    return f"rapl_{clean(domain)}_power"


def metric_leaves(snapshot: Snapshot) -> dict[str, float | None]:
    """Ordered mapping of metric key to value.

    Static identity fields are excluded. Values may be ``None`` while a rate only
    has a baseline, so the key set is stable from the first snapshot on.
    """
    out: dict[str, float | None] = {}
    seen: dict[str, int] = {}

    def put(key: str, value: float | int | None) -> None:
        if not valid_key(key):
            _log.debug("dropping metric with invalid key %r", key)
            return
        out[key] = float(value) if value is not None else None

    def put_labelled(prefix: str, label: str, suffix: str, value: float | int | None) -> None:
        # Repeated labels get _2, _3, ... in read order.
        base = f"{prefix}_{clean(label)}"
        seen[base] = seen.get(base, 0) + 1
        if seen[base] > 1:
            base = f"{base}_{seen[base]}"
        put(base + suffix, value)

    cpu = snapshot.cpu
    put("cpu_usage", cpu.current_load)
    put("cpu_avg_freq", cpu.average_frequency_mhz)
    for i, load in enumerate(cpu.per_core_load):
        put(f"cpu_core{i}_usage", load)
    for i, freq in enumerate(cpu.frequencies_mhz):
        put(f"cpu_core{i}_freq", freq)
    for sensor in cpu.temperature_sensors:
        put_labelled("cpu_temp", sensor.label, "", sensor.celsius)

    mem = snapshot.memory
    put("mem_used", mem.used)
    put("mem_percent", mem.percent)
    put("swap_used", mem.swap_used)
    for i, module in enumerate(mem.ddr5_module_temps):
        put(f"ddr5_module_{i}_temp", module.celsius)

    disk = snapshot.disk
    put("disk_read", disk.aggregate_io.read_bytes_per_sec)
    put("disk_write", disk.aggregate_io.write_bytes_per_sec)
    for device, rate in disk.per_device.items():
        put(f"disk_{clean(device)}_read", rate.read_bytes_per_sec)
        put(f"disk_{clean(device)}_write", rate.write_bytes_per_sec)
    for device, celsius in disk.temperatures.items():
        put(f"disk_{clean(device)}_temp", celsius)

    for gpu in snapshot.gpu:
        prefix = f"gpu{gpu.index}"
        put(f"{prefix}_usage", gpu.utilization_percent)
        put(f"{prefix}_temp", gpu.temperature_c)
        put(f"{prefix}_power", gpu.power_draw_w)
        put(f"{prefix}_vram_used", gpu.vram_used_mb)
        put(f"{prefix}_vram_percent", gpu.vram_percent)
        put(f"{prefix}_fan", gpu.fan_percent)

    for name, domain in snapshot.power.items():
        put(power_key(name), domain.instantaneous_watts)

    for sensor in snapshot.power_sensors:
        put_labelled("hwmon", sensor.label, "_power", sensor.watts)

    for i, fan in enumerate(snapshot.fans):
        put(f"fan_{i}_speed", fan.rpm)

    battery = snapshot.battery
    if battery is not None and battery.present:
        put("battery_percent", battery.percent)
        put("battery_power", battery.power_watts)

    for iface in snapshot.network:
        put(f"net_{clean(iface.iface)}_rx", iface.rx_bytes_per_sec)
        put(f"net_{clean(iface.iface)}_tx", iface.tx_bytes_per_sec)

    for sensor in snapshot.system_temps:
        put_labelled("sys_temp", sensor.label, "", sensor.celsius)

    return out
