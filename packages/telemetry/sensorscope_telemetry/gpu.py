"""GPU adapters: NVML, nvidia-smi, amdgpu sysfs, and an empty fallback."""

from __future__ import annotations

import logging
import re
import shutil

from .models import GpuMetrics
from .sensors import SensorReader, parse_float, parse_int


_log = logging.getLogger("sensorscope.telemetry.gpu")

AMD_VENDOR_ID = "0x1002"
NVIDIA_VENDOR_ID = "0x10de"

NVIDIA_SMI_FIELDS = (
    "index",
    "name",
    "temperature.gpu",
    "utilization.gpu",
    "utilization.memory",
    "memory.total",
    "memory.used",
    "memory.free",
    "power.draw",
    "power.limit",
    "clocks.gr",
    "clocks.mem",
    "fan.speed",
)

_DPM_ACTIVE_RE = re.compile(r"^\s*\d+:\s*(\d+)\s*mhz\s*\*", re.IGNORECASE)


class GpuAdapter:
    vendor: str | None = None

    def poll(self) -> tuple[GpuMetrics, ...]:
        return ()


class NvmlGpuAdapter(GpuAdapter):
    vendor = "NVIDIA"

    def __init__(self) -> None:
        import pynvml  # type: ignore

        self._nvml = pynvml
        pynvml.nvmlInit()

    def _optional(self, fn, *args):
        try:
            return fn(*args)
        except self._nvml.NVMLError:
            return None

    def poll(self) -> tuple[GpuMetrics, ...]:
        nvml = self._nvml
        gpus: list[GpuMetrics] = []
        for index in range(nvml.nvmlDeviceGetCount()):
            h = nvml.nvmlDeviceGetHandleByIndex(index)
            name = self._optional(nvml.nvmlDeviceGetName, h)
            if isinstance(name, bytes):
                name = name.decode("utf-8", errors="replace")
            util = self._optional(nvml.nvmlDeviceGetUtilizationRates, h)
            temp = self._optional(nvml.nvmlDeviceGetTemperature, h, nvml.NVML_TEMPERATURE_GPU)
            mem = self._optional(nvml.nvmlDeviceGetMemoryInfo, h)
            power_mw = self._optional(nvml.nvmlDeviceGetPowerUsage, h)
            core = self._optional(nvml.nvmlDeviceGetClockInfo, h, nvml.NVML_CLOCK_GRAPHICS)
            memclk = self._optional(nvml.nvmlDeviceGetClockInfo, h, nvml.NVML_CLOCK_MEM)
            fan = self._optional(nvml.nvmlDeviceGetFanSpeed, h)
            gpus.append(
                GpuMetrics(
                    index=index,
                    vendor=self.vendor,
                    model=name,
                    utilization_percent=(float(util.gpu) if util is not None else None),
                    temperature_c=(float(temp) if temp is not None else None),
                    vram_total_mb=(mem.total / (1024 * 1024) if mem is not None else None),
                    vram_used_mb=(mem.used / (1024 * 1024) if mem is not None else None),
                    power_draw_w=(power_mw / 1000.0 if power_mw is not None else None),
                    clock_core_mhz=(float(core) if core is not None else None),
                    clock_memory_mhz=(float(memclk) if memclk is not None else None),
                    fan_percent=(float(fan) if fan is not None else None),
                )
            )
        return tuple(gpus)


def parse_nvidia_smi(output: str) -> tuple[GpuMetrics, ...]:
    gpus: list[GpuMetrics] = []
    for line in output.splitlines():
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < len(NVIDIA_SMI_FIELDS):
            continue
        index = parse_int(parts[0], source="nvidia-smi")
        gpus.append(
            GpuMetrics(
                index=index if index is not None else len(gpus),
                vendor="NVIDIA",
                model=parts[1] or None,
                temperature_c=_smi_number(parts[2]),
                utilization_percent=_smi_number(parts[3]),
                vram_total_mb=_smi_number(parts[5]),
                vram_used_mb=_smi_number(parts[6]),
                power_draw_w=_smi_number(parts[8]),
                clock_core_mhz=_smi_number(parts[10]),
                clock_memory_mhz=_smi_number(parts[11]),
                fan_percent=_smi_number(parts[12]),
            )
        )
    return tuple(gpus)


def _smi_number(raw: str) -> float | None:
    # nvidia-smi prints "[N/A]" or "[Not Supported]" for unavailable fields.
    if not raw or raw.startswith("["):
        return None
    return parse_float(raw, source="nvidia-smi")


class NvidiaSmiGpuAdapter(GpuAdapter):
    vendor = "NVIDIA"

    def __init__(self, reader: SensorReader, binary: str = "nvidia-smi") -> None:
        self._reader = reader
        self._binary = binary

    def poll(self) -> tuple[GpuMetrics, ...]:
        output = self._reader.exec_capture(
            [
                self._binary,
                "--query-gpu=" + ",".join(NVIDIA_SMI_FIELDS),
                "--format=csv,noheader,nounits",
            ]
        )
        if not output:
            return ()
        return parse_nvidia_smi(output)


def amd_cards(reader: SensorReader) -> list[str]:
    drm = reader.sys("class", "drm")
    cards = []
    for name in reader.read_directory(drm):
        if not name.startswith("card") or "-" in name:
            continue
        if reader.read_scalar(drm / name / "device" / "vendor") == AMD_VENDOR_ID:
            cards.append(name)
    return cards


def _active_dpm_clock(raw: str | None) -> float | None:
    if not raw:
        return None
    for line in raw.splitlines():
        match = _DPM_ACTIVE_RE.match(line)
        if match:
            return float(match.group(1))
    return None


class AmdSysfsGpuAdapter(GpuAdapter):
    vendor = "AMD"

    def __init__(self, reader: SensorReader) -> None:
        self._reader = reader

    def poll(self) -> tuple[GpuMetrics, ...]:
        r = self._reader
        gpus: list[GpuMetrics] = []
        for index, card in enumerate(amd_cards(r)):
            base = r.sys("class", "drm", card, "device")
            model = r.read_scalar(base / "product_name") or r.read_scalar(base / "name") or "AMD GPU"
            busy = r.read_float(base / "gpu_busy_percent")
            vram_total = r.read_int(base / "mem_info_vram_total")
            vram_used = r.read_int(base / "mem_info_vram_used")

            temp = power = fan = None
            for hwmon in r.read_directory(base / "hwmon"):
                hw = base / "hwmon" / hwmon
                if temp is None:
                    raw_temp = r.read_int(hw / "temp1_input")
                    temp = raw_temp / 1000 if raw_temp is not None else None
                if power is None:
                    raw_power = r.read_int(hw / "power1_average")
                    if raw_power is None:
                        raw_power = r.read_int(hw / "power1_input")
                    power = raw_power / 1_000_000 if raw_power is not None else None
                if fan is None:
                    pwm = r.read_int(hw / "pwm1")
                    fan = (pwm / 255.0) * 100.0 if pwm is not None else None

            gpus.append(
                GpuMetrics(
                    index=index,
                    vendor=self.vendor,
                    model=model.strip(),
                    utilization_percent=busy,
                    temperature_c=temp,
                    vram_total_mb=(vram_total / (1024 * 1024) if vram_total is not None else None),
                    vram_used_mb=(vram_used / (1024 * 1024) if vram_used is not None else None),
                    power_draw_w=power,
                    clock_core_mhz=_active_dpm_clock(r.read_scalar(base / "pp_dpm_sclk")),
                    clock_memory_mhz=_active_dpm_clock(r.read_scalar(base / "pp_dpm_mclk")),
                    fan_percent=fan,
                )
            )
        return tuple(gpus)


def detect_vendor(reader: SensorReader) -> str | None:
    if shutil.which("nvidia-smi"):
        return "nvidia"
    drm = reader.sys("class", "drm")
    for name in reader.read_directory(drm):
        if not name.startswith("card") or "-" in name:
            continue
        vendor = reader.read_scalar(drm / name / "device" / "vendor")
        if vendor == AMD_VENDOR_ID:
            return "amd"
        if vendor == NVIDIA_VENDOR_ID:
            return "nvidia"
    return None


def build_native_gpu_adapter(reader: SensorReader) -> GpuAdapter:
    try:
        return NvmlGpuAdapter()
    except Exception as exc:
        _log.debug("NVML unavailable: %s", exc)
    if amd_cards(reader):
        return AmdSysfsGpuAdapter(reader)
    return GpuAdapter()


def build_fallback_gpu_adapter(reader: SensorReader) -> GpuAdapter:
    if shutil.which("nvidia-smi"):
        return NvidiaSmiGpuAdapter(reader)
    if amd_cards(reader):
        return AmdSysfsGpuAdapter(reader)
    return GpuAdapter()
