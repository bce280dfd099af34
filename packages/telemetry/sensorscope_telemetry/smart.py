"""Block device enumeration and SMART attribute parsing."""

from __future__ import annotations

import logging
import re
import shutil

from .models import BlockDevice, SmartHealth
from .sensors import SensorReader


_log = logging.getLogger("sensorscope.telemetry.smart")

_LEADING_INT_RE = re.compile(r"^(\d+)")

# ATA attribute IDs
ATTR_REALLOCATED = "5"
ATTR_POWER_ON_HOURS = "9"
ATTR_POWER_CYCLES = "12"
ATTR_TEMPERATURE = "194"
ATTR_PENDING = "197"
ATTR_WEAR = ("231", "233")


def _leading_int(raw: str) -> int | None:
    match = _LEADING_INT_RE.match(raw.replace(",", ""))
    return int(match.group(1)) if match else None


def parse_lsblk(output: str) -> tuple[BlockDevice, ...]:
    """Parse ``lsblk -d -n -b -o NAME,TYPE,SIZE,ROTA,MODEL`` keeping whole disks."""
    devices: list[BlockDevice] = []
    for line in output.splitlines():
        parts = line.split(None, 4)
        if len(parts) < 2 or parts[1] != "disk":
            continue
        size = _leading_int(parts[2]) if len(parts) > 2 else None
        rota = parts[3] if len(parts) > 3 else None
        devices.append(
            BlockDevice(
                name=parts[0],
                size_bytes=size,
                rotational=(rota == "1") if rota in ("0", "1") else None,
                model=(parts[4].strip() or None) if len(parts) > 4 else None,
            )
        )
    return tuple(devices)


def list_block_devices(reader: SensorReader) -> tuple[BlockDevice, ...]:
    output = reader.exec_capture(["lsblk", "-d", "-n", "-b", "-o", "NAME,TYPE,SIZE,ROTA,MODEL"])
    if not output:
        return ()
    return parse_lsblk(output)


def parse_smart_attributes(device: str, output: str) -> SmartHealth:
    """Parse ``smartctl -A`` output for ATA attribute tables and NVMe health logs."""
    fields: dict[str, int | bool | None] = {
        "healthy": True,
        "temperature": None,
        "power_on_hours": None,
        "power_cycles": None,
        "wear_level": None,
        "reallocated_sectors": None,
        "pending_sectors": None,
    }

    for line in output.splitlines():
        stripped = line.strip()
        parts = stripped.split()
        if len(parts) >= 10 and parts[0].isdigit():
            attr_id, normalized, raw = parts[0], parts[3], _leading_int(parts[9])
            if attr_id == ATTR_TEMPERATURE:
                fields["temperature"] = raw
            elif attr_id == ATTR_POWER_ON_HOURS:
                fields["power_on_hours"] = raw
            elif attr_id == ATTR_POWER_CYCLES:
                fields["power_cycles"] = raw
            elif attr_id in ATTR_WEAR:
                fields["wear_level"] = _leading_int(normalized)
            elif attr_id == ATTR_REALLOCATED:
                fields["reallocated_sectors"] = raw
                if raw:
                    fields["healthy"] = False
            elif attr_id == ATTR_PENDING:
                fields["pending_sectors"] = raw
                if raw:
                    fields["healthy"] = False
            continue

        if ":" not in stripped:
            continue
        key, _, value = stripped.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if key == "temperature":
            fields["temperature"] = _leading_int(value)
        elif key == "power on hours":
            fields["power_on_hours"] = _leading_int(value)
        elif key == "power cycles":
            fields["power_cycles"] = _leading_int(value)
        elif key == "percentage used":
            used = _leading_int(value)
            fields["wear_level"] = max(0, 100 - used) if used is not None else None
        elif key == "media and data integrity errors":
            errors = _leading_int(value)
            if errors:
                fields["healthy"] = False

    return SmartHealth(device=device, **fields)  # type: ignore[arg-type]


class SmartCollector:
    def __init__(self, reader: SensorReader, binary: str = "smartctl", enabled: bool = True) -> None:
        self._reader = reader
        self._binary = binary
        self.enabled = enabled

    @property
    def available(self) -> bool:
        return self.enabled and shutil.which(self._binary) is not None

    def collect(self) -> dict[str, SmartHealth]:
        if not self.available:
            return {}
        records: dict[str, SmartHealth] = {}
        for device in list_block_devices(self._reader):
            output = self._reader.exec_capture([self._binary, "-A", f"/dev/{device.name}"])
            if not output:
                _log.debug("no SMART data for %s", device.name)
                continue
            records[device.name] = parse_smart_attributes(device.name, output)
        return records
