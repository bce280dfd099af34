"""Diagnostics export helpers for local support bundles."""

from __future__ import annotations

import json
import platform
import re
import shutil
import tempfile
import zipfile
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pynvml

from sensorscope_telemetry import ProviderDispatch, SensorReader, build_dispatch
from sensorscope_telemetry.gpu import detect_vendor
from sensorscope_telemetry.providers import native_supported

from .config import AppConfig, config_path
from .logging_setup import log_dir
from .session_log import session_dir


_SECRET_RE = re.compile(r"(token|secret|password|apikey|api_key|auth)", re.IGNORECASE)

TOOLS = ("nvidia-smi", "smartctl", "lsblk")


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, Path):
        return str(value)
    return value


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if _SECRET_RE.search(k):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def nvml_status() -> dict[str, Any]:
    try:
        pynvml.nvmlInit()
    except pynvml.NVMLError as exc:
        return {"available": False, "error": str(exc)}
    try:
        return {
            "available": True,
            "driver": _decode(pynvml.nvmlSystemGetDriverVersion()),
            "devices": int(pynvml.nvmlDeviceGetCount()),
        }
    except pynvml.NVMLError as exc:
        return {"available": False, "error": str(exc)}
    finally:
        pynvml.nvmlShutdown()


def _decode(value: Any) -> str:
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else str(value)


def _sensor_roots(reader: SensorReader) -> dict[str, bool]:
    return {
        "hwmon": bool(reader.read_directory(reader.sys("class", "hwmon"))),
        "thermal": bool(reader.read_directory(reader.sys("class", "thermal"))),
        "powercap": reader.exists(reader.sys("class", "powercap", "intel-rapl")),
        "power_supply": bool(reader.read_directory(reader.sys("class", "power_supply"))),
        "diskstats": reader.exists(reader.proc("diskstats")),
        "meminfo": reader.exists(reader.proc("meminfo")),
    }


def build_doctor_payload(cfg: AppConfig, dispatch: ProviderDispatch | None = None) -> dict[str, Any]:
    reader = SensorReader(
        sys_root=cfg.sensors.sys_root,
        proc_root=cfg.sensors.proc_root,
        timeout_ms=cfg.commands.timeout_ms,
        max_bytes=cfg.commands.max_output_bytes,
    )
    dispatch = dispatch or build_dispatch(
        reader,
        prefer_native=cfg.sensors.prefer_native,
        max_index=cfg.sensors.max_index,
        max_misses=cfg.sensors.max_consecutive_misses,
    )
    return {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "config": redact(asdict(cfg)),
        "sensors": {
            "sys_root": str(reader.sys_root),
            "proc_root": str(reader.proc_root),
            "native_supported": native_supported(reader),
            "roots": _sensor_roots(reader),
        },
        "tools": {name: shutil.which(name) for name in TOOLS},
        "gpu": {"vendor": detect_vendor(reader), "nvml": nvml_status()},
        "providers": {
            "primary": dispatch.primary.name,
            "fallback": dispatch.fallback.name,
            "categories": dispatch.describe(),
            "demoted": dispatch.demoted(),
        },
    }


class DiagnosticsExporter:
    def __init__(self, app_name: str = "SensorScope", max_bundle_mb: int = 20) -> None:
        self.app_name = app_name
        self.max_bundle_bytes = max_bundle_mb * 1024 * 1024

    def bundle(
        self,
        cfg: AppConfig,
        doctor_payload: dict[str, Any],
        recent_sampler_events: list[dict[str, Any]] | None = None,
        output_dir: Path | None = None,
        sessions_dir: Path | None = None,
    ) -> Path:
        output_base = output_dir or Path(tempfile.gettempdir())
        output_base.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        zip_path = output_base / f"sensorscope-diagnostics-{stamp}.zip"

        config_file = config_path()
        logs = sorted(log_dir().glob("*.log*"))
        sessions = sessions_dir or session_dir(cfg.session_log.directory)
        # Newest sessions first so the size cap drops the oldest.
        session_files = sorted(sessions.glob("*.csv"), key=lambda p: p.stat().st_mtime, reverse=True)

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            manifest = {
                "app": self.app_name,
                "created_utc": datetime.now(timezone.utc).isoformat(),
                "host": platform.platform(),
                "python": platform.python_version(),
                "config_path": str(config_file),
                "log_dir": str(log_dir()),
                "sessions_dir": str(sessions),
            }
            zf.writestr("manifest.json", json.dumps(manifest, indent=2, sort_keys=True))
            zf.writestr("doctor.json", json.dumps(redact(doctor_payload), indent=2, sort_keys=True, default=_jsonable))
            zf.writestr("config.redacted.json", json.dumps(redact(asdict(cfg)), indent=2, sort_keys=True))
            zf.writestr(
                "sampler_events.json",
                json.dumps(redact(recent_sampler_events or []), indent=2, sort_keys=True, default=_jsonable),
            )

            for item in logs:
                zf.write(item, arcname=f"logs/{item.name}")

            budget = self.max_bundle_bytes
            for item in session_files:
                size = item.stat().st_size
                if size > budget:
                    continue
                budget -= size
                zf.write(item, arcname=f"sessions/{item.name}")

        return zip_path
