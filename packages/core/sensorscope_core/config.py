"""Persistent app settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


CONFIG_VERSION = 2


@dataclass
class SamplingConfig:
    poll_ms: int = 100
    startup_delay_s: float = 1.0
    max_workers: int = 8


@dataclass
class TiersConfig:
    static_s: float = 30.0
    medium_s: float = 1.0
    smart_s: float = 60.0
    sweep_interval_s: float = 120.0
    stale_factor: float = 3.0


@dataclass
class RatesConfig:
    history_size: int = 100
    smoothing_window: int = 10
    energy_counter_bits: int = 32
    energy_min_interval_s: float = 0.1
    energy_max_interval_s: float = 10.0
    power_max_w: float = 1000.0
    io_min_interval_s: float = 0.0
    io_max_interval_s: float = 10.0


@dataclass
class StatsConfig:
    power_min_w: float = 0.0
    power_max_w: float = 1000.0


@dataclass
class SensorsConfig:
    sys_root: str = "/sys"
    proc_root: str = "/proc"
    prefer_native: bool = True
    max_index: int = 30
    max_consecutive_misses: int = 5


@dataclass
class CommandsConfig:
    timeout_ms: int = 5000
    max_output_bytes: int = 1024 * 1024
    smart_enabled: bool = True


@dataclass
class SessionLogConfig:
    enabled: bool = True
    directory: str | None = None
    summary_every_s: float = 300.0


@dataclass
class DiagnosticsConfig:
    keep_log_files: int = 7
    max_bundle_mb: int = 20
    log_level: str = "INFO"


@dataclass
class PerformanceConfig:
    cpu_percent_max: float = 5.0
    rss_mb_max: float = 200.0
    check_every_s: float = 5.0


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    tiers: TiersConfig = field(default_factory=TiersConfig)
    rates: RatesConfig = field(default_factory=RatesConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    sensors: SensorsConfig = field(default_factory=SensorsConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    session_log: SessionLogConfig = field(default_factory=SessionLogConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "SensorScope"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "SensorScope"
    return Path.home() / ".config" / "sensorscope"


def config_path() -> Path:
    return config_root() / "config.json"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    for k, v in raw.items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _normalize_sampling(cfg: AppConfig) -> None:
    cfg.sampling.poll_ms = max(50, min(5000, int(cfg.sampling.poll_ms)))
    cfg.sampling.startup_delay_s = float(max(0.0, cfg.sampling.startup_delay_s))
    cfg.sampling.max_workers = max(1, min(32, int(cfg.sampling.max_workers)))


def _normalize_tiers(cfg: AppConfig) -> None:
    t = cfg.tiers
    t.static_s = float(max(1.0, t.static_s))
    t.medium_s = float(max(0.1, t.medium_s))
    t.smart_s = float(max(5.0, t.smart_s))
    t.sweep_interval_s = float(max(10.0, t.sweep_interval_s))
    t.stale_factor = float(max(1.0, t.stale_factor))


def _normalize_rates(cfg: AppConfig) -> None:
    r = cfg.rates
    r.history_size = max(1, int(r.history_size))
    r.smoothing_window = max(1, min(r.history_size, int(r.smoothing_window)))
    if int(r.energy_counter_bits) not in (32, 48, 64):
        r.energy_counter_bits = 32
    r.energy_min_interval_s = float(max(0.0, r.energy_min_interval_s))
    r.energy_max_interval_s = float(max(r.energy_min_interval_s + 0.1, r.energy_max_interval_s))
    r.io_min_interval_s = float(max(0.0, r.io_min_interval_s))
    r.io_max_interval_s = float(max(r.io_min_interval_s + 0.1, r.io_max_interval_s))
    r.power_max_w = float(max(1.0, r.power_max_w))


def _normalize_stats(cfg: AppConfig) -> None:
    cfg.stats.power_min_w = float(cfg.stats.power_min_w)
    cfg.stats.power_max_w = float(max(cfg.stats.power_min_w, cfg.stats.power_max_w))


def _normalize_commands(cfg: AppConfig) -> None:
    cfg.commands.timeout_ms = max(100, min(60000, int(cfg.commands.timeout_ms)))
    cfg.commands.max_output_bytes = max(4096, int(cfg.commands.max_output_bytes))


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _normalize_diagnostics(cfg: AppConfig) -> None:
    d = cfg.diagnostics
    d.keep_log_files = max(2, int(d.keep_log_files))
    d.max_bundle_mb = max(1, int(d.max_bundle_mb))
    level = str(d.log_level).upper()
    d.log_level = level if level in _LOG_LEVELS else "INFO"


def _normalize_performance(cfg: AppConfig) -> None:
    cfg.performance.cpu_percent_max = float(max(1.0, cfg.performance.cpu_percent_max))
    cfg.performance.rss_mb_max = float(max(32.0, cfg.performance.rss_mb_max))
    cfg.performance.check_every_s = float(max(1.0, cfg.performance.check_every_s))


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = int(raw.get("config_version", 1))
    data = dict(raw)

    if version < 2:
        # v1 kept a flat poll_ms/smart_enabled pair; v2 groups settings by concern.
        sampling = dict(data.get("sampling", {}) or {})
        if "poll_ms" in data:
            sampling.setdefault("poll_ms", data.pop("poll_ms"))
        data["sampling"] = sampling
        commands = dict(data.get("commands", {}) or {})
        if "smart_enabled" in data:
            commands.setdefault("smart_enabled", bool(data.pop("smart_enabled")))
        data["commands"] = commands
        data["config_version"] = 2

    return data


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return AppConfig()

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=int(data.get("config_version", CONFIG_VERSION)),
        sampling=_merge(SamplingConfig, data.get("sampling", {})),
        tiers=_merge(TiersConfig, data.get("tiers", {})),
        rates=_merge(RatesConfig, data.get("rates", {})),
        stats=_merge(StatsConfig, data.get("stats", {})),
        sensors=_merge(SensorsConfig, data.get("sensors", {})),
        commands=_merge(CommandsConfig, data.get("commands", {})),
        session_log=_merge(SessionLogConfig, data.get("session_log", {})),
        diagnostics=_merge(DiagnosticsConfig, data.get("diagnostics", {})),
        performance=_merge(PerformanceConfig, data.get("performance", {})),
    )

    _normalize_sampling(cfg)
    _normalize_tiers(cfg)
    _normalize_rates(cfg)
    _normalize_stats(cfg)
    _normalize_commands(cfg)
    _normalize_diagnostics(cfg)
    _normalize_performance(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
