"""Explicitly owned monitor state: construction from config and teardown."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sensorscope_telemetry import (
    KeyFilter,
    ProviderDispatch,
    RateBounds,
    RateCounter,
    RateSettings,
    SensorReader,
    SnapshotAssembler,
    StatsTracker,
    Tier,
    TieredCache,
    build_dispatch,
)
from sensorscope_telemetry.smart import SmartCollector

from .config import AppConfig
from .logging_setup import bind_context
from .session_log import SessionLogger


_log = logging.getLogger("sensorscope.state")


@dataclass
class MonitorState:
    config: AppConfig
    reader: SensorReader
    dispatch: ProviderDispatch
    cache: TieredCache
    rates: RateCounter
    stats: StatsTracker
    smart: SmartCollector
    assembler: SnapshotAssembler
    session_log: SessionLogger | None = None
    closed: bool = field(default=False, init=False)

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        enable_session_log: bool | None = None,
        dispatch: ProviderDispatch | None = None,
    ) -> "MonitorState":
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
        cache = TieredCache(
            ttls={
                Tier.STATIC: cfg.tiers.static_s,
                Tier.MEDIUM: cfg.tiers.medium_s,
                Tier.SMART: cfg.tiers.smart_s,
            },
            stale_factor=cfg.tiers.stale_factor,
        )
        rates = RateCounter(history_size=cfg.rates.history_size, smoothing_window=cfg.rates.smoothing_window)
        stats = StatsTracker(filters=(KeyFilter("power", cfg.stats.power_min_w, cfg.stats.power_max_w),))
        smart = SmartCollector(reader, enabled=cfg.commands.smart_enabled)

        log_enabled = cfg.session_log.enabled if enable_session_log is None else enable_session_log
        session_log = None
        if log_enabled:
            session_log = SessionLogger(
                directory=cfg.session_log.directory,
                summary_every_s=cfg.session_log.summary_every_s,
            )
            bind_context(session=session_log.session_id)

        settings = RateSettings(
            energy=RateBounds(
                cfg.rates.energy_min_interval_s,
                cfg.rates.energy_max_interval_s,
                cfg.rates.power_max_w,
            ),
            io=RateBounds(cfg.rates.io_min_interval_s, cfg.rates.io_max_interval_s),
            energy_counter_range=2 ** cfg.rates.energy_counter_bits,
        )
        assembler = SnapshotAssembler(
            dispatch,
            cache,
            rates,
            stats,
            smart=smart,
            sink=session_log,
            settings=settings,
            startup_delay_s=cfg.sampling.startup_delay_s,
            max_workers=cfg.sampling.max_workers,
        )
        _log.info("monitor state ready", extra={"event": "state_ready"})
        return cls(
            config=cfg,
            reader=reader,
            dispatch=dispatch,
            cache=cache,
            rates=rates,
            stats=stats,
            smart=smart,
            assembler=assembler,
            session_log=session_log,
        )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.assembler.close()
        try:
            if self.session_log is not None:
                self.session_log.close(self.stats.get_all())
        finally:
            self.cache.clear()
            _log.info("monitor state closed", extra={"event": "state_closed"})
            if self.session_log is not None:
                bind_context(session=None)
