"""CLI entrypoints for SensorScope sampling, one-shot snapshots, and diagnostics."""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import asdict
from pathlib import Path

from sensorscope_core import (
    DiagnosticsExporter,
    MonitorState,
    PerformanceController,
    PerformanceTargets,
    SamplingLoop,
    build_doctor_payload,
    load_config,
)
from sensorscope_core.logging_setup import configure_logging, install_crash_hooks
from sensorscope_telemetry import Snapshot, snapshot_to_dict


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _print_line(snapshot: Snapshot) -> None:
    print(json.dumps(snapshot_to_dict(snapshot), sort_keys=True, default=str), flush=True)


def run_summary(loop: SamplingLoop, state: MonitorState) -> dict:
    payload = {
        "sampler": asdict(loop.status),
        "providers": {"demoted": state.dispatch.demoted()},
        "metrics": state.stats.keys(),
    }
    if state.session_log is not None:
        payload["session_log"] = str(state.session_log.path)
        payload["summary"] = str(state.session_log.summary_path)
    return payload


def cmd_run(args: argparse.Namespace) -> int:
    install_crash_hooks()
    cfg = load_config()
    state = MonitorState.from_config(cfg, enable_session_log=(False if args.no_log else None))
    loop = SamplingLoop(
        state.assembler,
        state.cache,
        poll_ms=cfg.sampling.poll_ms,
        sweep_interval_s=cfg.tiers.sweep_interval_s,
        on_snapshot=(_print_line if args.print else None),
        performance=PerformanceController(
            PerformanceTargets(
                cpu_percent_max=cfg.performance.cpu_percent_max,
                rss_mb_max=cfg.performance.rss_mb_max,
            )
        ),
        performance_every_s=cfg.performance.check_every_s,
    )

    try:
        loop.run_for(args.seconds)
    except KeyboardInterrupt:
        loop.stop()
    finally:
        state.close()

    if not args.print:
        _print_json(run_summary(loop, state))
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    cfg = load_config()
    cfg.sampling.startup_delay_s = 0.0
    state = MonitorState.from_config(cfg, enable_session_log=False)
    try:
        # Rates need a baseline sample before they can report.
        state.assembler.fetch()
        time.sleep(max(0.0, args.wait))
        snapshot = state.assembler.fetch()
    finally:
        state.close()

    if snapshot is None:
        _print_json({"success": False, "error": "fetch already in flight"})
        return 2
    _print_json(snapshot_to_dict(snapshot))
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = load_config()
    payload = build_doctor_payload(cfg)

    if args.export:
        exporter = DiagnosticsExporter(max_bundle_mb=cfg.diagnostics.max_bundle_mb)
        out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
        bundle = exporter.bundle(cfg=cfg, doctor_payload=payload, recent_sampler_events=[], output_dir=out_dir)
        payload["diagnostics_bundle"] = str(bundle)

    _print_json(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sensorscope", description="SensorScope hardware telemetry monitor")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Sample continuously and log the session")
    run_cmd.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds")
    run_cmd.add_argument("--print", action="store_true", help="Print each snapshot as a JSON line")
    run_cmd.add_argument("--no-log", action="store_true", help="Do not write session CSV files")
    run_cmd.set_defaults(func=cmd_run)

    snap_cmd = sub.add_parser("snapshot", help="Print a single snapshot as JSON")
    snap_cmd.add_argument("--wait", type=float, default=1.5, help="Seconds between baseline and reported sample")
    snap_cmd.set_defaults(func=cmd_snapshot)

    doctor_cmd = sub.add_parser("doctor", help="Print diagnostics and detected sensor sources")
    doctor_cmd.add_argument("--export", action="store_true", help="Export offline diagnostics bundle")
    doctor_cmd.add_argument("--out-dir", default=None, help="Optional output directory for diagnostics bundle")
    doctor_cmd.set_defaults(func=cmd_doctor)

    return parser


def main(argv: list[str] | None = None) -> int:
    cfg = load_config()
    configure_logging(keep_files=cfg.diagnostics.keep_log_files, console=False, level=cfg.diagnostics.log_level)
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
