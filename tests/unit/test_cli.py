import sys
import unittest
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "apps" / "cli"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_app.cli import build_parser, run_summary
from sensorscope_core import SamplerStatus
from sensorscope_telemetry import StatsTracker


class CliTests(unittest.TestCase):
    def test_run_command_defaults(self):
        args = build_parser().parse_args(["run"])
        self.assertEqual(args.command, "run")
        self.assertIsNone(args.seconds)
        self.assertFalse(args.print)
        self.assertFalse(args.no_log)

    def test_run_command_options(self):
        args = build_parser().parse_args(["run", "--seconds", "2.5", "--print", "--no-log"])
        self.assertEqual(args.seconds, 2.5)
        self.assertTrue(args.print)
        self.assertTrue(args.no_log)

    def test_snapshot_command(self):
        args = build_parser().parse_args(["snapshot", "--wait", "0.5"])
        self.assertEqual(args.command, "snapshot")
        self.assertEqual(args.wait, 0.5)

    def test_doctor_command(self):
        args = build_parser().parse_args(["doctor", "--export", "--out-dir", "/tmp/x"])
        self.assertEqual(args.command, "doctor")
        self.assertTrue(args.export)
        self.assertEqual(args.out_dir, "/tmp/x")

    def test_command_required(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_run_summary_lists_tracked_metrics(self):
        stats = StatsTracker()
        stats.update("cpu_usage", 10.0)
        stats.update("mem_percent", 40.0)
        stats.update("rapl_package-0_power", 5000.0)
        loop = SimpleNamespace(status=SamplerStatus(ticks=3, snapshots=2))
        state = SimpleNamespace(
            dispatch=SimpleNamespace(demoted=lambda: {"fans": "psutil"}),
            stats=stats,
            session_log=None,
        )
        payload = run_summary(loop, state)
        self.assertEqual(payload["metrics"], ["cpu_usage", "mem_percent"])
        self.assertEqual(payload["sampler"]["snapshots"], 2)
        self.assertEqual(payload["providers"]["demoted"], {"fans": "psutil"})
        self.assertNotIn("session_log", payload)


if __name__ == "__main__":
    unittest.main()
