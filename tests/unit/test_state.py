import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_core import logging_setup
from sensorscope_core.config import AppConfig
from sensorscope_core.state import MonitorState
from sensorscope_telemetry import Tier


def _write(root: Path, rel: str, content: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class MonitorStateTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        _write(self.root, "proc/meminfo", "MemTotal: 2048 kB\nMemFree: 1024 kB\nMemAvailable: 1024 kB\n")
        _write(self.root, "proc/diskstats", "   8       0 sda 1 0 8 0 1 0 8 0 0 0 0\n")
        (self.root / "sys" / "class").mkdir(parents=True)

        cfg = AppConfig()
        cfg.sensors.sys_root = str(self.root / "sys")
        cfg.sensors.proc_root = str(self.root / "proc")
        cfg.sampling.startup_delay_s = 0.0
        cfg.commands.smart_enabled = False
        cfg.rates.energy_counter_bits = 48
        cfg.session_log.directory = str(self.root / "sessions")
        self.cfg = cfg

    def tearDown(self):
        self._tmp.cleanup()

    def test_builds_components_from_config(self):
        state = MonitorState.from_config(self.cfg)
        try:
            self.assertEqual(state.assembler.settings.energy_counter_range, 2**48)
            self.assertEqual(state.cache.entry(Tier.SMART).ttl, 60.0)
            self.assertIs(state.assembler.sink, state.session_log)
            self.assertFalse(state.smart.enabled)
        finally:
            state.close()

    def test_fetch_then_close_writes_session_files(self):
        state = MonitorState.from_config(self.cfg)
        snapshot = state.assembler.fetch()
        self.assertIsNotNone(snapshot)
        self.assertEqual(snapshot.memory.total, 2048 * 1024)
        state.close()
        state.close()

        self.assertTrue(state.session_log.path.exists())
        self.assertTrue(state.session_log.summary_path.exists())
        self.assertIsNone(state.cache.get(Tier.STATIC))

    def test_session_id_bound_to_log_lines_while_open(self):
        state = MonitorState.from_config(self.cfg)
        self.assertEqual(logging_setup._context.get("session"), state.session_log.session_id)
        state.close()
        self.assertNotIn("session", logging_setup._context)

    def test_session_log_can_be_disabled(self):
        state = MonitorState.from_config(self.cfg, enable_session_log=False)
        try:
            self.assertIsNone(state.session_log)
            self.assertIsNone(state.assembler.sink)
        finally:
            state.close()


if __name__ == "__main__":
    unittest.main()
