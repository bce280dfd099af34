import json
import logging
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_core import logging_setup
from sensorscope_core.logging_setup import (
    JsonFormatter,
    _uncaught_hook,
    bind_context,
    configure_logging,
    log_file,
    parse_level,
)


def _record(msg="hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord("sensorscope.test", logging.WARNING, __file__, 1, msg, args, None)
    record.__dict__.update(extra)
    return record


class JsonFormatterTests(unittest.TestCase):
    def tearDown(self):
        logging_setup._context.clear()

    def test_extra_fields_become_top_level_keys(self):
        line = json.loads(JsonFormatter().format(_record(event="fetch_failed", category="fans")))
        self.assertEqual(line["msg"], "hello world")
        self.assertEqual(line["level"], "WARNING")
        self.assertEqual(line["logger"], "sensorscope.test")
        self.assertEqual(line["event"], "fetch_failed")
        self.assertEqual(line["category"], "fans")
        self.assertNotIn("args", line)
        self.assertNotIn("exc", line)

    def test_timestamp_comes_from_record(self):
        record = _record()
        record.created = 0.0
        line = json.loads(JsonFormatter().format(record))
        self.assertEqual(line["ts_utc"], "1970-01-01T00:00:00+00:00")

    def test_bound_context_stamped_until_unbound(self):
        bind_context(session="20240101-000000")
        line = json.loads(JsonFormatter().format(_record()))
        self.assertEqual(line["session"], "20240101-000000")
        # Per-record extras win over bound context.
        line = json.loads(JsonFormatter().format(_record(session="explicit")))
        self.assertEqual(line["session"], "explicit")

        bind_context(session=None)
        self.assertNotIn("session", json.loads(JsonFormatter().format(_record())))

    def test_exception_text_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(exc_info=sys.exc_info())
        line = json.loads(JsonFormatter().format(record))
        self.assertIn("ValueError: boom", line["exc"])


class ConfigureLoggingTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.logger = logging.getLogger("sensorscope")
        self._saved = (list(self.logger.handlers), self.logger.level)
        self.logger.handlers = []

    def tearDown(self):
        for handler in self.logger.handlers:
            handler.close()
        self.logger.handlers, level = self._saved
        self.logger.setLevel(level)
        self._tmp.cleanup()

    def test_writes_json_lines_once(self):
        logger = configure_logging(console=False, level="warning", directory=self.dir)
        self.assertIs(configure_logging(console=False, directory=self.dir), logger)
        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.level, logging.WARNING)

        logging.getLogger("sensorscope.sampler").warning("over budget", extra={"event": "budget_warning"})
        logger.handlers[0].flush()
        lines = log_file(self.dir).read_text(encoding="utf-8").splitlines()
        self.assertEqual(json.loads(lines[-1])["event"], "budget_warning")
        self.assertEqual(json.loads(lines[-1])["logger"], "sensorscope.sampler")

    def test_parse_level(self):
        self.assertEqual(parse_level("debug"), logging.DEBUG)
        self.assertEqual(parse_level(logging.ERROR), logging.ERROR)
        self.assertEqual(parse_level("nonsense"), logging.INFO)


class CrashHookTests(unittest.TestCase):
    def test_uncaught_exception_logged_with_crash_id(self):
        hook = _uncaught_hook(logging.getLogger("sensorscope"))
        with self.assertLogs("sensorscope", level="CRITICAL") as captured:
            hook(RuntimeError, RuntimeError("bad"), None)
        self.assertTrue(captured.records[0].crash_id)
        self.assertEqual(captured.records[0].event, "uncaught_exception")

    def test_keyboard_interrupt_left_to_default_hook(self):
        hook = _uncaught_hook(logging.getLogger("sensorscope"))
        with patch.object(sys, "__excepthook__") as default:
            hook(KeyboardInterrupt, KeyboardInterrupt(), None)
        default.assert_called_once()


if __name__ == "__main__":
    unittest.main()
