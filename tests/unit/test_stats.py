import random
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_telemetry.stats import KeyFilter, StatsTracker


class StatsTrackerTests(unittest.TestCase):
    def test_min_max_avg_current(self):
        st = StatsTracker()
        for v in (3.0, 1.0, 5.0):
            self.assertTrue(st.update("cpu_usage", v))
        s = st.get("cpu_usage")
        self.assertEqual((s.min, s.max, s.current), (1.0, 5.0, 5.0))
        self.assertAlmostEqual(s.avg, 3.0)

    def test_min_and_max_are_monotonic(self):
        st = StatsTracker()
        rng = random.Random(7)
        prev_min, prev_max = None, None
        total = 0.0
        for n in range(1, 501):
            value = rng.uniform(-100, 100)
            total += value
            st.update("x", value)
            s = st.get("x")
            self.assertLessEqual(s.min, s.avg)
            self.assertLessEqual(s.avg, s.max)
            self.assertAlmostEqual(s.avg, total / n)
            self.assertEqual(s.current, value)
            if prev_min is not None:
                self.assertLessEqual(s.min, prev_min)
                self.assertGreaterEqual(s.max, prev_max)
            prev_min, prev_max = s.min, s.max

    def test_power_filter_rejects_out_of_range(self):
        st = StatsTracker()
        self.assertFalse(st.update("rapl_package-0_power", 5000.0))
        self.assertFalse(st.update("rapl_package-0_power", -1.0))
        self.assertIsNone(st.get("rapl_package-0_power"))
        self.assertTrue(st.update("rapl_package-0_power", 12.5))
        record = st.record("rapl_package-0_power")
        self.assertEqual(record.count, 3)
        self.assertEqual(record.valid_count, 1)

    def test_custom_filter(self):
        st = StatsTracker(filters=(KeyFilter("temp", -40.0, 150.0),))
        self.assertFalse(st.update("cpu_temp_Package", 300.0))
        self.assertTrue(st.update("rapl_x_power", 5000.0))

    def test_none_nan_inf_and_bool_ignored(self):
        st = StatsTracker()
        for bad in (None, float("nan"), float("inf"), True, "abc"):
            self.assertFalse(st.update("k", bad))
        self.assertEqual(st.keys(), [])
        self.assertFalse(st.has_last_valid_value("k"))

    def test_last_valid_value(self):
        st = StatsTracker()
        st.update("battery_power", 7.5)
        st.update("battery_power", None)
        self.assertTrue(st.has_last_valid_value("battery_power"))
        self.assertEqual(st.last_valid_value("battery_power"), 7.5)
        self.assertIsNone(st.last_valid_value("other"))

    def test_get_all_keeps_insertion_order(self):
        st = StatsTracker()
        for key in ("b", "a", "c"):
            st.update(key, 1)
        self.assertEqual(list(st.get_all()), ["b", "a", "c"])


if __name__ == "__main__":
    unittest.main()
