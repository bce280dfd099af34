import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_telemetry.gpu import AmdSysfsGpuAdapter, amd_cards, parse_nvidia_smi
from sensorscope_telemetry.sensors import SensorReader


def _write(root: Path, rel: str, content: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class NvidiaSmiParseTests(unittest.TestCase):
    def test_parses_each_gpu_line(self):
        output = (
            "0, NVIDIA GeForce RTX 3080, 54, 37, 12, 10240, 2048, 8192, 115.32, 320.00, 1710, 9501, 41\n"
            "1, Tesla T4, 40, 0, 0, 15360, 0, 15360, [N/A], 70.00, 300, 5000, [Not Supported]\n"
        )
        gpus = parse_nvidia_smi(output)
        self.assertEqual(len(gpus), 2)
        first = gpus[0]
        self.assertEqual(first.index, 0)
        self.assertEqual(first.model, "NVIDIA GeForce RTX 3080")
        self.assertEqual(first.temperature_c, 54.0)
        self.assertEqual(first.utilization_percent, 37.0)
        self.assertEqual(first.vram_used_mb, 2048.0)
        self.assertAlmostEqual(first.vram_percent, 20.0)
        self.assertAlmostEqual(first.power_draw_w, 115.32)
        self.assertEqual(first.clock_core_mhz, 1710.0)
        self.assertEqual(first.fan_percent, 41.0)
        self.assertIsNone(gpus[1].power_draw_w)
        self.assertIsNone(gpus[1].fan_percent)

    def test_short_lines_ignored(self):
        self.assertEqual(parse_nvidia_smi("garbage\n0, name\n"), ())


class AmdSysfsTests(unittest.TestCase):
    def test_reads_amdgpu_card(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            dev = "sys/class/drm/card0/device"
            _write(root, f"{dev}/vendor", "0x1002")
            _write(root, f"{dev}/product_name", "Radeon RX 7900 XT\n")
            _write(root, f"{dev}/gpu_busy_percent", "63")
            _write(root, f"{dev}/mem_info_vram_total", str(20 * 1024 * 1024 * 1024))
            _write(root, f"{dev}/mem_info_vram_used", str(5 * 1024 * 1024 * 1024))
            _write(root, f"{dev}/hwmon/hwmon5/temp1_input", "61000")
            _write(root, f"{dev}/hwmon/hwmon5/power1_average", "187000000")
            _write(root, f"{dev}/hwmon/hwmon5/pwm1", "255")
            _write(root, f"{dev}/pp_dpm_sclk", "0: 500Mhz\n1: 2400Mhz *\n")
            _write(root, f"{dev}/pp_dpm_mclk", "0: 96Mhz\n1: 1249Mhz *\n")
            _write(root, "sys/class/drm/card0-DP-1/status", "connected")
            _write(root, "sys/class/drm/card1/device/vendor", "0x8086")

            reader = SensorReader(sys_root=root / "sys", proc_root=root / "proc")
            self.assertEqual(amd_cards(reader), ["card0"])
            gpus = AmdSysfsGpuAdapter(reader).poll()

        self.assertEqual(len(gpus), 1)
        gpu = gpus[0]
        self.assertEqual(gpu.vendor, "AMD")
        self.assertEqual(gpu.model, "Radeon RX 7900 XT")
        self.assertEqual(gpu.utilization_percent, 63.0)
        self.assertEqual(gpu.temperature_c, 61.0)
        self.assertAlmostEqual(gpu.power_draw_w, 187.0)
        self.assertAlmostEqual(gpu.fan_percent, 100.0)
        self.assertEqual(gpu.vram_total_mb, 20 * 1024.0)
        self.assertAlmostEqual(gpu.vram_percent, 25.0)
        self.assertEqual(gpu.clock_core_mhz, 2400.0)
        self.assertEqual(gpu.clock_memory_mhz, 1249.0)


if __name__ == "__main__":
    unittest.main()
