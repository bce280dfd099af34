import os
import sys
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from sensorscope_telemetry.gpu import GpuAdapter
from sensorscope_telemetry.models import CpuLoad, MemoryMetrics, TemperatureReading
from sensorscope_telemetry.providers import (
    Category,
    MetricSource,
    ProviderDispatch,
    PsutilSource,
    SysfsSource,
    _battery_state,
    sort_cpu_temperatures,
)
from sensorscope_telemetry.sensors import SensorReader


def _write(root: Path, rel: str, content: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def build_fake_tree(root: Path) -> None:
    hw = "sys/class/hwmon"
    _write(root, f"{hw}/hwmon0/name", "coretemp")
    _write(root, f"{hw}/hwmon0/temp1_input", "45000")
    _write(root, f"{hw}/hwmon0/temp1_label", "Package id 0")
    _write(root, f"{hw}/hwmon0/temp2_input", "40000")
    _write(root, f"{hw}/hwmon0/temp2_label", "Core 0")
    _write(root, f"{hw}/hwmon0/temp4_input", "41000")
    _write(root, f"{hw}/hwmon0/temp4_label", "Core 1")

    _write(root, f"{hw}/hwmon1/name", "acpitz")
    _write(root, f"{hw}/hwmon1/temp1_input", "30000")

    _write(root, f"{hw}/hwmon2/name", "nct6775")
    _write(root, f"{hw}/hwmon2/fan1_input", "800")
    _write(root, f"{hw}/hwmon2/fan2_input", "900")
    _write(root, f"{hw}/hwmon2/power1_input", "15000000")
    _write(root, f"{hw}/hwmon2/power1_label", "PPT")

    _write(root, f"{hw}/hwmon3/name", "spd5118")
    _write(root, f"{hw}/hwmon3/temp1_input", "35000")

    _write(root, f"{hw}/hwmon4/name", "nvme")
    _write(root, f"{hw}/hwmon4/temp1_input", "38000")
    _write(root, f"{hw}/hwmon4/temp1_label", "Composite")
    _write(root, f"{hw}/hwmon4/temp2_input", "45000")
    _write(root, f"{hw}/hwmon4/temp2_label", "Sensor 1")
    ctrl = root / "sys/devices/pci0000:00/0000:01:00.0/nvme/nvme0"
    ctrl.mkdir(parents=True)
    os.symlink(ctrl, root / hw / "hwmon4" / "device")

    _write(root, "sys/class/thermal/thermal_zone0/type", "x86_pkg_temp")
    _write(root, "sys/class/thermal/thermal_zone0/temp", "50000")
    _write(root, "sys/class/thermal/thermal_zone1/type", "acpitz")
    _write(root, "sys/class/thermal/thermal_zone1/temp", "28000")

    rapl = "sys/class/powercap"
    (root / rapl / "intel-rapl").mkdir(parents=True)
    _write(root, f"{rapl}/intel-rapl:0/name", "package-0")
    _write(root, f"{rapl}/intel-rapl:0/energy_uj", "123456")
    _write(root, f"{rapl}/intel-rapl:0/max_energy_range_uj", "262143328850")
    _write(root, f"{rapl}/intel-rapl:0:0/name", "core")
    _write(root, f"{rapl}/intel-rapl:0:0/energy_uj", "1000")
    _write(root, f"{rapl}/intel-rapl:1/name", "package-0")
    _write(root, f"{rapl}/intel-rapl:1/energy_uj", "2000")

    cpu = "sys/devices/system/cpu"
    _write(root, f"{cpu}/cpu0/cpufreq/scaling_cur_freq", "3600000")
    _write(root, f"{cpu}/cpu1/cpufreq/scaling_cur_freq", "2400000")
    _write(root, f"{cpu}/cpu10/cpufreq/scaling_cur_freq", "1000000")
    (root / cpu / "cpufreq").mkdir(parents=True)

    _write(root, "sys/class/net/lo/statistics/rx_bytes", "5")
    _write(root, "sys/class/net/lo/statistics/tx_bytes", "5")
    _write(root, "sys/class/net/eth0/statistics/rx_bytes", "1000")
    _write(root, "sys/class/net/eth0/statistics/tx_bytes", "2000")
    _write(root, "sys/class/net/eth0/operstate", "up")

    _write(root, "sys/block/sda/size", "1000")
    _write(root, "sys/block/sda/queue/rotational", "1")
    _write(root, "sys/block/sda/device/model", "TestDisk")
    _write(root, "sys/block/loop0/size", "8")

    _write(root, "sys/class/power_supply/AC/type", "Mains")
    bat = "sys/class/power_supply/BAT0"
    _write(root, f"{bat}/type", "Battery")
    _write(root, f"{bat}/present", "1")
    _write(root, f"{bat}/status", "Discharging")
    _write(root, f"{bat}/capacity", "80")
    _write(root, f"{bat}/voltage_now", "12000000")
    _write(root, f"{bat}/current_now", "-1000000")
    _write(root, f"{bat}/energy_now", "40000000")
    _write(root, f"{bat}/energy_full", "50000000")
    _write(root, f"{bat}/cycle_count", "42")

    _write(
        root,
        "proc/meminfo",
        "MemTotal:       16000 kB\nMemFree:         4000 kB\nMemAvailable:    8000 kB\n"
        "SwapTotal:       2000 kB\nSwapFree:         500 kB\n",
    )
    _write(
        root,
        "proc/diskstats",
        "   8       0 sda 100 0 2048 0 50 0 4096 0 0 0 0\n"
        "   8       1 sda1 90 0 1024 0 40 0 2048 0 0 0 0\n"
        "   7       0 loop0 1 0 8 0 0 0 0 0 0 0 0\n",
    )
    _write(root, "proc/cpuinfo", "processor\t: 0\nmodel name\t: Test CPU 9000\n")


class SysfsSourceTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        build_fake_tree(root)
        self.reader = SensorReader(sys_root=root / "sys", proc_root=root / "proc")
        self.source = SysfsSource(self.reader, gpu=GpuAdapter())

    def tearDown(self):
        self._tmp.cleanup()

    def test_cpu_temperatures_package_first(self):
        temps = self.source.cpu_temperatures()
        self.assertEqual(
            [t.label for t in temps],
            ["Package id 0", "x86_pkg_temp", "Core 0", "Core 1"],
        )
        self.assertEqual(temps[0].celsius, 45.0)

    def test_system_temperatures_exclude_cpu_disk_and_ddr5(self):
        temps = self.source.system_temperatures()
        self.assertEqual(
            [(t.label, t.celsius) for t in temps],
            [("acpitz", 28.0), ("acpitz_temp1", 30.0)],
        )

    def test_ddr5_modules(self):
        self.assertEqual(
            self.source.ddr5_temperatures(),
            (TemperatureReading(label="DDR5_Module_1", celsius=35.0),),
        )

    def test_fans_and_power_headers(self):
        fans = self.source.fans()
        self.assertEqual([(f.label, f.rpm) for f in fans], [("nct6775_fan1", 800.0), ("nct6775_fan2", 900.0)])
        power = self.source.power_sensors()
        self.assertEqual([(p.label, p.watts) for p in power], [("PPT", 15.0)])

    def test_nvme_temperature_prefers_composite(self):
        self.assertEqual(self.source.disk_temperatures(), {"nvme0n1": 38.0})

    def test_energy_counters_dedupe_names(self):
        counters = self.source.energy_counters()
        self.assertEqual(sorted(counters), ["core", "package-0", "package-0-1"])
        self.assertEqual(counters["package-0"].energy_uj, 123456)
        self.assertEqual(counters["package-0"].max_range_uj, 262143328850)
        self.assertIsNone(counters["core"].max_range_uj)

    def test_cpu_frequencies_in_core_order(self):
        self.assertEqual(self.source.cpu_frequencies(), (3600.0, 2400.0, 1000.0))

    def test_memory_from_meminfo(self):
        mem = self.source.memory()
        self.assertEqual(mem.total, 16000 * 1024)
        self.assertEqual(mem.used, 8000 * 1024)
        self.assertEqual(mem.swap_used, 1500 * 1024)
        self.assertAlmostEqual(mem.percent, 50.0)

    def test_disk_counters_whole_disks_in_bytes(self):
        counters = self.source.disk_counters()
        self.assertEqual(list(counters), ["sda"])
        self.assertEqual(counters["sda"].read_bytes, 2048 * 512)
        self.assertEqual(counters["sda"].write_bytes, 4096 * 512)

    def test_network_skips_loopback(self):
        nets = self.source.network_counters()
        self.assertEqual(len(nets), 1)
        self.assertEqual((nets[0].iface, nets[0].rx_bytes, nets[0].tx_bytes, nets[0].state), ("eth0", 1000, 2000, "up"))

    def test_disk_layout_and_cpu_model(self):
        layout = self.source.disk_layout()
        self.assertEqual([d.name for d in layout], ["sda"])
        self.assertEqual(layout[0].size_bytes, 512000)
        self.assertTrue(layout[0].rotational)
        self.assertEqual(layout[0].model, "TestDisk")
        self.assertEqual(self.source.system_info().cpu_model, "Test CPU 9000")

    def test_battery_discharging(self):
        bat = self.source.battery()
        self.assertTrue(bat.present)
        self.assertEqual(bat.state, "discharging")
        self.assertEqual(bat.percent, 80.0)
        self.assertAlmostEqual(bat.current_amps, 1.0)
        self.assertAlmostEqual(bat.power_watts, 12.0)
        self.assertAlmostEqual(bat.estimated_hours, 40.0 / 12.0)
        self.assertEqual(bat.cycle_count, 42)

    def test_battery_from_charge_counters(self):
        root = Path(self._tmp.name)
        bat = root / "sys/class/power_supply/BAT0"
        for name in ("capacity", "energy_now", "energy_full"):
            (bat / name).unlink()
        _write(root, "sys/class/power_supply/BAT0/status", "Charging")
        _write(root, "sys/class/power_supply/BAT0/voltage_now", "10000000")
        _write(root, "sys/class/power_supply/BAT0/current_now", "2000000")
        _write(root, "sys/class/power_supply/BAT0/charge_now", "2000000")
        _write(root, "sys/class/power_supply/BAT0/charge_full", "3000000")
        reading = self.source.battery()
        self.assertEqual(reading.state, "charging")
        self.assertAlmostEqual(reading.power_watts, 20.0)
        self.assertAlmostEqual(reading.percent, 200.0 / 3.0)
        self.assertAlmostEqual(reading.estimated_hours, 0.5)

    def test_missing_meminfo_raises(self):
        (Path(self._tmp.name) / "proc" / "meminfo").unlink()
        with self.assertRaises(RuntimeError):
            self.source.memory()


def _temp(label, current):
    return SimpleNamespace(label=label, current=current, high=None, critical=None)


class PsutilSourceTests(unittest.TestCase):
    def test_nvme_temperatures_one_key_per_drive(self):
        temps = {
            "nvme": [
                _temp("Composite", 40.0),
                _temp("Sensor 1", 45.0),
                _temp("Sensor 2", 41.0),
                _temp("Composite", 50.0),
                _temp("Sensor 1", 58.0),
            ],
            "drivetemp": [_temp("", 33.0)],
        }
        with patch("sensorscope_telemetry.providers.psutil.sensors_temperatures", return_value=temps):
            source = PsutilSource(SensorReader())
            result = source.disk_temperatures()
        self.assertEqual(result, {"nvme0n1": 40.0, "nvme1n1": 50.0, "drivetemp0": 33.0})

    def test_missing_sensor_api_gives_no_disk_temperatures(self):
        with patch("sensorscope_telemetry.providers.psutil.sensors_temperatures", return_value=None):
            self.assertEqual(PsutilSource(SensorReader()).disk_temperatures(), {})


class HelperTests(unittest.TestCase):
    def test_battery_state(self):
        self.assertEqual(_battery_state("Charging", 50.0), "charging")
        self.assertEqual(_battery_state("Not charging", 100.0), "full")
        self.assertEqual(_battery_state("Unknown", 60.0), "idle")
        self.assertEqual(_battery_state(None, None), "idle")

    def test_sort_cpu_temperatures(self):
        readings = [
            TemperatureReading("Core 2", 1.0),
            TemperatureReading("Tctl", 2.0),
            TemperatureReading("Core 0", 3.0),
        ]
        self.assertEqual([r.label for r in sort_cpu_temperatures(readings)], ["Tctl", "Core 0", "Core 2"])


class _Primary(MetricSource):
    name = "native"

    def __init__(self):
        self.calls = 0

    def memory(self):
        self.calls += 1
        raise OSError("meminfo gone")

    def cpu_load(self):
        return CpuLoad(current_load=10.0, per_core_load=(10.0,))


class _Fallback(MetricSource):
    name = "portable"

    def memory(self):
        return MemoryMetrics(total=100, used=50, free=50, swap_used=0, swap_total=0)

    def cpu_load(self):
        return CpuLoad(current_load=99.0, per_core_load=())

    def gpus(self):
        raise RuntimeError("no gpu tooling")


class DispatchTests(unittest.TestCase):
    def test_failure_demotes_only_that_category(self):
        primary = _Primary()
        dispatch = ProviderDispatch(primary, _Fallback())
        with self.assertLogs("sensorscope.telemetry.providers", level="WARNING"):
            mem = dispatch.call(Category.MEMORY)
        self.assertEqual(mem.total, 100)
        dispatch.call(Category.MEMORY)
        self.assertEqual(primary.calls, 1)
        self.assertEqual(dispatch.call(Category.CPU_LOAD).current_load, 10.0)
        self.assertEqual(list(dispatch.demoted()), ["memory"])
        self.assertEqual(dispatch.describe()["memory"], "portable")
        self.assertEqual(dispatch.describe()["cpu_load"], "native")

    def test_fallback_failure_propagates(self):
        fallback = _Fallback()
        dispatch = ProviderDispatch(fallback, fallback)
        with self.assertRaises(RuntimeError):
            dispatch.call(Category.GPUS)


if __name__ == "__main__":
    unittest.main()
