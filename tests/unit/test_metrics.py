import pytest
import psutil
from unittest.mock import MagicMock, patch
from hwbench.config.models import AppConfig, GeneralConfig
from hwbench.domain.models import GpuVendor, Platform
from hwbench.infrastructure.counters import Counter, CounterBackend, CounterReadError, group_engine_instances
from hwbench.infrastructure.metrics import (
    CounterMetricSource, IntelGpuTopSource, MetricSampler, NullMetricSource,
    NvidiaSmiSource, make_metric_source,
)
from test_parsers import INTEL_COLUMN_HEADER, INTEL_GROUP_HEADER, INTEL_ROW

PREFIX = "pid_{pid}_luid_0x00000000_0x0000C5F1_phys_0_eng_{eng}_engtype_{kind}"

def _instance(pid, eng, kind):
    return PREFIX.format(pid=pid, eng=eng, kind=kind)

class FakeCounter(Counter):
    def __init__(self, value):
        self.value = value
        self.closed = False

    def read(self) -> float:
        if self.value is None:
            raise CounterReadError("instance is gone")
        return self.value

    def close(self):
        self.closed = True

class FakeBackend(CounterBackend):
    def __init__(self, values):
        self.values = values
        self.opened = []

    def instances(self):
        return list(self.values)

    def open(self, instance):
        counter = FakeCounter(self.values[instance])
        self.opened.append(counter)
        return counter

ENGINE_VALUES = {
    _instance(100, 0, "3D"): 10.0,
    _instance(200, 0, "3D"): 15.0,
    _instance(100, 5, "VideoDecode"): 20.0,
    _instance(100, 3, "VideoDecode"): 40.0,
    _instance(100, 2, "Copy"): 5.0,
    _instance(100, 4, "VideoEncode"): 30.0,
    _instance(100, 1, "Compute_0"): 99.0,
}

def _popen_with_output(mock_popen, lines):
    process = mock_popen.return_value
    process.stdout = MagicMock()
    process.stdout.__iter__.return_value = iter(lines)
    process.poll.return_value = 0
    return process

class TestEngineGrouping:
    def test_groups_by_engine(self):
        groups = group_engine_instances(list(ENGINE_VALUES))
        assert len(groups["3d"]) == 2
        assert groups["decode0"] == [_instance(100, 3, "VideoDecode")]
        assert groups["decode1"] == [_instance(100, 5, "VideoDecode")]
        assert "Compute_0" not in str(groups)

class TestCounterMetricSource:
    def test_sums_same_engine_counters(self):
        backend = FakeBackend(ENGINE_VALUES)
        engines = CounterMetricSource(backend, GpuVendor.NVIDIA).read_engines(0)
        assert engines["3d"] == 25.0
        assert engines["copy"] == 5.0
        assert engines["decode0"] == 40.0
        assert engines["decode1"] == 20.0
        assert engines["encode"] == 30.0
        assert all(counter.closed for counter in backend.opened)

    def test_intel_encode_follows_decode_engines(self):
        backend = FakeBackend(ENGINE_VALUES)
        assert CounterMetricSource(backend, GpuVendor.INTEL, decode_only=True).read_engines(0)["encode"] == -1.0
        assert CounterMetricSource(backend, GpuVendor.INTEL, decode_only=False).read_engines(0)["encode"] == 60.0

    def test_failed_counter_degrades_only_its_share(self):
        values = dict(ENGINE_VALUES)
        values[_instance(200, 0, "3D")] = None
        values[_instance(100, 2, "Copy")] = None
        engines = CounterMetricSource(FakeBackend(values), GpuVendor.NVIDIA).read_engines(0)
        assert engines["3d"] == 10.0
        assert engines["copy"] == -1.0
        assert engines["decode0"] == 40.0

    def test_idle_engines_read_zero(self):
        engines = CounterMetricSource(FakeBackend({}), GpuVendor.NVIDIA).read_engines(0)
        assert engines == {"3d": 0.0, "copy": 0.0, "encode": 0.0, "decode0": 0.0}

    def test_enumeration_failure(self):
        backend = MagicMock(spec=CounterBackend)
        backend.instances.side_effect = RuntimeError("PDH_CSTATUS_NO_OBJECT")
        assert CounterMetricSource(backend, GpuVendor.NVIDIA).read_engines(0) == {}

    def test_total_is_capped(self):
        values = {_instance(1, 0, "3D"): 70.0, _instance(2, 0, "3D"): 60.0}
        assert CounterMetricSource(FakeBackend(values), GpuVendor.NVIDIA).read_engines(0)["3d"] == 100.0

class TestNvidiaSmiSource:
    def test_reads_csv(self):
        with patch("subprocess.Popen") as mock_popen:
            _popen_with_output(mock_popen, [
                "utilization.gpu [%], utilization.decoder [%], utilization.encoder [%]\n",
                "45, 80, 0\n",
            ])
            engines = NvidiaSmiSource("nvidia-smi", device_index=1).read_engines(0)

        assert engines == {"3d": 45.0, "copy": -1.0, "decode0": 80.0, "encode": 0.0}
        cmd = mock_popen.call_args[0][0]
        assert cmd[0] == "nvidia-smi"
        assert "--format=csv,nounits" in cmd
        assert cmd[cmd.index("-i") + 1] == "1"

    def test_missing_tool(self):
        with patch("subprocess.Popen", side_effect=FileNotFoundError("nvidia-smi")):
            assert NvidiaSmiSource("nvidia-smi").read_engines(0) == {}

    def test_no_data(self):
        with patch("subprocess.Popen") as mock_popen:
            _popen_with_output(mock_popen, ["No devices were found\n"])
            assert NvidiaSmiSource("nvidia-smi").read_engines(0) == {}

class TestIntelGpuTopSource:
    def _read(self, decode_only):
        second_row = INTEL_ROW.replace("45.25", "55.00")
        with patch("subprocess.Popen") as mock_popen:
            process = _popen_with_output(mock_popen, [
                INTEL_GROUP_HEADER + "\n", INTEL_COLUMN_HEADER + "\n", INTEL_ROW + "\n", second_row + "\n",
            ])
            engines = IntelGpuTopSource("intel_gpu_top", decode_only=decode_only).read_engines(0.1)
        return engines, mock_popen.call_args[0][0], process

    def test_second_row_is_authoritative(self):
        engines, cmd, _ = self._read(decode_only=True)
        assert engines["decode0"] == 55.0
        assert engines["3d"] == 12.5
        assert engines["encode"] == -1.0
        assert cmd[:5] == ["intel_gpu_top", "-o", "-", "-s", "100"]

    def test_encode_is_busiest_video_engine(self):
        engines, _, _ = self._read(decode_only=False)
        assert engines["encode"] == 55.0

class TestMetricSampler:
    def test_snapshot_combines_cpu_and_engines(self):
        source = MagicMock()
        source.read_engines.return_value = {"3d": 12.0, "decode0": 40.0}
        cpu = MagicMock(side_effect=[3.0, 42.0])
        snapshot = MetricSampler(source, settle_seconds=0.1, cpu_percent=cpu).sample()

        source.read_engines.assert_called_once_with(0.1)
        assert cpu.call_count == 2
        assert snapshot.cpu == 42.0
        assert snapshot.gpu_3d == 12.0
        assert snapshot.video_decode == [40.0]
        assert snapshot.gpu_copy == -1.0

    def test_cpu_failure_is_sentinel(self):
        cpu = MagicMock(side_effect=psutil.AccessDenied())
        snapshot = MetricSampler(NullMetricSource(), settle_seconds=0.01, cpu_percent=cpu).sample()
        assert snapshot.cpu == -1.0
        assert snapshot.gpu_engines() == [-1.0, -1.0, -1.0]

def _config(vendor, platform):
    return AppConfig(general=GeneralConfig(gpu=vendor, platform=platform))

class TestSourceSelection:
    def test_linux_sources(self):
        assert isinstance(make_metric_source(_config(GpuVendor.NVIDIA, Platform.LINUX)), NvidiaSmiSource)
        assert isinstance(make_metric_source(_config(GpuVendor.INTEL, Platform.LINUX)), IntelGpuTopSource)
        assert isinstance(make_metric_source(_config(GpuVendor.UNKNOWN, Platform.LINUX)), NullMetricSource)

    def test_windows_uses_counters(self):
        with patch("hwbench.infrastructure.metrics.make_counter_backend", return_value=FakeBackend({})):
            source = make_metric_source(_config(GpuVendor.INTEL, Platform.WINDOWS))
        assert isinstance(source, CounterMetricSource)
        assert source.vendor == GpuVendor.INTEL

    def test_windows_without_counter_api(self):
        with patch("hwbench.infrastructure.metrics.make_counter_backend", return_value=None):
            assert isinstance(make_metric_source(_config(GpuVendor.NVIDIA, Platform.WINDOWS)), NullMetricSource)
