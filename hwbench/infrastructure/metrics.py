import logging
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple
import psutil
from hwbench.config.models import AppConfig
from hwbench.domain.models import (
    ENGINE_3D, ENGINE_COPY, ENGINE_DECODE, ENGINE_ENCODE, SENTINEL,
    GpuVendor, Platform, UtilizationSnapshot,
)
from hwbench.infrastructure.counters import (
    Counter, CounterBackend, CounterReadError, group_engine_instances, make_counter_backend,
)
from hwbench.infrastructure.parsers import (
    NVIDIA_FIELDS, IntelGpuTopLayout, discover_intel_layout, is_data_row,
    parse_intel_row, parse_nvidia_smi_header, parse_nvidia_smi_row,
)

logger = logging.getLogger(__name__)

# Column layouts discovered from tool headers, kept for the process lifetime.
_LAYOUT_CACHE: Dict[str, object] = {}
_LAYOUT_LOCK = threading.Lock()


def _cached_layout(key: str, discover: Callable[[], object]):
    with _LAYOUT_LOCK:
        if key not in _LAYOUT_CACHE:
            _LAYOUT_CACHE[key] = discover()
            logger.info(f"Discovered {key} column layout: {_LAYOUT_CACHE[key]}")
        return _LAYOUT_CACHE[key]


def clear_layout_cache():
    with _LAYOUT_LOCK:
        _LAYOUT_CACHE.clear()


class MetricSource(ABC):
    """Reads GPU engine utilization for one device."""

    name = "base"

    @abstractmethod
    def read_engines(self, settle: float) -> Dict[str, float]:
        """Engine name -> utilization in [0, 100], or the sentinel when unmeasurable."""

    def close(self):
        pass


class NullMetricSource(MetricSource):
    """Used when no GPU counters can be reached; every engine reads as the sentinel."""

    name = "none"

    def read_engines(self, settle: float) -> Dict[str, float]:
        time.sleep(settle)
        return {}


class CounterMetricSource(MetricSource):
    """Native counter API: discard read, settle, then concurrent authoritative read."""

    name = "counters"

    def __init__(self, backend: CounterBackend, vendor: GpuVendor, decode_only: bool = True,
                 max_workers: int = 8):
        self.backend = backend
        self.vendor = vendor
        self.decode_only = decode_only
        self.max_workers = max_workers

    def _open_counters(self, groups: Dict[str, List[str]]) -> Tuple[List[Tuple[str, Counter]], Dict[str, int]]:
        counters = []
        failures: Dict[str, int] = {}
        for engine, instances in groups.items():
            for instance in instances:
                try:
                    counters.append((engine, self.backend.open(instance)))
                except CounterReadError as e:
                    # The owning process may have exited since enumeration.
                    logger.debug(f"Counter {instance} unavailable: {e}")
                    failures[engine] = failures.get(engine, 0) + 1
        return counters, failures

    def read_engines(self, settle: float) -> Dict[str, float]:
        try:
            groups = group_engine_instances(self.backend.instances())
        except Exception as e:
            logger.warning(f"GPU counter enumeration failed: {e}")
            return {}

        counters, failures = self._open_counters(groups)
        totals: Dict[str, float] = {}
        successes: Dict[str, int] = {}
        lock = threading.Lock()

        def discard(item: Tuple[str, Counter]):
            try:
                item[1].read()
            except CounterReadError:
                pass

        def accumulate(item: Tuple[str, Counter]):
            engine, counter = item
            try:
                value = counter.read()
            except CounterReadError as e:
                logger.debug(f"Counter read failed for {engine}: {e}")
                with lock:
                    failures[engine] = failures.get(engine, 0) + 1
                return
            with lock:
                totals[engine] = totals.get(engine, 0.0) + value
                successes[engine] = successes.get(engine, 0) + 1

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(discard, counters))
                time.sleep(settle)
                list(pool.map(accumulate, counters))
        finally:
            for _, counter in counters:
                counter.close()

        # Engines nobody is using publish no instances: idle, not unmeasurable.
        engines = {ENGINE_3D: 0.0, ENGINE_COPY: 0.0, ENGINE_ENCODE: 0.0, f"{ENGINE_DECODE}0": 0.0}
        for engine in set(groups) | set(failures):
            engines[engine] = min(totals[engine], 100.0) if successes.get(engine) else SENTINEL

        if self.vendor == GpuVendor.INTEL:
            # Intel encodes on the video (VCS) engines, which report as VideoDecode.
            decodes = [v for k, v in engines.items() if k.startswith(ENGINE_DECODE) and v >= 0]
            engines[ENGINE_ENCODE] = SENTINEL if self.decode_only else min(sum(decodes), 100.0)
        return engines


class ToolMetricSource(MetricSource):
    """Vendor command line tool run as a one-shot subprocess."""

    name = "tool"

    def __init__(self, tool_path: str, device_index: int = 0, timeout: float = 5.0):
        self.tool_path = tool_path
        self.device_index = device_index
        self.timeout = timeout

    def _capture_lines(self, cmd: List[str], max_data_rows: Optional[int] = None) -> List[str]:
        """Runs the tool and returns its output lines.

        Streaming tools are stopped once max_data_rows data rows were read.
        """
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            universal_newlines=True,
            bufsize=1,
        )
        watchdog = threading.Timer(self.timeout, process.kill)
        watchdog.start()
        lines = []
        data_rows = 0
        try:
            for line in process.stdout:
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                lines.append(line)
                if max_data_rows is not None and is_data_row(line):
                    data_rows += 1
                    if data_rows >= max_data_rows:
                        break
        finally:
            watchdog.cancel()
            if process.poll() is None:
                process.kill()
            process.stdout.close()
            process.wait()
        return lines


class NvidiaSmiSource(ToolMetricSource):
    name = "nvidia-smi"

    def _command(self) -> List[str]:
        return [
            self.tool_path,
            f"--query-gpu={','.join(NVIDIA_FIELDS)}",
            "--format=csv,nounits",
            "-i", str(self.device_index),
        ]

    def read_engines(self, settle: float) -> Dict[str, float]:
        time.sleep(settle)
        try:
            lines = self._capture_lines(self._command())
        except OSError as e:
            logger.warning(f"{self.tool_path} failed: {e}")
            return {}
        if len(lines) < 2:
            logger.debug(f"{self.tool_path} returned no data: {lines}")
            return {}

        columns = _cached_layout(f"nvidia-smi:{self.tool_path}", lambda: parse_nvidia_smi_header(lines[0]))
        values = parse_nvidia_smi_row(lines[1], columns)
        return {
            ENGINE_3D: values.get("utilization.gpu", SENTINEL),
            ENGINE_COPY: SENTINEL,
            f"{ENGINE_DECODE}0": values.get("utilization.decoder", SENTINEL),
            ENGINE_ENCODE: values.get("utilization.encoder", SENTINEL),
        }


class IntelGpuTopSource(ToolMetricSource):
    name = "intel_gpu_top"

    def __init__(self, tool_path: str, device_index: int = 0, timeout: float = 5.0,
                 decode_only: bool = True):
        super().__init__(tool_path, device_index, timeout)
        self.decode_only = decode_only

    def _command(self, settle: float) -> List[str]:
        period_ms = max(1, int(settle * 1000))
        return [
            self.tool_path, "-o", "-", "-s", str(period_ms),
            "-d", f"drm:/dev/dri/card{self.device_index}",
        ]

    def read_engines(self, settle: float) -> Dict[str, float]:
        # First data row is the discard read, the second one is authoritative.
        try:
            lines = self._capture_lines(self._command(settle), max_data_rows=2)
        except OSError as e:
            logger.warning(f"{self.tool_path} failed: {e}")
            return {}

        headers = [line for line in lines if not is_data_row(line)]
        rows = [line for line in lines if is_data_row(line)]
        if not rows or (len(headers) < 2 and f"intel_gpu_top:{self.tool_path}" not in _LAYOUT_CACHE):
            logger.debug(f"{self.tool_path} returned no data: {lines}")
            return {}

        try:
            layout: IntelGpuTopLayout = _cached_layout(
                f"intel_gpu_top:{self.tool_path}", lambda: discover_intel_layout(headers[0], headers[1])
            )
        except ValueError as e:
            logger.warning(f"Cannot discover intel_gpu_top layout: {e}")
            return {}

        engines = parse_intel_row(rows[-1], layout)
        decodes = [v for k, v in engines.items() if k.startswith(ENGINE_DECODE) and v >= 0]
        if self.decode_only or not decodes:
            engines[ENGINE_ENCODE] = SENTINEL
        else:
            engines[ENGINE_ENCODE] = max(decodes)
        return engines


class MetricSampler:
    """Takes one UtilizationSnapshot: CPU via psutil plus the platform GPU source."""

    def __init__(self, source: MetricSource, settle_seconds: float = 0.1,
                 cpu_percent: Callable[..., float] = psutil.cpu_percent):
        self.source = source
        self.settle_seconds = settle_seconds
        self._cpu_percent = cpu_percent

    def _read_cpu(self) -> float:
        try:
            return float(self._cpu_percent(interval=None))
        except (psutil.Error, OSError) as e:
            logger.debug(f"CPU read failed: {e}")
            return SENTINEL

    def sample(self) -> UtilizationSnapshot:
        # cpu_percent(None) measures since the previous call: the first call opens the window.
        self._read_cpu()
        engines = self.source.read_engines(self.settle_seconds)
        cpu = self._read_cpu()
        return UtilizationSnapshot.from_engines(engines, cpu=cpu)

    def close(self):
        self.source.close()


def make_metric_source(config: AppConfig) -> MetricSource:
    """Selects the GPU metric source for the configured platform and vendor, once."""
    general, sampling = config.general, config.sampling
    if general.platform == Platform.WINDOWS:
        backend = make_counter_backend()
        if backend is None:
            return NullMetricSource()
        return CounterMetricSource(backend, general.gpu, decode_only=general.decode_only)

    if general.gpu == GpuVendor.NVIDIA:
        return NvidiaSmiSource(sampling.nvidia_smi_path, general.device_index, sampling.tool_timeout)
    if general.gpu == GpuVendor.INTEL:
        return IntelGpuTopSource(sampling.intel_gpu_top_path, general.device_index,
                                 sampling.tool_timeout, decode_only=general.decode_only)
    return NullMetricSource()


def make_sampler(config: AppConfig) -> MetricSampler:
    source = make_metric_source(config)
    logger.info(f"Metric source: {source.name}")
    return MetricSampler(source, config.sampling.settle_seconds)
