import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from hwbench.domain.models import ENGINE_3D, ENGINE_COPY, ENGINE_DECODE, ENGINE_ENCODE

GPU_ENGINE_OBJECT = "GPU Engine"
UTILIZATION_COUNTER = "Utilization Percentage"

# pid_1234_luid_0x00000000_0x0000C5F1_phys_0_eng_3_engtype_VideoDecode
_INSTANCE_REGEX = re.compile(r"_eng_(\d+)_engtype_([A-Za-z0-9]+)")

_ENGINE_TYPES = {
    "3D": ENGINE_3D,
    "Copy": ENGINE_COPY,
    "VideoEncode": ENGINE_ENCODE,
}


class CounterReadError(Exception):
    pass


class Counter(ABC):
    """A single performance counter instance."""

    @abstractmethod
    def read(self) -> float:
        """Returns the current value; raises CounterReadError when unreadable."""

    def close(self):
        pass


class CounterBackend(ABC):
    """Access to a native performance counter API."""

    @abstractmethod
    def instances(self) -> List[str]:
        """Names of the GPU engine counter instances currently published."""

    @abstractmethod
    def open(self, instance: str) -> Counter:
        pass


def group_engine_instances(instances: List[str]) -> Dict[str, List[str]]:
    """Groups GPU Engine instances by logical engine name.

    Video decode instances are split by physical engine number (decode0,
    decode1, ... in ascending engine order); unrelated engine types are left out.
    """
    groups: Dict[str, List[str]] = {}
    decode_engines = sorted({
        int(m.group(1)) for m in map(_INSTANCE_REGEX.search, instances)
        if m and m.group(2) == "VideoDecode"
    })
    decode_keys = {eng: f"{ENGINE_DECODE}{i}" for i, eng in enumerate(decode_engines)}

    for instance in instances:
        match = _INSTANCE_REGEX.search(instance)
        if not match:
            continue
        eng, engtype = int(match.group(1)), match.group(2)
        if engtype == "VideoDecode":
            key = decode_keys[eng]
        else:
            key = _ENGINE_TYPES.get(engtype)
        if key is not None:
            groups.setdefault(key, []).append(instance)
    return groups


class PdhCounter(Counter):
    def __init__(self, pdh, instance: str):
        self._pdh = pdh
        self._query = pdh.OpenQuery()
        path = pdh.MakeCounterPath((None, GPU_ENGINE_OBJECT, instance, None, -1, UTILIZATION_COUNTER))
        try:
            self._handle = pdh.AddCounter(self._query, path)
        except pdh.error as e:
            pdh.CloseQuery(self._query)
            raise CounterReadError(f"cannot open counter {instance}: {e}") from e

    def read(self) -> float:
        try:
            self._pdh.CollectQueryData(self._query)
            _, value = self._pdh.GetFormattedCounterValue(self._handle, self._pdh.PDH_FMT_DOUBLE)
        except self._pdh.error as e:
            raise CounterReadError(str(e)) from e
        return float(value)

    def close(self):
        try:
            self._pdh.RemoveCounter(self._handle)
        finally:
            self._pdh.CloseQuery(self._query)


class PdhCounterBackend(CounterBackend):
    """Windows Performance Data Helper counters through pywin32."""

    def __init__(self):
        import win32pdh
        self._pdh = win32pdh
        self.logger = logging.getLogger(__name__)

    def instances(self) -> List[str]:
        # Process-scoped instances come and go; refresh the object cache first.
        self._pdh.EnumObjects(None, None, self._pdh.PERF_DETAIL_WIZARD, True)
        _, instances = self._pdh.EnumObjectItems(None, None, GPU_ENGINE_OBJECT, self._pdh.PERF_DETAIL_WIZARD)
        return list(instances or [])

    def open(self, instance: str) -> Counter:
        return PdhCounter(self._pdh, instance)


def make_counter_backend() -> Optional[CounterBackend]:
    """PDH backend, or None when the native counter API is not reachable."""
    try:
        return PdhCounterBackend()
    except ImportError as e:
        logging.getLogger(__name__).warning(f"Native counter API unavailable: {e}")
        return None
