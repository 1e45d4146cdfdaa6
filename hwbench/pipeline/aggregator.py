import threading
from typing import Iterable, Optional
from hwbench.domain.models import SENTINEL, PeakMetricsRecord, UtilizationSnapshot


def _measured(value: float) -> float:
    return value if value >= 0 else 0.0


class SampleAggregator:
    """Keeps the busiest snapshot of one run.

    Ranking is CPU load for software runs and total GPU engine load otherwise;
    on equal rank the first snapshot seen is kept.
    """

    def __init__(self, hardware_accelerated: bool, overall_includes_copy: bool = True):
        self.hardware_accelerated = hardware_accelerated
        self.overall_includes_copy = overall_includes_copy
        self._lock = threading.Lock()
        self._best: Optional[UtilizationSnapshot] = None
        self._best_rank = 0.0
        self._count = 0

    def rank(self, snapshot: UtilizationSnapshot) -> float:
        if not self.hardware_accelerated:
            return _measured(snapshot.cpu)
        return sum(_measured(v) for v in snapshot.gpu_engines(include_copy=True))

    def add(self, snapshot: UtilizationSnapshot):
        rank = self.rank(snapshot)
        with self._lock:
            self._count += 1
            if self._best is None or rank > self._best_rank:
                self._best = snapshot
                self._best_rank = rank

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def overall(self, snapshot: UtilizationSnapshot) -> float:
        available = [v for v in snapshot.gpu_engines(include_copy=self.overall_includes_copy) if v >= 0]
        return max(available) if available else SENTINEL

    def result(self) -> PeakMetricsRecord:
        with self._lock:
            best, count = self._best, self._count
        if best is None:
            return PeakMetricsRecord.zero()
        return PeakMetricsRecord(
            **best.model_dump(),
            gpu_overall=self.overall(best),
            sample_count=count,
        )


def aggregate(snapshots: Iterable[UtilizationSnapshot], hardware_accelerated: bool,
              overall_includes_copy: bool = True) -> PeakMetricsRecord:
    aggregator = SampleAggregator(hardware_accelerated, overall_includes_copy)
    for snapshot in snapshots:
        aggregator.add(snapshot)
    return aggregator.result()
