import threading
from pathlib import Path
from typing import Callable, List
from hwbench.domain.models import BenchmarkRow

ResultSink = Callable[[BenchmarkRow], None]

class ListResultSink:
    """Collects rows in memory in the order they were emitted."""

    def __init__(self):
        self.rows: List[BenchmarkRow] = []
        self._lock = threading.Lock()

    def __call__(self, row: BenchmarkRow):
        with self._lock:
            self.rows.append(row)

class JsonlResultSink:
    """Appends one JSON document per row to a file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def __call__(self, row: BenchmarkRow):
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(row.model_dump_json() + "\n")

class FanOutSink:
    def __init__(self, *sinks: ResultSink):
        self.sinks = list(sinks)

    def __call__(self, row: BenchmarkRow):
        for sink in self.sinks:
            sink(row)
