import threading
from collections import deque
from datetime import datetime
from typing import List, Optional
from hwbench.domain.models import BenchmarkRow, RunRequest, RunStatus

class UIState:
    """Thread-safe state manager for the live dashboard."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.completed_count = 0
        self.skipped_count = 0
        self.cannot_build_count = 0
        self.aborted_count = 0

        # Matrix
        self.total_requests = 0
        self.modes: List[str] = []
        self.started_at: Optional[datetime] = None
        self.finished = False

        # Current run
        self.current_request: Optional[RunRequest] = None
        self.current_started_at: Optional[datetime] = None
        self.current_samples = 0
        self.last_cpu: Optional[float] = None
        self.last_gpu: Optional[float] = None

        self.rows: List[BenchmarkRow] = []
        self.recent_rows = deque(maxlen=5)
        self.config_lines: List[str] = []

    @property
    def done_count(self) -> int:
        with self._lock:
            return self.completed_count + self.skipped_count + self.cannot_build_count + self.aborted_count

    @property
    def progress(self) -> float:
        with self._lock:
            if self.total_requests == 0:
                return 0.0
            return self.done_count / self.total_requests

    def start_matrix(self, total_requests: int, modes: List[str]):
        with self._lock:
            self.total_requests = total_requests
            self.modes = list(modes)
            self.started_at = datetime.now()
            self.finished = False

    def start_run(self, request: RunRequest):
        with self._lock:
            self.current_request = request
            self.current_started_at = datetime.now()
            self.current_samples = 0
            self.last_cpu = None
            self.last_gpu = None

    def record_sample(self, cpu: float, gpu_overall: float):
        with self._lock:
            self.current_samples += 1
            self.last_cpu = cpu
            self.last_gpu = gpu_overall

    def add_row(self, row: BenchmarkRow):
        with self._lock:
            if row.status == RunStatus.COMPLETED:
                self.completed_count += 1
            elif row.status == RunStatus.SKIPPED:
                self.skipped_count += 1
            elif row.status == RunStatus.CANNOT_BUILD:
                self.cannot_build_count += 1
            else:
                self.aborted_count += 1
            self.rows.append(row)
            self.recent_rows.appendleft(row)
            if self.current_request is not None and self.current_request.sequence == row.sequence:
                self.current_request = None
