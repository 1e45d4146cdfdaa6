from typing import List
from pydantic import BaseModel
from .models import BenchmarkRow, RunRequest

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class MatrixStarted(Event):
    total_requests: int
    modes: List[str] = []

class RunEvent(Event):
    request: RunRequest

class RunStarted(RunEvent):
    pass

class RunSkipped(RunEvent):
    row: BenchmarkRow

class RunCompleted(RunEvent):
    row: BenchmarkRow

class RunAborted(RunEvent):
    row: BenchmarkRow
    error_message: str

class SampleTaken(RunEvent):
    cpu: float
    gpu_overall: float

class MatrixFinished(Event):
    rows: int
    aborted: int = 0
