import logging
from hwbench.infrastructure.event_bus import EventBus
from hwbench.ui.state import UIState
from hwbench.domain.events import (
    MatrixStarted, MatrixFinished,
    RunStarted, RunSkipped, RunCompleted, RunAborted, SampleTaken
)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self.logger = logging.getLogger(__name__)
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(MatrixStarted, self.on_matrix_started)
        self.bus.subscribe(MatrixFinished, self.on_matrix_finished)
        self.bus.subscribe(RunStarted, self.on_run_started)
        self.bus.subscribe(RunSkipped, self.on_run_skipped)
        self.bus.subscribe(RunCompleted, self.on_run_completed)
        self.bus.subscribe(RunAborted, self.on_run_aborted)
        self.bus.subscribe(SampleTaken, self.on_sample_taken)

    def on_matrix_started(self, event: MatrixStarted):
        self.state.start_matrix(event.total_requests, event.modes)

    def on_matrix_finished(self, event: MatrixFinished):
        self.logger.debug(f"UI: matrix finished, rows={event.rows} aborted={event.aborted}")
        with self.state._lock:
            self.state.finished = True
            self.state.current_request = None

    def on_run_started(self, event: RunStarted):
        self.state.start_run(event.request)

    def on_run_skipped(self, event: RunSkipped):
        self.state.add_row(event.row)

    def on_run_completed(self, event: RunCompleted):
        self.state.add_row(event.row)

    def on_run_aborted(self, event: RunAborted):
        self.state.add_row(event.row)

    def on_sample_taken(self, event: SampleTaken):
        self.state.record_sample(event.cpu, event.gpu_overall)
