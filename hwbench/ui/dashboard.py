import threading
import time
from datetime import datetime
from typing import List, Optional
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from hwbench.ui.state import UIState
from hwbench.domain.models import BenchmarkRow, RunStatus

_STATUS_STYLES = {
    RunStatus.COMPLETED: "green",
    RunStatus.SKIPPED: "dim",
    RunStatus.CANNOT_BUILD: "yellow",
    RunStatus.ABORTED: "bright_red",
}

def format_percent(value: Optional[float]) -> str:
    """Utilization for display; the -1 sentinel shows as n/a."""
    if value is None or value < 0:
        return "n/a"
    return f"{value:.1f}%"

def format_fps(value: float) -> str:
    if value < 0:
        return "n/a"
    return f"{value:.1f}"

def format_time(seconds: float) -> str:
    """Format seconds to human readable time"""
    if seconds < 60:
        return f"{int(seconds):02d}s"
    elif seconds < 3600:
        return f"{int(seconds / 60):02d}m {int(seconds % 60):02d}s"
    else:
        return f"{int(seconds / 3600)}h {int((seconds % 3600) / 60):02d}m"

def render_results_table(rows: List[BenchmarkRow]) -> Table:
    """Final results, one line per (mode, video) pair in request order."""
    table = Table(title="BENCHMARK RESULTS", header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Video", no_wrap=True, overflow="ellipsis", max_width=48)
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("FPS min", justify="right")
    table.add_column("FPS avg", justify="right")
    table.add_column("FPS max", justify="right")
    table.add_column("GPU", justify="right", style="cyan")
    table.add_column("3D", justify="right")
    table.add_column("Copy", justify="right")
    table.add_column("Decode", justify="right")
    table.add_column("Encode", justify="right")
    table.add_column("CPU", justify="right", style="magenta")

    for row in rows:
        style = _STATUS_STYLES.get(row.status, "white")
        mode = row.mode.value if row.mode else row.requested_mode.value
        if row.status == RunStatus.COMPLETED:
            record, tp = row.record, row.throughput
            decode = " ".join(format_percent(v) for v in record.video_decode) or "n/a"
            table.add_row(
                str(row.sequence),
                row.video.filename,
                mode,
                f"[{style}]{row.status.value}[/]" + (f" ({row.reason})" if row.reason else ""),
                f"{tp.min:.1f}",
                f"{tp.average:.1f}",
                f"{tp.max:.1f}",
                format_percent(record.gpu_overall),
                format_percent(record.gpu_3d),
                format_percent(record.gpu_copy),
                decode,
                format_percent(record.video_encode),
                format_percent(record.cpu),
            )
        else:
            table.add_row(
                str(row.sequence),
                row.video.filename,
                mode,
                f"[{style}]{row.status.value}[/]",
                "", "", "", "", "", "", "", "",
                f"[dim]{row.reason or ''}[/]",
            )
    return table

class Dashboard:
    """Renders the live dashboard UI."""

    def __init__(self, state: UIState, console: Optional[Console] = None):
        self.state = state
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()
        self._spinner_frame = 0

    def _generate_status_panel(self) -> Panel:
        with self.state._lock:
            if self.state.finished:
                status, color = "FINISHED", "cyan"
            elif self.state.current_request is not None:
                status, color = "RUNNING", "green"
            else:
                status, color = "IDLE", "yellow"

            elapsed = ""
            if self.state.started_at:
                elapsed = format_time((datetime.now() - self.state.started_at).total_seconds())

            lines = [
                f"[dim]Status:[/] [bold {color}]{status}[/] | [dim]Elapsed:[/] {elapsed}",
                (
                    f"[dim]Progress:[/] {self.state.done_count}/{self.state.total_requests} "
                    f"({self.state.progress * 100:.0f}%) | "
                    f"[dim]Modes:[/] {', '.join(self.state.modes)}"
                ),
            ]
        return Panel("\n".join(lines), title="BENCHMARK STATUS", border_style="cyan")

    def _generate_current_panel(self) -> Panel:
        with self.state._lock:
            request = self.state.current_request
            if request is None:
                return Panel("Nothing running", title="CURRENT RUN", border_style="yellow")

            spinner_frames = "|/-\\"
            spinner_char = spinner_frames[self._spinner_frame % len(spinner_frames)]
            elapsed = 0.0
            if self.state.current_started_at:
                elapsed = (datetime.now() - self.state.current_started_at).total_seconds()

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("", width=1, style="yellow")
            table.add_column("File", style="yellow", width=40, no_wrap=True, overflow="ellipsis")
            table.add_column("Mode", style="cyan")
            table.add_column("Streams", justify="right")
            table.add_column("GPU", justify="right", style="cyan")
            table.add_column("CPU", justify="right", style="magenta")
            table.add_column("Samples", justify="right", style="dim")
            table.add_column("Time", justify="right")
            table.add_row(
                spinner_char,
                request.video.filename[:40],
                request.mode.value,
                f"x{request.parallel_streams}",
                format_percent(self.state.last_gpu),
                format_percent(self.state.last_cpu),
                str(self.state.current_samples),
                format_time(elapsed),
            )
        return Panel(table, title="CURRENT RUN", border_style="yellow")

    def _generate_recent_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.recent_rows:
                return Panel("No runs finished yet", title="LAST FINISHED", border_style="green")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("File", width=40, no_wrap=True, overflow="ellipsis")
            table.add_column("Mode", style="cyan")
            table.add_column("Status")
            table.add_column("FPS", justify="right")
            table.add_column("GPU", justify="right", style="cyan")
            table.add_column("CPU", justify="right", style="magenta")

            for row in list(self.state.recent_rows):
                style = _STATUS_STYLES.get(row.status, "white")
                mode = row.mode.value if row.mode else row.requested_mode.value
                if row.status == RunStatus.COMPLETED:
                    table.add_row(
                        row.video.filename[:40], mode, f"[{style}]{row.status.value}[/]",
                        f"{row.throughput.average:.1f}",
                        format_percent(row.record.gpu_overall),
                        format_percent(row.record.cpu),
                    )
                else:
                    table.add_row(row.video.filename[:40], mode, f"[{style}]{row.status.value}[/]", "", "", "")

        return Panel(table, title="LAST FINISHED", border_style="green")

    def _generate_summary_panel(self) -> Panel:
        with self.state._lock:
            summary = (
                f"{self.state.completed_count} completed  "
                f"{self.state.skipped_count} skipped  "
                f"{self.state.cannot_build_count} cannot build  "
                f"{self.state.aborted_count} aborted"
            )
        return Panel(summary, title="SESSION STATUS", border_style="white")

    def create_display(self) -> Group:
        return Group(
            self._generate_status_panel(),
            self._generate_current_panel(),
            self._generate_recent_panel(),
            self._generate_summary_panel(),
        )

    def _refresh_loop(self):
        """Background thread to update Live display."""
        while not self._stop_refresh.is_set():
            if self._live:
                self._spinner_frame = (self._spinner_frame + 1) % 4
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            time.sleep(0.5)

    def start(self):
        """Starts the Live display and refresh thread."""
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        """Stops the Live display and refresh thread."""
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
