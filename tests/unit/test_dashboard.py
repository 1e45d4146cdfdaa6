from io import StringIO
from pathlib import Path
from rich.console import Console, Group
from hwbench.domain.models import (
    AccelMode, BenchmarkRow, PeakMetricsRecord, RunRequest, RunStatus, ThroughputStats, VideoDescriptor
)
from hwbench.ui.dashboard import Dashboard, format_fps, format_percent, format_time, render_results_table
from hwbench.ui.state import UIState

def _render(renderable) -> str:
    console = Console(file=StringIO(), width=200, record=True)
    console.print(renderable)
    return console.export_text()

def _completed_row():
    return BenchmarkRow(
        sequence=0,
        video=VideoDescriptor.from_filename("a_h264_420_8bit_hd.mp4"),
        mode=AccelMode.CUDA,
        requested_mode=AccelMode.CUDA,
        record=PeakMetricsRecord(gpu_3d=35.0, gpu_copy=-1.0, video_decode=[88.0], video_encode=0.0,
                                 cpu=7.5, gpu_overall=88.0, sample_count=12),
        throughput=ThroughputStats.from_fps([410.0, 398.0]),
        stream_fps=[410.0, 398.0],
    )

def test_format_helpers():
    assert format_percent(-1.0) == "n/a"
    assert format_percent(None) == "n/a"
    assert format_percent(42.0) == "42.0%"
    assert format_fps(-1.0) == "n/a"
    assert format_time(75) == "01m 15s"

def test_results_table_shows_sentinels_as_na():
    skipped = BenchmarkRow(
        sequence=1,
        video=VideoDescriptor.from_filename("b_h264_444_8bit_hd.mp4"),
        mode=AccelMode.CUDA,
        requested_mode=AccelMode.CUDA,
        status=RunStatus.SKIPPED,
        reason="unsupported format",
    )
    text = _render(render_results_table([_completed_row(), skipped]))
    assert "a_h264_420_8bit_hd.mp4" in text
    assert "88.0%" in text
    assert "n/a" in text
    assert "404.0" in text
    assert "skipped" in text
    assert "unsupported format" in text

def test_dashboard_panels_render():
    state = UIState()
    state.start_matrix(2, ["cuda"])
    video = VideoDescriptor.from_filename("a_h264_420_8bit_hd.mp4")
    state.start_run(RunRequest(video=video, mode=AccelMode.CUDA, source=Path("a.mp4"), parallel_streams=2))
    state.record_sample(cpu=11.0, gpu_overall=-1.0)

    dashboard = Dashboard(state, console=Console(file=StringIO(), width=160))
    display = dashboard.create_display()
    assert isinstance(display, Group)

    text = _render(display)
    assert "RUNNING" in text
    assert "x2" in text
    assert "11.0%" in text

    state.add_row(_completed_row())
    text = _render(dashboard.create_display())
    assert "LAST FINISHED" in text
    assert "1 completed" in text
