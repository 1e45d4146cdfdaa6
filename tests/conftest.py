import pytest
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional
from hwbench.config.models import AppConfig, GeneralConfig, SamplingConfig
from hwbench.domain.models import GpuVendor, Platform, UtilizationSnapshot
from hwbench.infrastructure.metrics import clear_layout_cache

class FakeSampler:
    """Returns queued snapshots, then a fixed one."""

    def __init__(self, snapshots: Optional[List[UtilizationSnapshot]] = None):
        self.snapshots = list(snapshots or [])
        self.calls = 0

    def sample(self) -> UtilizationSnapshot:
        self.calls += 1
        if self.snapshots:
            return self.snapshots.pop(0)
        return UtilizationSnapshot(gpu_3d=20.0, gpu_copy=0.0, video_decode=[50.0], video_encode=0.0, cpu=10.0)

    def close(self):
        pass

class FakeStream:
    """Stands in for a TranscoderStream that stays alive for a number of polls."""

    def __init__(self, index: int, polls_alive: int = 2, fps: float = 30.0):
        self.index = index
        self._remaining = polls_alive
        self._fps = fps
        self.killed = False
        self.joined = False
        self.returncode = 0

    def is_alive(self) -> bool:
        if self._remaining <= 0:
            return False
        self._remaining -= 1
        return True

    @property
    def fps(self) -> float:
        return self._fps

    def kill(self):
        if self._remaining > 0:
            self.killed = True
        self._remaining = 0

    def join(self, timeout: float = 5.0):
        self.joined = True

class FakeAdapter:
    """Records launched commands; fps may be given per stream."""

    def __init__(self, polls_alive: int = 2, fps=30.0):
        self.polls_alive = polls_alive
        self.fps = fps
        self.launched: List[List[List[str]]] = []
        self.streams: List[FakeStream] = []

    def launch_all(self, commands, cwd=None):
        self.launched.append(commands)
        streams = []
        for index, _ in enumerate(commands):
            fps = self.fps[index] if isinstance(self.fps, (list, tuple)) else self.fps
            streams.append(FakeStream(index, self.polls_alive, fps))
        self.streams.extend(streams)
        return streams

@pytest.fixture
def make_config(tmp_path):
    def _make(**general):
        settings = dict(
            gpu=GpuVendor.NVIDIA,
            platform=Platform.LINUX,
            cooldown_seconds=0,
            output_dir=tmp_path / "bench_out",
        )
        settings.update(general)
        return AppConfig(
            general=GeneralConfig(**settings),
            sampling=SamplingConfig(poll_interval=0, drain_timeout=1),
        )
    return _make

@pytest.fixture
def sources_dir(tmp_path) -> Path:
    d = tmp_path / "sources"
    d.mkdir()
    for name in (
        "a_h264_420_8bit_hd.mp4",
        "b_h264_444_8bit_hd.mp4",
        "c_h265_420_10bit_uhd.mp4",
    ):
        (d / name).write_bytes(b"\x00" * 16)
    return d

@pytest.fixture(autouse=True)
def _reset_layout_cache():
    clear_layout_cache()
    yield
    clear_layout_cache()

@pytest.fixture
def fakes():
    """Test doubles for the sampler and the ffmpeg adapter."""
    return SimpleNamespace(sampler=FakeSampler, adapter=FakeAdapter, stream=FakeStream)
