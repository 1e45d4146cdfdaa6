import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

# Marker for "not measurable on this platform/vendor"; distinct from a real 0% reading.
SENTINEL = -1.0

ENGINE_3D = "3d"
ENGINE_COPY = "copy"
ENGINE_DECODE = "decode"
ENGINE_ENCODE = "encode"


class Codec(str, Enum):
    H264 = "h264"
    H265 = "h265"
    UNKNOWN = "unknown"


class Chroma(str, Enum):
    YUV420 = "420"
    YUV422 = "422"
    YUV444 = "444"
    UNKNOWN = "unknown"


class BitDepth(str, Enum):
    BIT_8 = "8bit"
    BIT_10 = "10bit"
    UNKNOWN = "unknown"


class Resolution(str, Enum):
    HD = "HD"
    UHD = "UHD"
    UNKNOWN = "unknown"


class AccelMode(str, Enum):
    """Transcoder code paths; values are ffmpeg -hwaccel names."""
    NONE = "none"
    CUDA = "cuda"
    QSV = "qsv"
    D3D11VA = "d3d11va"
    D3D12VA = "d3d12va"
    VULKAN = "vulkan"
    VAAPI = "vaapi"
    VDPAU = "vdpau"


class GpuVendor(str, Enum):
    NVIDIA = "nvidia"
    INTEL = "intel"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "GpuVendor":
        """Classifies an adapter or manufacturer string."""
        if not name:
            return cls.UNKNOWN
        upper = name.upper()
        if "NVIDIA" in upper:
            return cls.NVIDIA
        if "INTEL" in upper or "MATROX" in upper:
            return cls.INTEL
        return cls.UNKNOWN


class Platform(str, Enum):
    WINDOWS = "windows"
    LINUX = "linux"

    @classmethod
    def current(cls) -> "Platform":
        return cls.WINDOWS if sys.platform.startswith("win") else cls.LINUX


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANNOT_BUILD = "cannot_build"
    ABORTED = "aborted"


class RunPhase(str, Enum):
    PENDING = "pending"
    COMPATIBILITY_CHECKED = "compatibility_checked"
    SKIPPED = "skipped"
    COMMAND_BUILT = "command_built"
    RUNNING = "running"
    SAMPLING = "sampling"
    COMPLETED = "completed"


_CODEC_TOKENS: List[Tuple[Codec, Tuple[str, ...]]] = [
    (Codec.H264, ("h264", "libx264", "x264", "avc")),
    (Codec.H265, ("h265", "hevc", "hvec", "x265")),
]
_CHROMA_TOKENS: List[Tuple[Chroma, Tuple[str, ...]]] = [
    (Chroma.YUV420, ("420",)),
    (Chroma.YUV422, ("422",)),
    (Chroma.YUV444, ("444",)),
]
_BIT_DEPTH_TOKENS: List[Tuple[BitDepth, Tuple[str, ...]]] = [
    (BitDepth.BIT_8, ("8bit", "b08")),
    (BitDepth.BIT_10, ("10bit", "b10")),
]
# UHD first: "uhd" contains "hd".
_RESOLUTION_TOKENS: List[Tuple[Resolution, Tuple[str, ...]]] = [
    (Resolution.UHD, ("uhd", "4k", "2160")),
    (Resolution.HD, ("hd", "1080")),
]


def _classify(filename: str, table, unknown):
    for value, tokens in table:
        if any(token in filename for token in tokens):
            return value
    return unknown


class VideoDescriptor(BaseModel):
    """What a source file is, as far as its name tells."""
    model_config = ConfigDict(frozen=True)

    filename: str = ""
    codec: Codec = Codec.UNKNOWN
    chroma: Chroma = Chroma.UNKNOWN
    bit_depth: BitDepth = BitDepth.UNKNOWN
    resolution: Resolution = Resolution.UNKNOWN

    @classmethod
    def from_filename(cls, filename: str) -> "VideoDescriptor":
        """Best-effort classification; unmatched tokens stay UNKNOWN."""
        lowered = Path(filename).name.lower()
        return cls(
            filename=Path(filename).name,
            codec=_classify(lowered, _CODEC_TOKENS, Codec.UNKNOWN),
            chroma=_classify(lowered, _CHROMA_TOKENS, Chroma.UNKNOWN),
            bit_depth=_classify(lowered, _BIT_DEPTH_TOKENS, BitDepth.UNKNOWN),
            resolution=_classify(lowered, _RESOLUTION_TOKENS, Resolution.UNKNOWN),
        )

    @property
    def pixel_format(self) -> str:
        pix_fmt = {
            Chroma.YUV422: "yuv422p",
            Chroma.YUV444: "yuv444p",
        }.get(self.chroma, "yuv420p")
        if self.bit_depth == BitDepth.BIT_10:
            pix_fmt += "10le"
        return pix_fmt

    @property
    def frame_size(self) -> str:
        return "3840x2160" if self.resolution == Resolution.UHD else "1920x1080"


class RunRequest(BaseModel):
    """One unit of benchmark work."""
    model_config = ConfigDict(frozen=True)

    video: VideoDescriptor
    mode: AccelMode
    source: Path
    parallel_streams: int = Field(default=1, ge=1)
    device_index: int = Field(default=0, ge=0)
    sequence: int = 0


class UtilizationSnapshot(BaseModel):
    gpu_3d: float = SENTINEL
    gpu_copy: float = SENTINEL
    video_decode: List[float] = Field(default_factory=list)
    video_encode: float = SENTINEL
    cpu: float = SENTINEL
    captured_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_engines(cls, engines: Dict[str, float], cpu: float = SENTINEL) -> "UtilizationSnapshot":
        """Builds a snapshot from an engine-name keyed reading (decode0, decode1, ...)."""
        decode_keys = sorted(
            (k for k in engines if k.startswith(ENGINE_DECODE)),
            key=lambda k: int(k[len(ENGINE_DECODE):] or 0),
        )
        return cls(
            gpu_3d=engines.get(ENGINE_3D, SENTINEL),
            gpu_copy=engines.get(ENGINE_COPY, SENTINEL),
            video_decode=[engines[k] for k in decode_keys],
            video_encode=engines.get(ENGINE_ENCODE, SENTINEL),
            cpu=cpu,
        )

    def gpu_engines(self, include_copy: bool = True) -> List[float]:
        values = [self.gpu_3d]
        if include_copy:
            values.append(self.gpu_copy)
        values.extend(self.video_decode)
        values.append(self.video_encode)
        return values


class PeakMetricsRecord(UtilizationSnapshot):
    """The busiest observed moment of one run."""
    gpu_overall: float = SENTINEL
    sample_count: int = 0

    @classmethod
    def zero(cls) -> "PeakMetricsRecord":
        return cls(gpu_3d=0.0, gpu_copy=0.0, video_decode=[], video_encode=0.0, cpu=0.0,
                   gpu_overall=0.0, sample_count=0)

    @property
    def degenerate(self) -> bool:
        return self.sample_count == 0


class ThroughputStats(BaseModel):
    min: float = 0.0
    max: float = 0.0
    average: float = 0.0
    count: int = 0

    @classmethod
    def from_fps(cls, values: List[float]) -> "ThroughputStats":
        """Stats over measured streams; sentinel (-1) values are left out."""
        measured = [v for v in values if v >= 0]
        if not measured:
            return cls()
        return cls(
            min=min(measured),
            max=max(measured),
            average=sum(measured) / len(measured),
            count=len(measured),
        )


class BenchmarkRow(BaseModel):
    """One finished (video, mode) cell of the benchmark matrix."""
    sequence: int
    video: VideoDescriptor
    mode: Optional[AccelMode]
    requested_mode: AccelMode
    record: PeakMetricsRecord = Field(default_factory=PeakMetricsRecord.zero)
    throughput: ThroughputStats = Field(default_factory=ThroughputStats)
    stream_fps: List[float] = Field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED
    reason: Optional[str] = None
