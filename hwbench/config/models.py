from pathlib import Path
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from hwbench.domain.models import AccelMode, GpuVendor, Platform

class GeneralConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    gpu: GpuVendor = GpuVendor.UNKNOWN
    platform: Platform = Field(default_factory=Platform.current)
    device_index: int = Field(default=0, ge=0)
    parallel_streams: int = Field(default=1, ge=1, le=16)
    decode_only: bool = True
    raw_source: bool = False
    software_only: bool = False
    software_codec: Optional[str] = None
    modes: List[AccelMode] = Field(default_factory=list)
    ffmpeg_path: str = "ffmpeg"
    extensions: List[str] = Field(default_factory=lambda: [
        ".mp4", ".mkv", ".mov", ".ts", ".264", ".265", ".h264", ".h265", ".hevc", ".yuv", ".bin"
    ])
    output_dir: Optional[Path] = None
    run_timeout: Optional[float] = Field(default=600.0, gt=0)
    cooldown_seconds: float = Field(default=2.0, ge=0)
    debug: bool = False

    @field_validator('extensions')
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]

class SamplingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    settle_seconds: float = Field(default=0.1, gt=0)
    poll_interval: float = Field(default=0.05, ge=0)
    overall_includes_copy: bool = True
    tool_timeout: float = Field(default=5.0, gt=0)
    drain_timeout: float = Field(default=5.0, gt=0)
    nvidia_smi_path: str = "nvidia-smi"
    intel_gpu_top_path: str = "intel_gpu_top"

class EncodeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration_seconds: float = Field(default=20.0, gt=0)
    bitrate_tokens: Dict[str, int] = Field(default_factory=lambda: {
        "10mbps": 10, "15mbps": 15, "20mbps": 20, "30mbps": 30
    })
    # None keeps the "cannot build" outcome for files without a bitrate token.
    default_bitrate_mbps: Optional[int] = Field(default=None, gt=0)
    decode_stream_loop: int = Field(default=990, ge=-1)
    encode_stream_loop: int = Field(default=99, ge=-1)

    @field_validator('bitrate_tokens')
    @classmethod
    def validate_bitrates(cls, v: Dict[str, int]) -> Dict[str, int]:
        for token, mbps in v.items():
            if mbps <= 0:
                raise ValueError(f"Invalid bitrate {mbps} for token {token}. Must be positive.")
        return {token.lower(): mbps for token, mbps in v.items()}

class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    encode: EncodeConfig = Field(default_factory=EncodeConfig)

    def with_overrides(self, **general_updates) -> "AppConfig":
        """Returns a copy with the given general settings replaced (None values ignored)."""
        updates = {k: v for k, v in general_updates.items() if v is not None}
        if not updates:
            return self
        general = GeneralConfig.model_validate({**self.general.model_dump(), **updates})
        return self.model_copy(update={"general": general})
