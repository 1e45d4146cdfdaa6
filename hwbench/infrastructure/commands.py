from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from hwbench.config.models import EncodeConfig
from hwbench.domain.models import AccelMode, Platform, RunRequest, VideoDescriptor

_HEVC_TOKENS = ("h265", "hevc", "x265")


class CommandResult(BaseModel):
    """ffmpeg argument list, or the reason none could be derived."""
    model_config = ConfigDict(frozen=True)

    args: Optional[List[str]] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.args is not None


class CommandBuilder:
    """Builds ffmpeg invocations per acceleration mode.

    Output depends only on the constructor settings and the call arguments.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", platform: Platform = Platform.LINUX,
                 encode: Optional[EncodeConfig] = None):
        self.ffmpeg_path = ffmpeg_path
        self.platform = platform
        self.encode = encode or EncodeConfig()

    def _raw_input_args(self, video: VideoDescriptor, stream_loop: int) -> List[str]:
        """Raw (uncontained) sources need pixel format and size spelled out."""
        return [
            "-stream_loop", str(stream_loop),
            "-pix_fmt", video.pixel_format,
            "-s", video.frame_size,
        ]

    def _qsv_device(self, device_index: int) -> str:
        if self.platform == Platform.LINUX:
            return f"/dev/dri/card{device_index}"
        return str(device_index)

    def _decode_device_args(self, mode: AccelMode, device_index: int) -> List[str]:
        if mode in (AccelMode.CUDA, AccelMode.VDPAU):
            return [
                "-hwaccel", mode.value,
                "-hwaccel_device", str(device_index),
                "-hwaccel_output_format", mode.value,
            ]
        if mode == AccelMode.QSV:
            return [
                "-hwaccel", "qsv",
                "-qsv_device", self._qsv_device(device_index),
                "-hwaccel_output_format", "qsv",
            ]
        if mode == AccelMode.VAAPI:
            return [
                "-hwaccel", "vaapi",
                "-hwaccel_device", f"/dev/dri/card{device_index}",
                "-hwaccel_output_format", "vaapi",
            ]
        if mode in (AccelMode.D3D11VA, AccelMode.D3D12VA):
            output_format = "d3d11" if mode == AccelMode.D3D11VA else "d3d12"
            return [
                "-hwaccel", mode.value,
                "-hwaccel_device", str(device_index),
                "-hwaccel_output_format", output_format,
            ]
        if mode == AccelMode.VULKAN:
            return [
                "-init_hw_device", f"vulkan=vk:{device_index}",
                "-hwaccel", "vulkan",
                "-hwaccel_output_format", "vulkan",
            ]
        return []

    def build_decode(
        self,
        mode: AccelMode,
        video: VideoDescriptor,
        source: Path,
        device_index: int = 0,
        raw_source: bool = False,
        software_codec: Optional[str] = None,
    ) -> CommandResult:
        """Decode-only probe: decoded frames are discarded into the null muxer."""
        cmd = [self.ffmpeg_path, "-hide_banner"]
        if raw_source:
            cmd.extend(self._raw_input_args(video, self.encode.decode_stream_loop))
        cmd.extend(self._decode_device_args(mode, device_index))
        cmd.extend(["-i", str(source)])

        if mode == AccelMode.NONE and software_codec:
            cmd.extend(["-vcodec", software_codec, "-y", "-an"])

        cmd.extend(["-f", "null", "-"])
        return CommandResult(args=cmd)

    def target_codec(self, video: VideoDescriptor) -> str:
        lowered = video.filename.lower()
        return "hevc" if any(token in lowered for token in _HEVC_TOKENS) else "h264"

    def target_bitrate(self, video: VideoDescriptor) -> Optional[int]:
        """Mbps from the first known bitrate token in the filename."""
        lowered = video.filename.lower()
        for token, mbps in self.encode.bitrate_tokens.items():
            if token in lowered:
                return mbps
        return self.encode.default_bitrate_mbps

    def build_encode(
        self,
        mode: AccelMode,
        video: VideoDescriptor,
        source: Path,
        device_index: int = 0,
        output_index: int = 0,
        output_dir: Optional[Path] = None,
        raw_source: bool = False,
    ) -> CommandResult:
        """Encode probe; fails closed when no target bitrate can be derived."""
        bitrate = self.target_bitrate(video)
        if bitrate is None:
            return CommandResult(reason=f"no bitrate token found in {video.filename}")

        codec = self.target_codec(video)
        output_path = Path(output_dir) / f"out{output_index}.mp4" if output_dir else Path(f"out{output_index}.mp4")

        cmd = [self.ffmpeg_path, "-y", "-hide_banner"]
        if raw_source:
            cmd.extend(self._raw_input_args(video, self.encode.encode_stream_loop))

        if mode in (AccelMode.CUDA, AccelMode.VDPAU):
            cmd.extend(["-i", str(source), "-c:v", f"{codec}_nvenc", "-gpu", str(device_index)])
        elif mode == AccelMode.QSV:
            cmd.extend([
                "-qsv_device", self._qsv_device(device_index),
                "-i", str(source), "-c:v", f"{codec}_qsv",
            ])
        elif mode == AccelMode.VAAPI:
            cmd.extend([
                "-vaapi_device", f"/dev/dri/renderD{128 + device_index}",
                "-i", str(source), "-c:v", f"{codec}_vaapi",
                "-vf", "format=nv12,hwupload",
            ])
        else:
            # No dedicated hardware encoder template: software encoder.
            cmd.extend(["-i", str(source), "-c:v", codec])

        cmd.extend([
            "-b:v", f"{bitrate}M",
            "-t", f"{self.encode.duration_seconds:g}",
            str(output_path),
        ])
        return CommandResult(args=cmd)

    def build(
        self,
        request: RunRequest,
        mode: AccelMode,
        stream_index: int = 0,
        decode_only: bool = True,
        raw_source: bool = False,
        software_codec: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> CommandResult:
        """Builds the command for one parallel stream of a run request."""
        if decode_only:
            return self.build_decode(
                mode, request.video, request.source, request.device_index,
                raw_source=raw_source, software_codec=software_codec,
            )
        return self.build_encode(
            mode, request.video, request.source, request.device_index,
            output_index=stream_index, output_dir=output_dir, raw_source=raw_source,
        )
