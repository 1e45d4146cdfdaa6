import logging
from typing import Dict, FrozenSet, List, Optional, Tuple
from hwbench.domain.errors import UnsupportedGpuError
from hwbench.domain.models import AccelMode, Chroma, Codec, GpuVendor, Platform, VideoDescriptor

logger = logging.getLogger(__name__)

ALLOWED_MODES: Dict[GpuVendor, FrozenSet[AccelMode]] = {
    GpuVendor.NVIDIA: frozenset({
        AccelMode.NONE, AccelMode.CUDA, AccelMode.VDPAU,
        AccelMode.D3D11VA, AccelMode.D3D12VA, AccelMode.VULKAN,
    }),
    GpuVendor.INTEL: frozenset({
        AccelMode.NONE, AccelMode.QSV, AccelMode.VAAPI,
        AccelMode.D3D11VA, AccelMode.D3D12VA, AccelMode.VULKAN,
    }),
}

# (codec, chroma) pairs no backend decodes, whatever the vendor.
UNSUPPORTED_FORMATS: FrozenSet[Tuple[Codec, Chroma]] = frozenset({
    (Codec.H264, Chroma.YUV444),
})

_DEFAULT_MATRIX: Dict[Platform, Dict[GpuVendor, List[AccelMode]]] = {
    Platform.WINDOWS: {
        GpuVendor.NVIDIA: [AccelMode.CUDA, AccelMode.D3D11VA, AccelMode.VULKAN, AccelMode.NONE],
        GpuVendor.INTEL: [AccelMode.QSV, AccelMode.D3D11VA, AccelMode.VULKAN, AccelMode.VAAPI, AccelMode.NONE],
    },
    Platform.LINUX: {
        GpuVendor.NVIDIA: [AccelMode.CUDA, AccelMode.VDPAU, AccelMode.VULKAN, AccelMode.NONE],
        GpuVendor.INTEL: [AccelMode.QSV, AccelMode.VAAPI, AccelMode.VULKAN, AccelMode.NONE],
    },
}


def default_modes(vendor: GpuVendor, platform: Platform) -> List[AccelMode]:
    """Acceleration modes benchmarked by default for a vendor on a platform."""
    return list(_DEFAULT_MATRIX.get(platform, {}).get(vendor, [AccelMode.NONE]))


class CompatibilityResolver:
    """Static (vendor, mode, video) compatibility table."""

    def resolve(
        self, vendor: GpuVendor, mode: AccelMode, video: VideoDescriptor
    ) -> Tuple[Optional[AccelMode], bool]:
        """Returns (effective_mode, skip). Raises UnsupportedGpuError for an unknown vendor."""
        allowed = ALLOWED_MODES.get(vendor)
        if allowed is None:
            raise UnsupportedGpuError(f"GPU vendor '{vendor.value}' cannot be classified")

        if mode not in allowed:
            logger.warning(f"hwaccel {mode.value} is incompatible with {vendor.value} GPU, skipping {video.filename}")
            return None, True

        if (video.codec, video.chroma) in UNSUPPORTED_FORMATS:
            logger.info(f"{video.codec.value} {video.chroma.value} is not supported, skipping {video.filename}")
            return mode, True

        return mode, False
