"""Text scraping for external tool output.

Kept apart from process handling so each parser can be tested against captured
output: ffmpeg's progress line, nvidia-smi CSV and intel_gpu_top text mode.
"""
import re
import threading
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from hwbench.domain.models import ENGINE_3D, ENGINE_COPY, ENGINE_DECODE, SENTINEL

# frame= 1234 fps=456 q=-0.0 size=N/A time=00:00:41.16 bitrate=N/A speed=13.7x
FPS_REGEX = re.compile(r"fps=\s*(\d+(?:\.\d+)?)")


def parse_fps(line: str) -> Optional[float]:
    """Returns the fps value of an ffmpeg progress line, or None."""
    match = FPS_REGEX.search(line.lower())
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


class FrameRateTracker:
    """Keeps the last frame rate reported on an ffmpeg diagnostic stream."""

    def __init__(self):
        self._lock = threading.Lock()
        self._fps: Optional[float] = None

    def feed(self, line: str):
        fps = parse_fps(line)
        if fps is not None:
            with self._lock:
                self._fps = fps

    @property
    def fps(self) -> float:
        with self._lock:
            return self._fps if self._fps is not None else SENTINEL


# --- nvidia-smi ---

NVIDIA_FIELDS = ("utilization.gpu", "utilization.decoder", "utilization.encoder")


def parse_nvidia_smi_header(header: str) -> Dict[str, int]:
    """Maps query field names to CSV column positions ('utilization.gpu [%]' -> 'utilization.gpu')."""
    columns = {}
    for idx, raw in enumerate(header.split(",")):
        name = raw.strip().split(" ")[0]
        if name:
            columns[name] = idx
    return columns


def _to_percent(value: str) -> float:
    value = value.strip().rstrip("%").strip()
    try:
        return float(value)
    except ValueError:
        # [N/A], [Not Supported]
        return SENTINEL


def parse_nvidia_smi_row(row: str, columns: Dict[str, int]) -> Dict[str, float]:
    """Returns utilization per query field; unreadable cells become the sentinel."""
    cells = row.split(",")
    values = {}
    for name, idx in columns.items():
        values[name] = _to_percent(cells[idx]) if idx < len(cells) else SENTINEL
    return values


# --- intel_gpu_top ---

# RCS/0, Render/3D/0, VCS/1, Video/0, BCS/0, Blitter/0 ...
_ENGINE_LABEL = re.compile(r"^[A-Za-z][A-Za-z0-9]*(?:/[A-Za-z0-9]+)*/\d+$")

_ENGINE_CLASSES = {
    "rcs": ENGINE_3D,
    "render": ENGINE_3D,
    "bcs": ENGINE_COPY,
    "blitter": ENGINE_COPY,
    "vcs": ENGINE_DECODE,
    "video": ENGINE_DECODE,
}


class IntelGpuTopLayout(BaseModel):
    """Data-row column index of each engine's busy percentage."""
    model_config = ConfigDict(frozen=True)

    columns: Dict[str, int]
    width: int

    @property
    def engines(self) -> List[str]:
        return list(self.columns)


def _tokens(line: str) -> List[Tuple[float, str]]:
    """(center position, text) for every whitespace separated token."""
    return [((m.start() + m.end() - 1) / 2, m.group()) for m in re.finditer(r"\S+", line)]


def _engine_key(label: str, decode_count: int) -> Optional[str]:
    engine_class = _ENGINE_CLASSES.get(label.split("/")[0].lower())
    if engine_class == ENGINE_DECODE:
        return f"{ENGINE_DECODE}{decode_count}"
    return engine_class


def discover_intel_layout(group_header: str, column_header: str) -> IntelGpuTopLayout:
    """Derives engine columns from intel_gpu_top's two header lines.

    The second header has one token per data column; every '%' column belongs
    to the first-header label closest to it.
    """
    labels = _tokens(group_header)
    columns = _tokens(column_header)
    if not labels or not columns:
        raise ValueError("intel_gpu_top header is empty")

    owner_of: Dict[int, str] = {}
    for col_idx, (center, text) in enumerate(columns):
        if text != "%":
            continue
        _, label = min(labels, key=lambda item: abs(item[0] - center))
        if _ENGINE_LABEL.match(label) and label not in owner_of.values():
            owner_of[col_idx] = label

    engine_columns: Dict[str, int] = {}
    decode_count = 0
    for col_idx in sorted(owner_of):
        key = _engine_key(owner_of[col_idx], decode_count)
        if key is None or key in engine_columns:
            continue
        if key.startswith(ENGINE_DECODE):
            decode_count += 1
        engine_columns[key] = col_idx

    return IntelGpuTopLayout(columns=engine_columns, width=len(columns))


def is_data_row(line: str) -> bool:
    tokens = line.split()
    if not tokens:
        return False
    try:
        float(tokens[0])
    except ValueError:
        return False
    return True


def parse_intel_row(row: str, layout: IntelGpuTopLayout) -> Dict[str, float]:
    """Engine busy percentages of one intel_gpu_top data row."""
    tokens = row.split()
    values = {}
    for engine, idx in layout.columns.items():
        values[engine] = _to_percent(tokens[idx]) if idx < len(tokens) else SENTINEL
    return values
