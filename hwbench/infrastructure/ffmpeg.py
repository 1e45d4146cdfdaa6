import subprocess
import logging
import threading
from collections import deque
from pathlib import Path
from typing import List, Optional
from hwbench.domain.models import SENTINEL
from hwbench.infrastructure.parsers import FrameRateTracker

class TranscoderStream:
    """One running ffmpeg process and the thread draining its diagnostic stream."""

    def __init__(self, index: int, process: Optional[subprocess.Popen] = None, error: Optional[str] = None):
        self.index = index
        self.process = process
        self.error = error
        self.tracker = FrameRateTracker()
        self.tail = deque(maxlen=20)
        self.logger = logging.getLogger(__name__)
        self._thread: Optional[threading.Thread] = None

        if process is not None and process.stderr is not None:
            self._thread = threading.Thread(target=self._drain, daemon=True)
            self._thread.start()

    def _drain(self):
        """Reads stderr to EOF so the process never blocks on a full pipe."""
        try:
            for line in self.process.stderr:
                self.tracker.feed(line)
                self.tail.append(line.rstrip())
        except (OSError, ValueError) as e:
            self.logger.debug(f"Stream {self.index}: stderr drain stopped: {e}")

    @property
    def launched(self) -> bool:
        return self.process is not None

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process is not None else None

    @property
    def fps(self) -> float:
        if self.process is None:
            return SENTINEL
        return self.tracker.fps

    def kill(self):
        if self.is_alive():
            self.logger.warning(f"Stream {self.index}: killing ffmpeg (pid {self.process.pid})")
            self.process.kill()
            self.process.wait()

    def join(self, timeout: float = 5.0):
        """Waits for the drain thread; a thread still running after timeout is abandoned."""
        if self.process is not None and self.process.poll() is None:
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.logger.warning(f"Stream {self.index}: ffmpeg still running after {timeout}s")
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self.logger.warning(f"Stream {self.index}: stderr drain did not finish within {timeout}s")

class FFmpegAdapter:
    """Launches ffmpeg benchmark processes."""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def launch(self, cmd: List[str], index: int = 0, cwd: Optional[Path] = None) -> TranscoderStream:
        """Starts one ffmpeg process; a launch failure yields a stream with no process."""
        if self.debug:
            self.logger.info(f"FFMPEG_START[{index}]: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                bufsize=1,
                cwd=str(cwd) if cwd else None,
            )
        except OSError as e:
            self.logger.warning(f"Stream {index}: cannot launch {cmd[0]}: {e}")
            return TranscoderStream(index, error=str(e))
        return TranscoderStream(index, process=process)

    def launch_all(self, commands: List[List[str]], cwd: Optional[Path] = None) -> List[TranscoderStream]:
        return [self.launch(cmd, index, cwd=cwd) for index, cmd in enumerate(commands)]
