import logging
from pathlib import Path
from typing import List

class FileScanner:
    """Lists benchmark source files in a directory, in a stable order."""

    def __init__(self, extensions: List[str]):
        self.extensions = {ext.lower() for ext in extensions}
        self.logger = logging.getLogger(__name__)

    def _is_candidate(self, path: Path) -> bool:
        name = path.name
        if name.startswith(".") or name.lower().startswith("readme"):
            return False
        # Encode runs leave out{N}.mp4 next to the sources
        if name.lower().startswith("out"):
            return False
        return path.suffix.lower() in self.extensions

    def scan(self, directory: Path) -> List[Path]:
        files = sorted(
            (p for p in directory.iterdir() if p.is_file() and self._is_candidate(p)),
            key=lambda p: p.name.lower(),
        )
        self.logger.info(f"Found {len(files)} source files in {directory}")
        return files
