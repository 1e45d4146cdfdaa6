import logging
from pathlib import Path

def setup_logging(output_dir: Path, debug: bool = False) -> logging.Logger:
    """Routes all logging to benchmark.log in output_dir; nothing goes to the console."""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / "benchmark.log"

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True
    )
    return logging.getLogger("hwbench")
