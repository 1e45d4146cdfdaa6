import typer
import traceback
from pathlib import Path
from typing import Optional, List
from rich.console import Console
from hwbench.config.loader import load_config
from hwbench.domain.errors import ConfigError
from hwbench.domain.models import AccelMode, GpuVendor, Platform, RunStatus
from hwbench.infrastructure.logging import setup_logging
from hwbench.infrastructure.event_bus import EventBus
from hwbench.infrastructure.file_scanner import FileScanner
from hwbench.infrastructure.ffmpeg import FFmpegAdapter
from hwbench.infrastructure.metrics import make_sampler
from hwbench.infrastructure.results import FanOutSink, JsonlResultSink, ListResultSink
from hwbench.pipeline.compatibility import default_modes
from hwbench.pipeline.orchestrator import Orchestrator
from hwbench.ui.state import UIState
from hwbench.ui.manager import UIManager
from hwbench.ui.dashboard import Dashboard, render_results_table

app = typer.Typer(help="hwbench - hardware video acceleration benchmark")

@app.command()
def run(
    sources_dir: Path = typer.Argument(..., help="Directory containing the benchmark source videos"),
    config_path: Optional[Path] = typer.Option(Path("conf/hwbench.yaml"), "--config", "-c", help="Path to YAML config"),
    gpu: Optional[str] = typer.Option(None, "--gpu", help="GPU vendor or adapter name (nvidia, intel)"),
    device: Optional[int] = typer.Option(None, "--device", "-d", help="GPU device index"),
    streams: Optional[int] = typer.Option(None, "--streams", "-n", help="Parallel ffmpeg instances per run (1-16)"),
    encode: Optional[bool] = typer.Option(None, "--encode/--decode", help="Benchmark encoding instead of decoding"),
    raw: Optional[bool] = typer.Option(None, "--raw", help="Sources are raw elementary streams"),
    software_codec: Optional[str] = typer.Option(None, "--software-codec", help="Software decoder for 'none' mode"),
    software_only: Optional[bool] = typer.Option(None, "--software-only", help="Only benchmark the software path"),
    modes: Optional[List[AccelMode]] = typer.Option(None, "--mode", "-m", help="Acceleration mode (repeatable)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for logs, results and encode outputs"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-run timeout in seconds"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Run the benchmark matrix over every source file."""
    if not sources_dir.is_dir():
        typer.secho(f"Error: Directory {sources_dir} does not exist.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    output_dir = output or sources_dir.with_name(f"{sources_dir.name}_bench")
    try:
        config = load_config(config_path)
        config = config.with_overrides(
            gpu=GpuVendor.from_name(gpu) if gpu else None,
            device_index=device,
            parallel_streams=streams,
            decode_only=(not encode) if encode is not None else None,
            raw_source=raw,
            software_codec=software_codec,
            software_only=software_only,
            modes=modes or None,
            output_dir=output_dir if output or config.general.output_dir is None else None,
            run_timeout=timeout,
            debug=True if debug else None,
        )
        output_dir = config.general.output_dir

        logger = setup_logging(output_dir, debug=config.general.debug)
        logger.info(f"hwbench started: sources={sources_dir}, output={output_dir}")
        logger.info(
            f"Config: gpu={config.general.gpu.value}, platform={config.general.platform.value}, "
            f"device={config.general.device_index}, streams={config.general.parallel_streams}, "
            f"decode_only={config.general.decode_only}, raw={config.general.raw_source}"
        )
        if config.general.gpu == GpuVendor.UNKNOWN:
            typer.secho("Warning: GPU vendor unknown, every run will be aborted. Use --gpu.",
                        fg=typer.colors.YELLOW, err=True)

        scanner = FileScanner(extensions=config.general.extensions)
        sources = scanner.scan(sources_dir)
        if not sources:
            typer.secho(f"Error: No source videos found in {sources_dir}.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        bus = EventBus()
        ui_state = UIState()
        UIManager(bus, ui_state)

        collected = ListResultSink()
        sink = FanOutSink(collected, JsonlResultSink(output_dir / "results.jsonl"))
        sampler = make_sampler(config)

        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            sampler=sampler,
            ffmpeg_adapter=FFmpegAdapter(debug=config.general.debug),
            sink=sink,
        )

        dashboard = Dashboard(ui_state)
        try:
            with dashboard:
                rows = orchestrator.run_matrix(sources)
        finally:
            sampler.close()

        dashboard.console.print(render_results_table(rows))
        aborted = sum(1 for row in rows if row.status == RunStatus.ABORTED)
        logger.info(f"hwbench finished: {len(rows)} rows, {aborted} aborted")
        if aborted:
            raise typer.Exit(code=2)

    except typer.Exit:
        raise

    except ConfigError as e:
        typer.secho(f"Config Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except KeyboardInterrupt:
        typer.echo("\nInterrupted by user")
        raise typer.Exit(code=130)

    except Exception as e:
        output_dir.mkdir(parents=True, exist_ok=True)
        with open(output_dir / "error.log", "a") as f:
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

@app.command()
def modes(
    gpu: str = typer.Option(..., "--gpu", help="GPU vendor or adapter name (nvidia, intel)"),
    platform: Optional[Platform] = typer.Option(None, "--platform", help="Target platform (default: current)"),
):
    """Print the acceleration modes benchmarked by default for a GPU."""
    vendor = GpuVendor.from_name(gpu)
    target = platform or Platform.current()
    console = Console()
    console.print(f"[dim]{vendor.value} on {target.value}:[/] " +
                  " ".join(mode.value for mode in default_modes(vendor, target)))

if __name__ == "__main__":
    app()
