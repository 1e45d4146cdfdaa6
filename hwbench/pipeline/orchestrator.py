import logging
import time
from pathlib import Path
from typing import Callable, List, Optional
from hwbench.config.models import AppConfig
from hwbench.domain.errors import UnsupportedGpuError
from hwbench.domain.events import (
    MatrixStarted, MatrixFinished, RunStarted, RunSkipped, RunCompleted, RunAborted, SampleTaken
)
from hwbench.domain.models import (
    AccelMode, BenchmarkRow, RunPhase, RunRequest, RunStatus, ThroughputStats, VideoDescriptor
)
from hwbench.infrastructure.commands import CommandBuilder
from hwbench.infrastructure.event_bus import EventBus
from hwbench.infrastructure.ffmpeg import FFmpegAdapter, TranscoderStream
from hwbench.infrastructure.metrics import MetricSampler
from hwbench.infrastructure.results import ResultSink
from hwbench.pipeline.aggregator import SampleAggregator
from hwbench.pipeline.compatibility import CompatibilityResolver, default_modes

class Orchestrator:
    """Runs the benchmark matrix one RunRequest at a time."""

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        sampler: MetricSampler,
        ffmpeg_adapter: FFmpegAdapter,
        resolver: Optional[CompatibilityResolver] = None,
        command_builder: Optional[CommandBuilder] = None,
        sink: Optional[ResultSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.event_bus = event_bus
        self.sampler = sampler
        self.ffmpeg_adapter = ffmpeg_adapter
        self.resolver = resolver or CompatibilityResolver()
        self.command_builder = command_builder or CommandBuilder(
            ffmpeg_path=config.general.ffmpeg_path,
            platform=config.general.platform,
            encode=config.encode,
        )
        self.sink = sink
        self._sleep = sleep
        self._clock = clock
        self.logger = logging.getLogger(__name__)
        self.phase = RunPhase.PENDING

    def _set_phase(self, request: RunRequest, phase: RunPhase):
        self.phase = phase
        self.logger.debug(f"#{request.sequence} {request.video.filename} [{request.mode.value}]: {phase.value}")

    def modes(self) -> List[AccelMode]:
        general = self.config.general
        if general.software_only:
            return [AccelMode.NONE]
        if general.modes:
            return list(general.modes)
        return default_modes(general.gpu, general.platform)

    def build_requests(self, sources: List[Path]) -> List[RunRequest]:
        """One request per (mode, file), modes outermost, in file order."""
        general = self.config.general
        requests = []
        for mode in self.modes():
            for source in sources:
                requests.append(RunRequest(
                    video=VideoDescriptor.from_filename(source.name),
                    mode=mode,
                    source=source,
                    parallel_streams=general.parallel_streams,
                    device_index=general.device_index,
                    sequence=len(requests),
                ))
        return requests

    def _marker_row(self, request: RunRequest, status: RunStatus, mode: Optional[AccelMode],
                    reason: Optional[str] = None) -> BenchmarkRow:
        return BenchmarkRow(
            sequence=request.sequence,
            video=request.video,
            mode=mode,
            requested_mode=request.mode,
            status=status,
            reason=reason,
        )

    def _output_dir(self, request: RunRequest) -> Path:
        return self.config.general.output_dir or request.source.parent

    def _sample_until_exit(self, request: RunRequest, streams: List[TranscoderStream],
                           aggregator: SampleAggregator) -> bool:
        """Samples while any process runs. Returns False when the run hit its timeout."""
        timeout = self.config.general.run_timeout
        deadline = self._clock() + timeout if timeout else None
        poll_interval = self.config.sampling.poll_interval

        while any(stream.is_alive() for stream in streams):
            if deadline is not None and self._clock() >= deadline:
                self.logger.warning(
                    f"{request.video.filename} [{request.mode.value}]: timeout after {timeout}s, killing ffmpeg"
                )
                for stream in streams:
                    stream.kill()
                return False

            snapshot = self.sampler.sample()
            aggregator.add(snapshot)
            self.event_bus.publish(SampleTaken(
                request=request,
                cpu=snapshot.cpu,
                gpu_overall=aggregator.overall(snapshot),
            ))
            if poll_interval > 0:
                self._sleep(poll_interval)
        return True

    def run(self, request: RunRequest) -> BenchmarkRow:
        """Runs one request to its row. Raises UnsupportedGpuError for an unclassified GPU."""
        general = self.config.general
        self._set_phase(request, RunPhase.PENDING)

        mode, skip = self.resolver.resolve(general.gpu, request.mode, request.video)
        self._set_phase(request, RunPhase.COMPATIBILITY_CHECKED)
        if skip:
            self._set_phase(request, RunPhase.SKIPPED)
            reason = "incompatible hwaccel" if mode is None else "unsupported format"
            row = self._marker_row(request, RunStatus.SKIPPED, mode, reason)
            self.event_bus.publish(RunSkipped(request=request, row=row))
            return row

        output_dir = self._output_dir(request)
        commands = []
        for index in range(request.parallel_streams):
            result = self.command_builder.build(
                request, mode,
                stream_index=index,
                decode_only=general.decode_only,
                raw_source=general.raw_source,
                software_codec=general.software_codec,
                output_dir=output_dir,
            )
            if not result.ok:
                self.logger.warning(f"Cannot build command for {request.video.filename}: {result.reason}")
                row = self._marker_row(request, RunStatus.CANNOT_BUILD, mode, result.reason)
                self.event_bus.publish(RunSkipped(request=request, row=row))
                return row
            commands.append(result.args)
        self._set_phase(request, RunPhase.COMMAND_BUILT)

        self.logger.info(
            f"#{request.sequence} {request.video.filename}: {mode.value} x{request.parallel_streams} "
            f"({'decode' if general.decode_only else 'encode'})"
        )
        self.event_bus.publish(RunStarted(request=request))
        streams = self.ffmpeg_adapter.launch_all(commands)
        self._set_phase(request, RunPhase.RUNNING)

        aggregator = SampleAggregator(
            hardware_accelerated=mode != AccelMode.NONE,
            overall_includes_copy=self.config.sampling.overall_includes_copy,
        )
        try:
            self._set_phase(request, RunPhase.SAMPLING)
            finished = self._sample_until_exit(request, streams, aggregator)
        finally:
            # Ctrl+C must not leave ffmpeg processes behind
            for stream in streams:
                stream.kill()
            for stream in streams:
                stream.join(self.config.sampling.drain_timeout)

        for stream in streams:
            if stream.returncode not in (None, 0) and finished:
                self.logger.warning(
                    f"Stream {stream.index} of {request.video.filename} exited with code {stream.returncode}"
                )

        stream_fps = [stream.fps for stream in streams]
        row = BenchmarkRow(
            sequence=request.sequence,
            video=request.video,
            mode=mode,
            requested_mode=request.mode,
            record=aggregator.result(),
            throughput=ThroughputStats.from_fps(stream_fps),
            stream_fps=stream_fps,
            status=RunStatus.COMPLETED,
            reason=None if finished else "timeout",
        )
        self._set_phase(request, RunPhase.COMPLETED)
        self.logger.info(
            f"#{request.sequence} {request.video.filename} [{mode.value}]: "
            f"fps avg={row.throughput.average:.1f} gpu={row.record.gpu_overall:.1f} cpu={row.record.cpu:.1f} "
            f"samples={row.record.sample_count}"
        )
        self.event_bus.publish(RunCompleted(request=request, row=row))
        return row

    def run_matrix(self, sources: List[Path]) -> List[BenchmarkRow]:
        """Runs every (mode, file) pair; always one row per pair, in request order."""
        requests = self.build_requests(sources)
        self.event_bus.publish(MatrixStarted(
            total_requests=len(requests),
            modes=[mode.value for mode in self.modes()],
        ))

        rows = []
        aborted = 0
        for position, request in enumerate(requests):
            try:
                row = self.run(request)
            except UnsupportedGpuError as e:
                self.logger.error(f"#{request.sequence} {request.video.filename}: {e}")
                aborted += 1
                row = self._marker_row(request, RunStatus.ABORTED, None, str(e))
                self.event_bus.publish(RunAborted(request=request, row=row, error_message=str(e)))

            rows.append(row)
            if self.sink is not None:
                self.sink(row)

            cooldown = self.config.general.cooldown_seconds
            if row.status == RunStatus.COMPLETED and cooldown > 0 and position < len(requests) - 1:
                self._sleep(cooldown)

        self.event_bus.publish(MatrixFinished(rows=len(rows), aborted=aborted))
        return rows
