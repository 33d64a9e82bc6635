"""Turns a render job into backend invocations.

A job is resolved once into a ``JobKind`` and a fixed list of
``PipelineStep`` objects:

- PROJECT_RENDER: melt renders the project straight to the output (0-100%)
- INTERPOLATION: the direct pipeline runs on the source video (0-100%)
- TWO_STAGE: melt renders to an intermediate file (0-50%), then the direct
  pipeline runs on that file (50-100%); the intermediate is always deleted

The direct pipeline is analyze -> extract audio -> extract frames ->
interpolate -> [upscale] -> reassemble, with integrity checks after
extraction, interpolation and reassembly.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..backends.base import ProgressCallback, RenderBackend
from ..backends.ffmpeg import (
    AudioExtractionBackend,
    FrameExtractionBackend,
    UPSCALE_FILTERS,
    FilterUpscaleBackend,
    ReassemblyBackend,
)
from ..backends.melt import MeltBackend
from ..backends.realesrgan import RealCuganBackend, RealEsrganBackend
from ..backends.rife import RifeBackend
from ..config import QueueConfig
from ..core.cancellation import CancellationToken
from ..core.types import RenderJob, RenderType
from ..exceptions import BackendError, IntegrityError
from ..utils.ffmpeg import MediaInfo, count_frames, probe_media
from ..utils.process import ProcessManager
from ..utils.tempfiles import TemporaryWorkspace, file_size, remove_partial_output
from .settings import RenderSettings
from .stages import (
    FIRST_HALF,
    FULL_RANGE,
    SECOND_HALF,
    JobProgress,
    PipelineProgress,
    StageRange,
    direct_pipeline_ranges,
)
from .validation import validate_duration, validate_frame_count, validate_source

ProbeFunc = Callable[[Path], MediaInfo]


class JobKind(Enum):
    PROJECT_RENDER = "project_render"
    INTERPOLATION = "interpolation"
    TWO_STAGE = "two_stage"


class StepAction(Enum):
    RENDER_PROJECT = "render_project"
    DIRECT_PIPELINE = "direct_pipeline"


@dataclass(frozen=True)
class PipelineStep:
    action: StepAction
    input_path: Path
    output_path: Path
    progress: StageRange
    output_is_intermediate: bool = False


@dataclass
class PipelineResult:
    output_file_size_bytes: Optional[int] = None
    intermediate_file_size_bytes: Optional[int] = None


def resolve_job_kind(job: RenderJob) -> JobKind:
    if job.render_type == RenderType.PROJECT_RENDER:
        return JobKind.PROJECT_RENDER
    if job.is_two_stage:
        return JobKind.TWO_STAGE
    return JobKind.INTERPOLATION


def build_plan(job: RenderJob, workspace: TemporaryWorkspace) -> List[PipelineStep]:
    """Resolve ``job`` into its fixed sequence of steps."""
    kind = resolve_job_kind(job)
    source = Path(job.source_path)
    output = Path(job.output_path)

    if kind == JobKind.PROJECT_RENDER:
        return [PipelineStep(StepAction.RENDER_PROJECT, source, output, FULL_RANGE)]

    if kind == JobKind.INTERPOLATION:
        return [PipelineStep(StepAction.DIRECT_PIPELINE, source, output, FULL_RANGE)]

    if job.intermediate_path:
        intermediate = Path(job.intermediate_path)
    else:
        intermediate = workspace.create_file_path(f"intermediate{output.suffix or '.mp4'}")
    return [
        PipelineStep(
            StepAction.RENDER_PROJECT, source, intermediate, FIRST_HALF,
            output_is_intermediate=True,
        ),
        PipelineStep(StepAction.DIRECT_PIPELINE, intermediate, output, SECOND_HALF),
    ]


@dataclass
class PipelineBackends:
    """The backend used for each kind of step."""
    project: RenderBackend
    audio_extraction: RenderBackend
    frame_extraction: RenderBackend
    interpolation: RenderBackend
    reassembly: RenderBackend
    upscalers: Dict[str, RenderBackend] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls,
        config: QueueConfig,
        process_manager: Optional[ProcessManager] = None,
    ) -> "PipelineBackends":
        pm = process_manager or ProcessManager(kill_wait_timeout=config.kill_wait_timeout)
        render = {"process_manager": pm, "graceful_timeout": config.render_graceful_timeout}
        encode = {"process_manager": pm, "graceful_timeout": config.encoder_graceful_timeout}
        return cls(
            project=MeltBackend(config.melt_path, **render),
            audio_extraction=AudioExtractionBackend(config.ffmpeg_path, **encode),
            frame_extraction=FrameExtractionBackend(config.ffmpeg_path, **encode),
            interpolation=RifeBackend(config.rife_path, **render),
            reassembly=ReassemblyBackend(config.ffmpeg_path, **encode),
            upscalers={
                "realesrgan": RealEsrganBackend(config.realesrgan_path, **render),
                "realcugan": RealCuganBackend(config.realcugan_path, **render),
                **{
                    algorithm: FilterUpscaleBackend(config.ffmpeg_path, algorithm, **encode)
                    for algorithm in UPSCALE_FILTERS
                },
            },
        )


class PipelineOrchestrator:
    """Runs the steps of one job and reports overall progress."""

    def __init__(
        self,
        backends: PipelineBackends,
        config: QueueConfig,
        probe: Optional[ProbeFunc] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.backends = backends
        self.config = config
        self._probe = probe or (lambda path: probe_media(path, config.ffprobe_path))
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def run(
        self,
        job: RenderJob,
        on_progress: Callable[[PipelineProgress], None],
        cancel_token: CancellationToken,
    ) -> PipelineResult:
        """Execute ``job`` to completion.

        Raises:
            BackendError: A step failed
            IntegrityError: A step produced unexpected output
            ConfigurationError: The job's settings blob is invalid
            OperationCancelledError: ``cancel_token`` fired
        """
        settings = RenderSettings.from_json(job.render_settings)
        progress = JobProgress(on_progress)
        result = PipelineResult()

        with TemporaryWorkspace(
            parent_dir=self.config.get_temp_root(),
            prefix=f"renderqueue_{job.job_id[:8]}_",
            logger=self._logger,
        ) as workspace:
            plan = build_plan(job, workspace)
            self._logger.info(
                f"Job {job.job_id}: {resolve_job_kind(job).value} with {len(plan)} step(s)"
            )
            try:
                for step in plan:
                    cancel_token.raise_if_cancelled()
                    if step.action == StepAction.RENDER_PROJECT:
                        self._render_project(job, step, settings, progress, cancel_token)
                        if step.output_is_intermediate:
                            result.intermediate_file_size_bytes = file_size(step.output_path)
                    else:
                        self._run_direct_pipeline(job, step, settings, workspace, progress, cancel_token)
            finally:
                for step in plan:
                    if step.output_is_intermediate:
                        remove_partial_output(step.output_path, self._logger)

        progress.report(100.0, stage="done")
        result.output_file_size_bytes = file_size(job.output_path)
        return result

    def _invoke(
        self,
        backend: RenderBackend,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
        step_name: str,
    ) -> None:
        cancel_token.raise_if_cancelled()
        self._logger.debug(f"Step {step_name}: {input_path} -> {output_path}")
        if not backend.execute(input_path, output_path, settings, on_progress, cancel_token):
            cancel_token.raise_if_cancelled()
            raise BackendError(
                f"{step_name} failed: {backend.last_error or 'unknown error'}",
                tool=backend.name,
            )

    def _render_project(
        self,
        job: RenderJob,
        step: PipelineStep,
        settings: RenderSettings,
        progress: JobProgress,
        cancel_token: CancellationToken,
    ) -> None:
        melt_settings: Dict[str, Any] = settings.melt.to_dict()
        melt_settings.update({
            "in_point": job.in_point,
            "out_point": job.out_point,
            "video_tracks": job.selected_video_tracks,
            "audio_tracks": job.selected_audio_tracks,
        })
        total_frames = 0
        if job.in_point is not None and job.out_point is not None:
            # out= is inclusive in MLT.
            total_frames = max(0, job.out_point - job.in_point + 1)

        self._invoke(
            self.backends.project,
            step.input_path,
            step.output_path,
            melt_settings,
            progress.scoped(step.progress, "render_project", total_frames),
            cancel_token,
            "project render",
        )
        if not step.output_path.exists():
            raise IntegrityError(
                f"Project render produced no file at {step.output_path}", check="project_render"
            )

    def _run_direct_pipeline(
        self,
        job: RenderJob,
        step: PipelineStep,
        settings: RenderSettings,
        workspace: TemporaryWorkspace,
        progress: JobProgress,
        cancel_token: CancellationToken,
    ) -> None:
        ranges = {
            name: stage_range.within(step.progress)
            for name, stage_range in direct_pipeline_ranges(settings.upscale.enabled).items()
        }
        multiplier = settings.rife.multiplier

        # Analyze
        info = self._probe(step.input_path)
        validate_source(info, step.input_path)
        fps = info.fps if info.fps > 0 else job.frame_rate
        expected_frames = int(round(info.duration * fps))
        progress.report(ranges["analyze"].end, stage="analyze", total_frames=expected_frames)

        # Audio
        audio_path: Optional[Path] = None
        if info.has_audio:
            audio_path = workspace.create_file_path("audio.mka")
            self._invoke(
                self.backends.audio_extraction,
                step.input_path,
                audio_path,
                {"duration": info.duration},
                progress.scoped(ranges["extract_audio"], "extract_audio"),
                cancel_token,
                "audio extraction",
            )
        progress.report(ranges["extract_audio"].end, stage="extract_audio")

        # Frames
        frames_dir = workspace.create_subdirectory("frames")
        self._invoke(
            self.backends.frame_extraction,
            step.input_path,
            frames_dir,
            {
                "total_frames": expected_frames,
                "duration": info.duration,
                "hwaccel": settings.encoder.hwaccel,
            },
            progress.scoped(ranges["extract_frames"], "extract_frames", expected_frames),
            cancel_token,
            "frame extraction",
        )
        extracted = count_frames(frames_dir)
        validate_frame_count(
            extracted, expected_frames, self.config.frame_tolerance, "frame_extraction", self._logger
        )

        # Interpolate
        interpolated_dir = workspace.create_subdirectory("interpolated")
        target_frames = extracted * multiplier
        self._invoke(
            self.backends.interpolation,
            frames_dir,
            interpolated_dir,
            {**settings.rife.to_dict(), "input_frames": extracted},
            progress.scoped(ranges["interpolate"], "interpolate", target_frames),
            cancel_token,
            "interpolation",
        )
        interpolated = count_frames(interpolated_dir)
        validate_frame_count(
            interpolated, target_frames, multiplier, "interpolation", self._logger
        )

        final_frames = interpolated_dir
        if settings.upscale.enabled:
            upscaler = self.backends.upscalers.get(settings.upscale.engine)
            if upscaler is None:
                raise BackendError(
                    f"No backend for upscale engine '{settings.upscale.engine}'",
                    tool=settings.upscale.engine,
                )
            upscaled_dir = workspace.create_subdirectory("upscaled")
            self._invoke(
                upscaler,
                interpolated_dir,
                upscaled_dir,
                {**settings.upscale.to_dict(), "total_frames": interpolated},
                progress.scoped(ranges["upscale"], "upscale", interpolated),
                cancel_token,
                "upscaling",
            )
            validate_frame_count(count_frames(upscaled_dir), interpolated, 0, "upscale", self._logger)
            final_frames = upscaled_dir

        # Reassemble
        self._invoke(
            self.backends.reassembly,
            final_frames,
            step.output_path,
            {
                **settings.encoder.to_dict(),
                "fps": fps * multiplier,
                "total_frames": interpolated,
                "audio_path": str(audio_path) if audio_path else None,
            },
            progress.scoped(ranges["reassemble"], "reassemble", interpolated),
            cancel_token,
            "reassembly",
        )

        output_info = self._probe(step.output_path)
        try:
            validate_duration(output_info.duration, info.duration, self.config.duration_tolerance)
        except IntegrityError:
            remove_partial_output(step.output_path, self._logger)
            raise
        self._logger.info(
            f"Interpolated {extracted} -> {interpolated} frames "
            f"({fps:g} -> {fps * multiplier:g} fps)"
        )
