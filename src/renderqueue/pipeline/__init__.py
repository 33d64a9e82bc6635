"""Job execution: settings, progress ranges, integrity checks and orchestration."""

from .orchestrator import (
    JobKind,
    PipelineBackends,
    PipelineOrchestrator,
    PipelineResult,
    PipelineStep,
    StepAction,
    build_plan,
    resolve_job_kind,
)
from .settings import RenderSettings, UpscaleSettings
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

__all__ = [
    "JobKind",
    "PipelineBackends",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineStep",
    "StepAction",
    "build_plan",
    "resolve_job_kind",
    "RenderSettings",
    "UpscaleSettings",
    "FIRST_HALF",
    "FULL_RANGE",
    "SECOND_HALF",
    "JobProgress",
    "PipelineProgress",
    "StageRange",
    "direct_pipeline_ranges",
    "validate_duration",
    "validate_frame_count",
    "validate_source",
]
