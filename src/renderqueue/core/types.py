"""Job model for the render queue.

A ``RenderJob`` row holds the current state of one job only; no history
is kept. Timestamps are ISO-8601 UTC strings so they sort lexically in
the job store.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class RenderJobStatus(Enum):
    """Lifecycle states of a render job."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DEAD_LETTER = "dead_letter"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({
    RenderJobStatus.COMPLETED,
    RenderJobStatus.CANCELLED,
    RenderJobStatus.DEAD_LETTER,
})

ACTIVE_STATUSES = frozenset({
    RenderJobStatus.PENDING,
    RenderJobStatus.RUNNING,
    RenderJobStatus.PAUSED,
})


class RenderType(Enum):
    """What the job renders."""
    PROJECT_RENDER = "project_render"  # MLT project through melt
    INTERPOLATION = "interpolation"    # frame interpolation of a video file


@dataclass
class RenderJob:
    """A unit of work in the render queue.

    ``id`` is the storage key assigned by the job store; ``job_id`` is the
    external identifier used by every caller and never changes.
    """

    job_id: str
    source_path: str
    output_path: str
    render_type: RenderType = RenderType.PROJECT_RENDER
    render_settings: str = "{}"
    is_two_stage: bool = False
    intermediate_path: Optional[str] = None
    selected_video_tracks: Optional[str] = None
    selected_audio_tracks: Optional[str] = None
    in_point: Optional[int] = None
    out_point: Optional[int] = None
    frame_rate: float = 30.0

    status: RenderJobStatus = RenderJobStatus.PENDING
    created_at: str = field(default_factory=utc_now)
    queued_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_updated_at: Optional[str] = None
    progress_percentage: float = 0.0
    current_frame: int = 0
    total_frames: int = 0
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    error_stack_trace: Optional[str] = None

    process_id: Optional[int] = None
    machine_name: Optional[str] = None

    output_file_size_bytes: Optional[int] = None
    intermediate_file_size_bytes: Optional[int] = None

    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        source_path: str,
        output_path: str,
        render_type: RenderType = RenderType.PROJECT_RENDER,
        **kwargs: Any,
    ) -> "RenderJob":
        """Create a new pending job with a fresh external identifier."""
        return cls(
            job_id=str(uuid.uuid4()),
            source_path=str(source_path),
            output_path=str(output_path),
            render_type=render_type,
            **kwargs,
        )

    @property
    def display_name(self) -> str:
        return self.source_path.replace("\\", "/").rsplit("/", 1)[-1]

    @property
    def has_ownership(self) -> bool:
        return self.process_id is not None or self.machine_name is not None

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def clear_ownership(self) -> None:
        self.process_id = None
        self.machine_name = None

    def reset_progress(self) -> None:
        self.progress_percentage = 0.0
        self.current_frame = 0

    def elapsed_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        started = parse_timestamp(self.started_at)
        if started is None:
            return None
        end = parse_timestamp(self.completed_at) or now or datetime.now(timezone.utc)
        return max(0.0, (end - started).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["render_type"] = self.render_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderJob":
        data = dict(data)
        data["status"] = RenderJobStatus(data.get("status", "pending"))
        data["render_type"] = RenderType(data.get("render_type", "project_render"))
        return cls(**data)


@dataclass
class QueueStatistics:
    """Snapshot of queue counts computed from the job store."""

    is_queue_paused: bool = True
    pending_count: int = 0
    running_count: int = 0
    paused_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    dead_letter_count: int = 0

    @property
    def total_count(self) -> int:
        return (
            self.pending_count
            + self.running_count
            + self.paused_count
            + self.completed_count
            + self.failed_count
            + self.cancelled_count
            + self.dead_letter_count
        )

    @classmethod
    def from_counts(
        cls, counts: Dict[RenderJobStatus, int], is_queue_paused: bool
    ) -> "QueueStatistics":
        return cls(
            is_queue_paused=is_queue_paused,
            pending_count=counts.get(RenderJobStatus.PENDING, 0),
            running_count=counts.get(RenderJobStatus.RUNNING, 0),
            paused_count=counts.get(RenderJobStatus.PAUSED, 0),
            completed_count=counts.get(RenderJobStatus.COMPLETED, 0),
            failed_count=counts.get(RenderJobStatus.FAILED, 0),
            cancelled_count=counts.get(RenderJobStatus.CANCELLED, 0),
            dead_letter_count=counts.get(RenderJobStatus.DEAD_LETTER, 0),
        )

    def status_summary(self) -> str:
        state = "Paused" if self.is_queue_paused else "Running"
        parts: List[str] = [f"Queue {state}"]
        if self.running_count:
            parts.append(f"{self.running_count} rendering")
        if self.pending_count:
            parts.append(f"{self.pending_count} pending")
        if self.paused_count:
            parts.append(f"{self.paused_count} paused")
        failed = self.failed_count + self.dead_letter_count
        if failed:
            parts.append(f"{failed} failed")
        parts.append(f"{self.completed_count} completed")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_count"] = self.total_count
        return data


def format_size(num_bytes: Optional[int]) -> str:
    """Format a byte count for display (``1.5 GB``)."""
    if num_bytes is None:
        return "-"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def frames_to_timecode(frames: int, frame_rate: float) -> str:
    """Convert a frame number to ``HH:MM:SS.mmm`` at ``frame_rate``."""
    if frame_rate <= 0:
        frame_rate = 30.0
    total_seconds = frames / frame_rate
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:06.3f}"
