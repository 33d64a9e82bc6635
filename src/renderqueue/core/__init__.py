"""Core types, events and cancellation primitives."""

from .cancellation import CancellationToken
from .events import (
    Event,
    EventBus,
    EventType,
    QueueStatusEvent,
    RenderProgressEvent,
    estimate_remaining_seconds,
)
from .types import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    QueueStatistics,
    RenderJob,
    RenderJobStatus,
    RenderType,
    format_size,
    frames_to_timecode,
    utc_now,
)

__all__ = [
    "CancellationToken",
    "Event",
    "EventBus",
    "EventType",
    "QueueStatusEvent",
    "RenderProgressEvent",
    "estimate_remaining_seconds",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "QueueStatistics",
    "RenderJob",
    "RenderJobStatus",
    "RenderType",
    "format_size",
    "frames_to_timecode",
    "utc_now",
]
