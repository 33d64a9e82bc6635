"""Event system for render queue notifications.

The scheduler publishes three kinds of events:

- PROGRESS_CHANGED: every progress report from a running job (unthrottled)
- STATUS_CHANGED: every job status transition, with an optional reason
- QUEUE_STATUS_CHANGED: the queue was started or stopped

Example:
    >>> bus = EventBus()
    >>> def on_progress(event):
    ...     print(f"{event.job_id}: {event.progress_percentage:.1f}%")
    >>> bus.subscribe(EventType.PROGRESS_CHANGED, on_progress)
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Union

from .types import RenderJobStatus

logger = logging.getLogger(__name__)


class EventType(Enum):
    PROGRESS_CHANGED = auto()
    STATUS_CHANGED = auto()
    QUEUE_STATUS_CHANGED = auto()


@dataclass
class Event:
    """Base event class with metadata.

    Attributes:
        event_type: Type of the event.
        source: Name of the component that emitted the event.
        timestamp: When the event was created.
        event_id: Short unique identifier.
    """

    event_type: EventType
    source: str = "scheduler"
    timestamp: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.name,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "event_id": self.event_id,
        }


@dataclass
class RenderProgressEvent(Event):
    """Progress or status change of a single job.

    Attributes:
        job_id: External job identifier.
        status: Job status at the time of the event.
        progress_percentage: Overall job progress, 0 to 100.
        current_frame: Frame reported by the active backend.
        total_frames: Total frames of the active step, if known.
        stage: Name of the active pipeline step.
        elapsed_seconds: Seconds since the job started running.
        estimated_remaining_seconds: Linear extrapolation of remaining time.
        error_message: Last error for Failed/DeadLetter transitions.
        reason: Human-readable reason (e.g. "Retry 2/3").
    """

    job_id: str = ""
    status: RenderJobStatus = RenderJobStatus.PENDING
    progress_percentage: float = 0.0
    current_frame: int = 0
    total_frames: int = 0
    stage: Optional[str] = None
    elapsed_seconds: Optional[float] = None
    estimated_remaining_seconds: Optional[float] = None
    error_message: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "job_id": self.job_id,
            "status": self.status.value,
            "progress_percentage": round(self.progress_percentage, 2),
            "current_frame": self.current_frame,
            "total_frames": self.total_frames,
            "stage": self.stage,
            "elapsed_seconds": self.elapsed_seconds,
            "estimated_remaining_seconds": self.estimated_remaining_seconds,
            "error_message": self.error_message,
            "reason": self.reason,
        })
        return data


@dataclass
class QueueStatusEvent(Event):
    """The queue was started or stopped."""

    is_paused: bool = True


def estimate_remaining_seconds(
    elapsed_seconds: Optional[float], progress_percentage: float
) -> Optional[float]:
    """Linear extrapolation of remaining time from elapsed time and progress."""
    if elapsed_seconds is None or progress_percentage <= 0:
        return None
    if progress_percentage >= 100:
        return 0.0
    total = elapsed_seconds * 100.0 / progress_percentage
    return max(0.0, total - elapsed_seconds)


EventCallback = Callable[[Event], None]


class EventBus:
    """Thread-safe synchronous pub/sub bus.

    Callbacks run on the emitting thread. A failing callback is logged
    and does not prevent the remaining callbacks from running.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[EventType, List[EventCallback]] = {}
        self._wildcard_subscribers: List[EventCallback] = []
        self._lock = threading.RLock()
        self._events_emitted = 0

    def subscribe(
        self,
        event_type: Union[EventType, None],
        callback: EventCallback,
    ) -> None:
        """Subscribe to events of a type, or to all events with None."""
        with self._lock:
            if event_type is None:
                if callback not in self._wildcard_subscribers:
                    self._wildcard_subscribers.append(callback)
            else:
                subscribers = self._subscribers.setdefault(event_type, [])
                if callback not in subscribers:
                    subscribers.append(callback)

    def unsubscribe(
        self,
        event_type: Union[EventType, None],
        callback: EventCallback,
    ) -> bool:
        """Remove a subscription.

        Returns:
            True if callback was found and removed, False otherwise.
        """
        with self._lock:
            if event_type is None:
                if callback in self._wildcard_subscribers:
                    self._wildcard_subscribers.remove(callback)
                    return True
            elif callback in self._subscribers.get(event_type, []):
                self._subscribers[event_type].remove(callback)
                return True
            return False

    def emit(self, event: Event) -> None:
        with self._lock:
            self._events_emitted += 1
            subscribers = list(self._subscribers.get(event.event_type, []))
            wildcards = list(self._wildcard_subscribers)

        for callback in subscribers + wildcards:
            self._safe_call(callback, event)

    def _safe_call(self, callback: EventCallback, event: Event) -> None:
        try:
            callback(event)
        except Exception as e:
            logger.error(
                f"Error in event callback for {event.event_type.name}: {e}",
                exc_info=True,
            )

    def get_subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        with self._lock:
            if event_type is None:
                return len(self._wildcard_subscribers) + sum(
                    len(subs) for subs in self._subscribers.values()
                )
            return len(self._subscribers.get(event_type, []))

    def clear_subscribers(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._wildcard_subscribers.clear()

    @property
    def events_emitted(self) -> int:
        return self._events_emitted
