"""Job scheduling: retry policy, progress persistence and the queue service."""

from .progress_writer import ProgressUpdate, ProgressWriter
from .retry import RetryPolicy
from .service import RenderQueueService

__all__ = [
    "ProgressUpdate",
    "ProgressWriter",
    "RetryPolicy",
    "RenderQueueService",
]
