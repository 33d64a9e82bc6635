"""renderqueue - durable, crash-recoverable render job scheduler."""
__version__ = "0.4.0"

from .config import QueueConfig, load_config, save_config

# Job model and notifications
from .core import (
    CancellationToken,
    EventBus,
    EventType,
    QueueStatistics,
    QueueStatusEvent,
    RenderJob,
    RenderJobStatus,
    RenderProgressEvent,
    RenderType,
)

from .exceptions import (
    RenderQueueError,
    ConfigurationError,
    JobStoreError,
    BackendError,
    IntegrityError,
    OperationCancelledError,
)

from .persistence import JobStore
from .pipeline import PipelineBackends, PipelineOrchestrator, RenderSettings
from .queue import BackgroundTaskQueue
from .scheduler import RenderQueueService, RetryPolicy

# Structured logging
from .utils.logging import LogConfig, configure_logging, get_logger

__all__ = [
    "__version__",
    "QueueConfig",
    "load_config",
    "save_config",
    "CancellationToken",
    "EventBus",
    "EventType",
    "QueueStatistics",
    "QueueStatusEvent",
    "RenderJob",
    "RenderJobStatus",
    "RenderProgressEvent",
    "RenderType",
    "RenderQueueError",
    "ConfigurationError",
    "JobStoreError",
    "BackendError",
    "IntegrityError",
    "OperationCancelledError",
    "JobStore",
    "PipelineBackends",
    "PipelineOrchestrator",
    "RenderSettings",
    "BackgroundTaskQueue",
    "RenderQueueService",
    "RetryPolicy",
    "LogConfig",
    "configure_logging",
    "get_logger",
]
