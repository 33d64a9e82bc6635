"""Bounded work queue."""

from .work_queue import DEFAULT_CAPACITY, BackgroundTaskQueue, WorkItem

__all__ = ["BackgroundTaskQueue", "DEFAULT_CAPACITY", "WorkItem"]
