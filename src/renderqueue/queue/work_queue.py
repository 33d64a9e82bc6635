"""Bounded in-memory work queue with backpressure.

Producers block when the queue is full; nothing is ever dropped. The
single consumer (the scheduler's dispatch loop) waits for an item or for
its cancellation token, whichever comes first.
"""

import logging
import queue
from typing import Callable, Optional

from ..core.cancellation import CancellationToken

WorkItem = Callable[[CancellationToken], None]

DEFAULT_CAPACITY = 100


class BackgroundTaskQueue:
    """FIFO queue of work items bounded to ``capacity``."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        poll_interval: float = 0.1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._poll_interval = poll_interval
        self._queue: "queue.Queue[WorkItem]" = queue.Queue(maxsize=capacity)
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def enqueue(
        self,
        item: WorkItem,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """Add ``item``, blocking while the queue is full.

        Raises:
            OperationCancelledError: If ``cancel_token`` fires while waiting
        """
        if item is None:
            raise ValueError("work item cannot be None")

        warned = False
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return
            except queue.Full:
                if not warned:
                    self._logger.warning(
                        f"Work queue full ({self.capacity} items), producer waiting"
                    )
                    warned = True

    def dequeue(self, cancel_token: CancellationToken) -> WorkItem:
        """Wait for the next item.

        Raises:
            OperationCancelledError: If ``cancel_token`` fires first
        """
        while True:
            cancel_token.raise_if_cancelled()
            try:
                return self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()
