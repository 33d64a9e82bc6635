"""Background persistence of job progress.

Progress callbacks run on backend reader threads and must not wait on
SQLite. They hand updates to a bounded channel; a single writer thread
drains it in order, so updates for one job are persisted in the order
they were observed. When the channel is full the update is dropped;
the next one supersedes it anyway.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Optional

from ..exceptions import JobStoreError
from ..persistence.job_store import JobStore

DEFAULT_CHANNEL_SIZE = 256


@dataclass(frozen=True)
class ProgressUpdate:
    job_id: str
    percentage: float
    current_frame: int


class ProgressWriter:
    """Single consumer that writes ``ProgressUpdate`` items to the store."""

    _STOP = object()

    def __init__(
        self,
        store: JobStore,
        capacity: int = DEFAULT_CHANNEL_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._channel: "queue.Queue[object]" = queue.Queue(maxsize=capacity)
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0
        self._written = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def written(self) -> int:
        return self._written

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run, name="renderqueue-progress-writer", daemon=True
        )
        self._thread.start()

    def submit(self, job_id: str, percentage: float, current_frame: int) -> bool:
        """Queue an update without blocking.

        Returns:
            False if the channel was full and the update was dropped
        """
        try:
            self._channel.put_nowait(ProgressUpdate(job_id, percentage, current_frame))
            return True
        except queue.Full:
            self._dropped += 1
            self._logger.debug(f"Progress channel full, dropped update for {job_id}")
            return False

    def stop(self, timeout: float = 5.0) -> None:
        """Flush pending updates and stop the writer thread."""
        if self._thread is None:
            return
        self._channel.put(self._STOP)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            self._logger.warning("Progress writer did not stop in time")
        self._thread = None

    def _run(self) -> None:
        while True:
            item = self._channel.get()
            if item is self._STOP:
                return
            assert isinstance(item, ProgressUpdate)
            try:
                if self._store.update_progress(item.job_id, item.percentage, item.current_frame):
                    self._written += 1
            except JobStoreError as e:
                self._logger.warning(f"Could not persist progress for {item.job_id}: {e}")
