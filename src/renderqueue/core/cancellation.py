"""Cooperative cancellation tokens.

A token wraps a ``threading.Event``. Callbacks registered on a token run
once, on the thread that cancels it (or immediately if it is already
cancelled). Linked tokens are cancelled when their parent is, which is
how the scheduler's stop signal reaches every running job.
"""

import itertools
import logging
import threading
from typing import Callable, Dict, Optional

from ..exceptions import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation signal."""

    _ids = itertools.count(1)

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._parent_registration: Optional[int] = None
        self._parent = parent

        if parent is not None:
            self._parent_registration = parent.register(self.cancel)

    @classmethod
    def linked(cls, parent: "CancellationToken") -> "CancellationToken":
        """Create a token that is cancelled whenever ``parent`` is."""
        return cls(parent=parent)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and run registered callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            self._safe_call(callback)

    def register(self, callback: Callable[[], None]) -> int:
        """Register ``callback`` to run on cancellation.

        Returns:
            Registration id for ``unregister``
        """
        with self._lock:
            if not self._event.is_set():
                registration = next(self._ids)
                self._callbacks[registration] = callback
                return registration

        self._safe_call(callback)
        return 0

    def unregister(self, registration: int) -> None:
        with self._lock:
            self._callbacks.pop(registration, None)

    def detach(self) -> None:
        """Stop listening to the parent token."""
        if self._parent is not None and self._parent_registration:
            self._parent.unregister(self._parent_registration)
            self._parent_registration = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses.

        Returns:
            True if the token was cancelled
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()

    @staticmethod
    def _safe_call(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"Cancellation callback failed: {e}", exc_info=True)
