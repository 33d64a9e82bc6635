"""Tests for the bounded work queue and cancellation tokens."""
import threading
import time

import pytest

from renderqueue.core.cancellation import CancellationToken
from renderqueue.exceptions import OperationCancelledError
from renderqueue.queue.work_queue import BackgroundTaskQueue


def _item(name, log):
    def run(token):
        log.append(name)
    return run


class TestBackgroundTaskQueue:
    """Tests for BackgroundTaskQueue."""

    def test_fifo_order(self):
        """Test that items come out in insertion order."""
        queue = BackgroundTaskQueue(capacity=5)
        token = CancellationToken()
        log = []
        for name in ("a", "b", "c"):
            queue.enqueue(_item(name, log))

        for _ in range(3):
            queue.dequeue(token)(token)

        assert log == ["a", "b", "c"]

    def test_rejects_invalid_capacity(self):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            BackgroundTaskQueue(capacity=0)

    def test_rejects_none_item(self):
        """Test that None cannot be queued."""
        with pytest.raises(ValueError):
            BackgroundTaskQueue().enqueue(None)

    def test_enqueue_blocks_when_full(self):
        """Test backpressure: the producer waits instead of dropping."""
        queue = BackgroundTaskQueue(capacity=1, poll_interval=0.01)
        token = CancellationToken()
        queue.enqueue(lambda t: None)
        done = threading.Event()

        def producer():
            queue.enqueue(lambda t: None)
            done.set()

        thread = threading.Thread(target=producer)
        thread.start()

        assert not done.wait(0.2)
        queue.dequeue(token)
        assert done.wait(2.0)
        thread.join()
        assert queue.qsize() == 1

    def test_blocked_enqueue_cancellable(self):
        """Test that a waiting producer gives up when its token fires."""
        queue = BackgroundTaskQueue(capacity=1, poll_interval=0.01)
        queue.enqueue(lambda t: None)
        token = CancellationToken()
        errors = []

        def producer():
            try:
                queue.enqueue(lambda t: None, token)
            except OperationCancelledError as e:
                errors.append(e)

        thread = threading.Thread(target=producer)
        thread.start()
        time.sleep(0.05)
        token.cancel()
        thread.join(timeout=2.0)

        assert len(errors) == 1

    def test_dequeue_raises_on_cancellation(self):
        """Test that an empty dequeue fails once the token fires."""
        queue = BackgroundTaskQueue(poll_interval=0.01)
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        with pytest.raises(OperationCancelledError):
            queue.dequeue(token)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_runs_callbacks_once(self):
        """Test that callbacks fire exactly once."""
        token = CancellationToken()
        calls = []
        token.register(lambda: calls.append(1))

        token.cancel()
        token.cancel()

        assert calls == [1]
        assert token.is_cancelled

    def test_register_after_cancel_runs_immediately(self):
        """Test late registration."""
        token = CancellationToken()
        token.cancel()
        calls = []

        registration = token.register(lambda: calls.append(1))

        assert calls == [1]
        assert registration == 0

    def test_unregister(self):
        """Test that an unregistered callback does not fire."""
        token = CancellationToken()
        calls = []
        registration = token.register(lambda: calls.append(1))

        token.unregister(registration)
        token.cancel()

        assert calls == []

    def test_linked_token_follows_parent(self):
        """Test that cancelling the parent cancels children."""
        parent = CancellationToken()
        child = CancellationToken.linked(parent)

        parent.cancel()

        assert child.is_cancelled

    def test_child_cancel_does_not_affect_parent_or_siblings(self):
        """Test that cancelling one job leaves the others running."""
        parent = CancellationToken()
        first = CancellationToken.linked(parent)
        second = CancellationToken.linked(parent)

        first.cancel()

        assert not parent.is_cancelled
        assert not second.is_cancelled

    def test_detached_child_ignores_parent(self):
        """Test detach."""
        parent = CancellationToken()
        child = CancellationToken.linked(parent)

        child.detach()
        parent.cancel()

        assert not child.is_cancelled

    def test_failing_callback_does_not_stop_others(self):
        """Test that callback errors are contained."""
        token = CancellationToken()
        calls = []

        def broken():
            raise RuntimeError("boom")

        token.register(broken)
        token.register(lambda: calls.append(1))
        token.cancel()

        assert calls == [1]

    def test_raise_if_cancelled(self):
        """Test raise_if_cancelled."""
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_wait(self):
        """Test wait with timeout."""
        token = CancellationToken()
        assert token.wait(0.01) is False
        token.cancel()
        assert token.wait(0.01) is True
