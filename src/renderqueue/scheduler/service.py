"""Render queue service: durable, crash-recoverable job scheduling.

The service owns one dispatch thread that takes work items from the
bounded queue and hands each to a thread pool, guarded by a permit pool
of ``max_concurrent_renders``. Each work item claims its job in the job
store, runs it through the pipeline orchestrator under a cancellation
token linked to the service stop token, and records the outcome.

State machine::

    Pending -> Running -> Completed | Cancelled | DeadLetter
    Running -> Paused -> Pending            (pause / resume)
    Running -> Failed -> Pending            (automatic retry after backoff)
    Failed | DeadLetter -> Pending          (manual retry)

Control operations (enqueue, pause, resume, cancel, retry, delete)
return False instead of raising when the job is not in a compatible
status or the store is unavailable.
"""

import logging
import os
import socket
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Union

from ..config import QueueConfig
from ..core.cancellation import CancellationToken
from ..core.events import (
    Event,
    EventBus,
    EventType,
    QueueStatusEvent,
    RenderProgressEvent,
    estimate_remaining_seconds,
)
from ..core.types import (
    RenderJob,
    RenderJobStatus,
    QueueStatistics,
    TERMINAL_STATUSES,
    utc_now,
)
from ..exceptions import JobStoreError, OperationCancelledError
from ..persistence.job_store import JobStore
from ..pipeline.orchestrator import PipelineBackends, PipelineOrchestrator
from ..pipeline.stages import PipelineProgress
from ..queue.work_queue import BackgroundTaskQueue
from ..utils.logging import RenderQueueLogger, adapt_logger
from .progress_writer import ProgressWriter
from .retry import RetryPolicy

EventCallback = Callable[[Event], None]

_POLL_INTERVAL = 0.1


class RenderQueueService:
    """Schedules render jobs stored in a ``JobStore``.

    Example:
        >>> service = RenderQueueService(load_config())
        >>> service.start()
        >>> service.start_queue()
        >>> service.enqueue(RenderJob.create("project.mlt", "out.mp4"))
        >>> service.stop()
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        store: Optional[JobStore] = None,
        orchestrator: Optional[PipelineOrchestrator] = None,
        event_bus: Optional[EventBus] = None,
        process_id: Optional[int] = None,
        machine_name: Optional[str] = None,
        logger: Optional[Union[logging.Logger, RenderQueueLogger]] = None,
    ) -> None:
        self.config = config or QueueConfig()
        self._logger = adapt_logger(logger, "scheduler")
        self.store = store or JobStore(self.config.database_path)
        self.orchestrator = orchestrator or PipelineOrchestrator(
            PipelineBackends.from_config(self.config), self.config
        )
        self.events = event_bus or EventBus()
        self.process_id = process_id if process_id is not None else os.getpid()
        self.machine_name = machine_name or socket.gethostname()
        self.retry_policy = RetryPolicy(
            exponential_base=self.config.retry_backoff_base,
            delay_scale=self.config.retry_delay_scale,
        )

        self._queue = BackgroundTaskQueue(self.config.queue_capacity, logger=self._logger)
        self._permits = threading.BoundedSemaphore(self.config.max_concurrent_renders)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatch_thread: Optional[threading.Thread] = None
        self._stop_token = CancellationToken()
        self._queue_started = threading.Event()
        if self.config.auto_start_queue:
            self._queue_started.set()

        self._job_tokens: Dict[str, CancellationToken] = {}
        self._tokens_lock = threading.Lock()
        self._retry_timers: Dict[str, threading.Timer] = {}
        self._timers_lock = threading.RLock()

        self._progress_writer = ProgressWriter(self.store, logger=self._logger)
        self._started = False
        self._state_lock = threading.Lock()

    # Lifecycle

    @property
    def is_started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Recover crashed jobs, then start dispatching.

        Pending jobs already in the store are re-submitted oldest first.
        """
        with self._state_lock:
            if self._started:
                self._logger.warning("Render queue service already started")
                return
            if self._stop_token.is_cancelled:
                self._stop_token = CancellationToken()

            self.recover_crashed_jobs()

            self._progress_writer.start()
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_concurrent_renders,
                thread_name_prefix="renderqueue-job",
            )
            self._dispatch_thread = threading.Thread(
                target=self._dispatch_loop, name="renderqueue-dispatch", daemon=True
            )
            self._started = True
            self._dispatch_thread.start()

        # Resubmission may block on a full queue, so it runs off the caller's thread.
        threading.Thread(
            target=self._resubmit_pending, name="renderqueue-resubmit", daemon=True
        ).start()
        self._logger.info(
            f"Render queue started on {self.machine_name} (pid {self.process_id}), "
            f"{self.config.max_concurrent_renders} concurrent render(s), "
            f"queue {'paused' if self.is_queue_paused else 'running'}"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel running jobs and stop the dispatch loop.

        Running jobs are cancelled and given ``timeout`` seconds
        (``shutdown_timeout`` by default) to unwind; anything left after
        that is force-cancelled and forgotten.
        """
        with self._state_lock:
            if not self._started:
                return
            self._started = False

        timeout = self.config.shutdown_timeout if timeout is None else timeout
        running = self.running_job_ids()
        for job_id in running:
            self.cancel_job(job_id)

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline and self.running_job_ids():
            time.sleep(0.05)

        with self._tokens_lock:
            leftover = dict(self._job_tokens)
            self._job_tokens.clear()
        if leftover:
            self._logger.warning(
                f"{len(leftover)} job(s) still running after {timeout:.1f}s, "
                f"discarding: {', '.join(leftover)}"
            )
            for token in leftover.values():
                token.cancel()

        self._stop_token.cancel()
        self._release_retry_timers()

        if self._dispatch_thread is not None:
            self._dispatch_thread.join(timeout=max(1.0, timeout))
            self._dispatch_thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._progress_writer.stop()
        self._logger.info("Render queue stopped")

    def close(self) -> None:
        self.stop()
        self.store.close()

    def __enter__(self) -> "RenderQueueService":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def recover_crashed_jobs(self) -> int:
        """Requeue or dead-letter Running jobs left behind by a dead process.

        Only jobs owned by this machine are considered.

        Returns:
            Number of jobs recovered
        """
        try:
            crashed = self.store.get_crashed(self.process_id, self.machine_name)
        except JobStoreError as e:
            self._logger.error(f"Crash recovery scan failed: {e}")
            return 0

        recovered = 0
        for job in crashed:
            owner = f"process {job.process_id} on {job.machine_name}"
            job.clear_ownership()
            job.last_error = f"Render interrupted: {owner} exited while the job was running"
            if self.retry_policy.should_retry(job):
                job.retry_count += 1
                job.status = RenderJobStatus.PENDING
                job.started_at = None
                job.reset_progress()
                reason = f"Recovered after crash ({self.retry_policy.retry_reason(job)})"
            else:
                job.status = RenderJobStatus.DEAD_LETTER
                job.completed_at = utc_now()
                reason = "Recovered after crash, retries exhausted"

            try:
                if not self.store.update(job, expected_status=RenderJobStatus.RUNNING):
                    continue
            except JobStoreError as e:
                self._logger.error(f"Could not recover job {job.job_id}: {e}")
                continue
            recovered += 1
            self._logger.warning(
                f"Job {job.job_id} from {owner}: {reason}",
                job_id=job.job_id,
                attempt=job.retry_count,
            )
            self._emit_status(job, reason)

        if recovered:
            self._logger.warning(f"Recovered {recovered} crashed job(s)")
        return recovered

    # Queue-level pause

    @property
    def is_queue_paused(self) -> bool:
        return not self._queue_started.is_set()

    def start_queue(self) -> None:
        """Let the dispatch loop start new jobs."""
        if not self.is_queue_paused:
            return
        self._queue_started.set()
        self._logger.info("Queue started")
        self.events.emit(QueueStatusEvent(EventType.QUEUE_STATUS_CHANGED, is_paused=False))

    def stop_queue(self) -> None:
        """Stop starting new jobs; running jobs continue."""
        if self.is_queue_paused:
            return
        self._queue_started.clear()
        self._logger.info("Queue paused")
        self.events.emit(QueueStatusEvent(EventType.QUEUE_STATUS_CHANGED, is_paused=True))

    # Control surface

    def enqueue(self, job: RenderJob) -> bool:
        """Store ``job`` as Pending and submit it for execution."""
        job.status = RenderJobStatus.PENDING
        job.clear_ownership()
        try:
            self.store.add(job)
        except JobStoreError as e:
            self._logger.error(f"Could not enqueue job {job.job_id}: {e}")
            return False
        self._logger.info(f"Job {job.job_id} queued: {job.display_name}", job_id=job.job_id)
        self._emit_status(job, "Queued")
        self._submit(job.job_id)
        return True

    def pause_job(self, job_id: str) -> bool:
        """Stop a running job; it can be resumed later from the start."""
        job = self._load(job_id)
        if job is None or job.status != RenderJobStatus.RUNNING:
            return False
        job.status = RenderJobStatus.PAUSED
        job.clear_ownership()
        if not self._transition(job, RenderJobStatus.RUNNING):
            return False
        self._cancel_token(job_id)
        self._logger.info(f"Job {job_id} paused", job_id=job_id)
        self._emit_status(job, "Paused by user")
        return True

    def resume_job(self, job_id: str) -> bool:
        job = self._load(job_id)
        if job is None or job.status != RenderJobStatus.PAUSED:
            return False
        job.status = RenderJobStatus.PENDING
        job.started_at = None
        job.reset_progress()
        if not self._transition(job, RenderJobStatus.PAUSED):
            return False
        self._logger.info(f"Job {job_id} resumed")
        self._emit_status(job, "Resumed")
        self._submit(job_id)
        return True

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a job that has not reached a terminal status."""
        job = self._load(job_id)
        if job is None or job.status in TERMINAL_STATUSES:
            return False
        previous = job.status
        job.status = RenderJobStatus.CANCELLED
        job.completed_at = utc_now()
        job.clear_ownership()
        if not self._transition(job, previous):
            return False
        self._cancel_retry_timer(job_id)
        self._cancel_token(job_id)
        self._logger.info(f"Job {job_id} cancelled", job_id=job_id, previous_status=previous.value)
        self._emit_status(job, "Cancelled by user")
        return True

    def retry_job(self, job_id: str) -> bool:
        """Requeue a failed or dead-lettered job with a fresh retry budget."""
        job = self._load(job_id)
        if job is None or job.status not in (RenderJobStatus.FAILED, RenderJobStatus.DEAD_LETTER):
            return False
        previous = job.status
        self._cancel_retry_timer(job_id)
        job.status = RenderJobStatus.PENDING
        job.retry_count = 0
        job.last_error = None
        job.error_stack_trace = None
        job.started_at = None
        job.completed_at = None
        job.reset_progress()
        if not self._transition(job, previous):
            return False
        self._logger.info(f"Job {job_id} requeued by user")
        self._emit_status(job, "Manual retry")
        self._submit(job_id)
        return True

    def delete_job(self, job_id: str) -> bool:
        """Remove a job that is not running."""
        job = self._load(job_id)
        if job is None or job.status == RenderJobStatus.RUNNING:
            return False
        self._cancel_retry_timer(job_id)
        try:
            deleted = self.store.delete(job_id)
        except JobStoreError as e:
            self._logger.error(f"Could not delete job {job_id}: {e}")
            return False
        if deleted:
            self._logger.info(f"Job {job_id} deleted")
        return deleted

    def clear_finished_jobs(self) -> int:
        """Delete Completed, Cancelled and DeadLetter jobs.

        Returns:
            Number of jobs deleted
        """
        try:
            count = self.store.delete_by_status(TERMINAL_STATUSES)
        except JobStoreError as e:
            self._logger.error(f"Could not clear finished jobs: {e}")
            return 0
        self._logger.info(f"Cleared {count} finished job(s)")
        return count

    # Queries

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        return self.store.get(job_id)

    def get_all_jobs(self) -> List[RenderJob]:
        return self.store.get_all()

    def get_active_jobs(self) -> List[RenderJob]:
        return self.store.get_active()

    def get_completed_jobs(self) -> List[RenderJob]:
        return self.store.get_by_status(RenderJobStatus.COMPLETED, newest_first=True)

    def get_failed_jobs(self) -> List[RenderJob]:
        return self.store.get_by_status(
            (RenderJobStatus.FAILED, RenderJobStatus.DEAD_LETTER), newest_first=True
        )

    def get_statistics(self) -> QueueStatistics:
        return QueueStatistics.from_counts(self.store.count_by_status(), self.is_queue_paused)

    def running_job_ids(self) -> List[str]:
        with self._tokens_lock:
            return list(self._job_tokens)

    def is_idle(self) -> bool:
        """True when nothing is running, waiting for retry or pending."""
        if self.running_job_ids():
            return False
        with self._timers_lock:
            if self._retry_timers:
                return False
        counts = self.store.count_by_status()
        return not counts.get(RenderJobStatus.PENDING) and not counts.get(RenderJobStatus.RUNNING)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_idle():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(_POLL_INTERVAL)
        return True

    # Subscriptions

    def subscribe_progress(self, callback: EventCallback) -> None:
        self.events.subscribe(EventType.PROGRESS_CHANGED, callback)

    def subscribe_status(self, callback: EventCallback) -> None:
        self.events.subscribe(EventType.STATUS_CHANGED, callback)

    def subscribe_queue_status(self, callback: EventCallback) -> None:
        self.events.subscribe(EventType.QUEUE_STATUS_CHANGED, callback)

    def unsubscribe(self, event_type: EventType, callback: EventCallback) -> bool:
        return self.events.unsubscribe(event_type, callback)

    # Dispatch

    def _submit(self, job_id: str) -> None:
        if not self._started:
            # Picked up from the store on the next start().
            return

        def work_item(stop_token: CancellationToken) -> None:
            self._execute_job(job_id, stop_token)

        try:
            self._queue.enqueue(work_item, self._stop_token)
        except OperationCancelledError:
            self._logger.debug(f"Service stopping, job {job_id} left pending")

    def _resubmit_pending(self) -> None:
        try:
            pending = self.store.get_by_status(RenderJobStatus.PENDING)
        except JobStoreError as e:
            self._logger.error(f"Could not load pending jobs: {e}")
            return
        if pending:
            self._logger.info(f"Resubmitting {len(pending)} pending job(s)")
        for job in pending:
            self._submit(job.job_id)

    def _dispatch_loop(self) -> None:
        stop_token = self._stop_token
        while not stop_token.is_cancelled:
            try:
                item = self._queue.dequeue(stop_token)
                while not self._queue_started.wait(_POLL_INTERVAL):
                    stop_token.raise_if_cancelled()
                while not self._permits.acquire(timeout=_POLL_INTERVAL):
                    stop_token.raise_if_cancelled()
            except OperationCancelledError:
                break

            executor = self._executor
            if executor is None or not self._started:
                self._permits.release()
                break
            try:
                executor.submit(self._run_item, item, stop_token)
            except RuntimeError:
                self._permits.release()
                break
        self._logger.debug("Dispatch loop exited")

    def _run_item(self, item: Callable[[CancellationToken], None], stop_token: CancellationToken) -> None:
        try:
            item(stop_token)
        except Exception as e:
            self._logger.error(f"Unhandled error in work item: {e}", exc_info=True)
        finally:
            self._permits.release()

    def _execute_job(self, job_id: str, stop_token: CancellationToken) -> None:
        if not self._started or stop_token.is_cancelled:
            return
        job = self.store.get(job_id)
        if job is None or job.status != RenderJobStatus.PENDING:
            self._logger.debug(f"Skipping job {job_id}: no longer pending")
            return

        token = CancellationToken.linked(stop_token)
        with self._tokens_lock:
            if job_id in self._job_tokens:
                token.detach()
                return
            self._job_tokens[job_id] = token

        log = self._logger.bind(job_id=job_id)
        try:
            claimed = self.store.claim(job_id, self.process_id, self.machine_name)
            if claimed is None:
                return
            if token.is_cancelled:
                self._release_claim(claimed, log)
                return
            attempt = claimed.retry_count + 1
            log.info(
                f"Job {job_id} started: {claimed.display_name} "
                f"(attempt {attempt}/{claimed.max_retries + 1})",
                attempt=attempt,
                render_type=claimed.render_type.value,
            )
            self._emit_status(claimed)
            self._run_job(claimed, token)
        except Exception as e:
            # Errors outside the pipeline (store failures) must not reach the dispatch loop.
            log.error(f"Job {job_id} could not be processed: {e}", exc_info=True)
        finally:
            with self._tokens_lock:
                if self._job_tokens.get(job_id) is token:
                    del self._job_tokens[job_id]
            token.detach()

    def _release_claim(self, job: RenderJob, log: RenderQueueLogger) -> None:
        """Hand a job claimed after cancellation fired back to Pending.

        A control operation that already moved the row keeps its status.
        """
        job.status = RenderJobStatus.PENDING
        job.started_at = None
        job.clear_ownership()
        job.reset_progress()
        if self.store.update(job, expected_status=RenderJobStatus.RUNNING):
            log.info(f"Job {job.job_id} released unstarted, service stopping")
            self._emit_status(job, "Released at shutdown")
        else:
            log.debug(f"Job {job.job_id} cancelled before it started")

    def _run_job(self, job: RenderJob, token: CancellationToken) -> None:
        interval = self.config.progress_persist_interval
        last_persist = [0.0]
        last_progress = [PipelineProgress(0.0)]

        def on_progress(progress: PipelineProgress) -> None:
            last_progress[0] = progress
            now = time.monotonic()
            if now - last_persist[0] >= interval:
                last_persist[0] = now
                self._progress_writer.submit(
                    job.job_id, progress.percentage, progress.current_frame
                )
            self._emit_progress(job, progress)

        try:
            result = self.orchestrator.run(job, on_progress, token)
        except OperationCancelledError:
            self._logger.info(f"Job {job.job_id} stopped by cancellation")
            return
        except Exception as e:
            if token.is_cancelled:
                # The backend failed while being torn down; the control op owns the status.
                self._logger.info(f"Job {job.job_id} stopped by cancellation ({e})")
                return
            self._handle_failure(job.job_id, e, traceback.format_exc())
            return

        current = self.store.get(job.job_id)
        if current is None or current.status != RenderJobStatus.RUNNING:
            return
        current.status = RenderJobStatus.COMPLETED
        current.completed_at = utc_now()
        current.progress_percentage = 100.0
        current.current_frame = last_progress[0].current_frame
        current.total_frames = last_progress[0].total_frames
        current.last_error = None
        current.error_stack_trace = None
        current.output_file_size_bytes = result.output_file_size_bytes
        current.intermediate_file_size_bytes = result.intermediate_file_size_bytes
        current.clear_ownership()
        if not self.store.update(current, expected_status=RenderJobStatus.RUNNING):
            return
        self._logger.info(
            f"Job {job.job_id} completed in {current.elapsed_seconds() or 0:.1f}s",
            job_id=job.job_id,
            output_bytes=current.output_file_size_bytes,
        )
        self._emit_status(current, "Completed")

    def _handle_failure(self, job_id: str, error: Exception, stack_trace: str) -> None:
        job = self.store.get(job_id)
        if job is None or job.status != RenderJobStatus.RUNNING:
            return

        job.last_error = str(error) or type(error).__name__
        job.error_stack_trace = stack_trace
        job.clear_ownership()

        if self.retry_policy.should_retry(job):
            job.retry_count += 1
            job.status = RenderJobStatus.FAILED
            delay = self.retry_policy.get_delay(job.retry_count)
            # Cancel and stop look for the timer once they see Failed.
            with self._timers_lock:
                if not self.store.update(job, expected_status=RenderJobStatus.RUNNING):
                    return
                self._logger.warning(
                    f"Job {job_id} failed: {job.last_error}. "
                    f"Retry {job.retry_count}/{job.max_retries} in {delay:.1f}s",
                    job_id=job_id,
                    attempt=job.retry_count,
                    delay_seconds=round(delay, 2),
                )
                self._emit_status(job, f"Retrying in {delay:.1f}s")
                self._schedule_retry(job_id, delay)
        else:
            job.status = RenderJobStatus.DEAD_LETTER
            job.completed_at = utc_now()
            if not self.store.update(job, expected_status=RenderJobStatus.RUNNING):
                return
            self._logger.error(
                f"Job {job_id} moved to dead letter after {job.retry_count} retries: "
                f"{job.last_error}",
                job_id=job_id,
                retries=job.retry_count,
            )
            self._emit_status(job, "Retries exhausted")

    # Retry timers

    def _schedule_retry(self, job_id: str, delay: float) -> None:
        timer = threading.Timer(delay, self._retry_after_backoff, args=(job_id,))
        timer.daemon = True
        with self._timers_lock:
            previous = self._retry_timers.pop(job_id, None)
            self._retry_timers[job_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _retry_after_backoff(self, job_id: str) -> None:
        with self._timers_lock:
            if self._retry_timers.get(job_id) is not threading.current_thread():
                return
            del self._retry_timers[job_id]
        try:
            job = self._requeue_failed(job_id)
        except JobStoreError as e:
            self._logger.error(f"Could not requeue job {job_id}: {e}")
            return
        if job is None:
            return
        self._emit_status(job, self.retry_policy.retry_reason(job))
        self._submit(job_id)

    def _requeue_failed(self, job_id: str) -> Optional[RenderJob]:
        job = self.store.get(job_id)
        if job is None or job.status != RenderJobStatus.FAILED:
            return None
        job.status = RenderJobStatus.PENDING
        job.started_at = None
        job.reset_progress()
        if not self.store.update(job, expected_status=RenderJobStatus.FAILED):
            return None
        return job

    def _cancel_retry_timer(self, job_id: str) -> None:
        with self._timers_lock:
            timer = self._retry_timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()

    def _release_retry_timers(self) -> None:
        """Cancel backoff timers, leaving their jobs Pending for the next start."""
        with self._timers_lock:
            timers = dict(self._retry_timers)
            self._retry_timers.clear()
        for job_id, timer in timers.items():
            timer.cancel()
            try:
                if self._requeue_failed(job_id) is not None:
                    self._logger.info(f"Job {job_id} left pending for the next start")
            except JobStoreError as e:
                self._logger.error(f"Could not requeue job {job_id}: {e}")

    # Helpers

    def _load(self, job_id: str) -> Optional[RenderJob]:
        try:
            job = self.store.get(job_id)
        except JobStoreError as e:
            self._logger.error(f"Could not load job {job_id}: {e}")
            return None
        if job is None:
            self._logger.debug(f"Job {job_id} not found")
        return job

    def _transition(self, job: RenderJob, expected: RenderJobStatus) -> bool:
        try:
            return self.store.update(job, expected_status=expected)
        except JobStoreError as e:
            self._logger.error(f"Could not update job {job.job_id}: {e}")
            return False

    def _cancel_token(self, job_id: str) -> None:
        with self._tokens_lock:
            token = self._job_tokens.get(job_id)
        if token is not None:
            token.cancel()

    def _emit_status(self, job: RenderJob, reason: Optional[str] = None) -> None:
        elapsed = job.elapsed_seconds()
        self.events.emit(RenderProgressEvent(
            EventType.STATUS_CHANGED,
            job_id=job.job_id,
            status=job.status,
            progress_percentage=min(100.0, max(0.0, job.progress_percentage)),
            current_frame=job.current_frame,
            total_frames=job.total_frames,
            elapsed_seconds=elapsed,
            estimated_remaining_seconds=estimate_remaining_seconds(
                elapsed, job.progress_percentage
            ),
            error_message=job.last_error,
            reason=reason,
        ))

    def _emit_progress(self, job: RenderJob, progress: PipelineProgress) -> None:
        elapsed = job.elapsed_seconds()
        self.events.emit(RenderProgressEvent(
            EventType.PROGRESS_CHANGED,
            job_id=job.job_id,
            status=RenderJobStatus.RUNNING,
            progress_percentage=progress.percentage,
            current_frame=progress.current_frame,
            total_frames=progress.total_frames,
            stage=progress.stage,
            elapsed_seconds=elapsed,
            estimated_remaining_seconds=estimate_remaining_seconds(
                elapsed, progress.percentage
            ),
        ))
