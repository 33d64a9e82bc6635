"""Shared pytest fixtures for renderqueue tests."""
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from renderqueue.config import QueueConfig
from renderqueue.core.cancellation import CancellationToken
from renderqueue.core.types import RenderJob, RenderType
from renderqueue.exceptions import BackendError
from renderqueue.persistence.job_store import JobStore
from renderqueue.pipeline.orchestrator import PipelineResult
from renderqueue.pipeline.stages import PipelineProgress
from renderqueue.scheduler.service import RenderQueueService
from renderqueue.utils.logging import ROOT_LOGGER_NAME


# ============================================================================
# Helpers
# ============================================================================

def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeOrchestrator:
    """Stands in for the pipeline orchestrator in scheduler tests.

    Each call pops the next behaviour from ``outcomes``:
    "ok" completes, "fail" raises BackendError, "block" waits for the
    cancellation token (or ``release``) and then completes.
    """

    def __init__(self, outcomes: Optional[List[str]] = None, default: str = "ok"):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls: List[str] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(
        self,
        job: RenderJob,
        on_progress: Callable[[PipelineProgress], None],
        cancel_token: CancellationToken,
    ) -> PipelineResult:
        with self._lock:
            outcome = self.outcomes.pop(0) if self.outcomes else self.default
            self.calls.append(job.job_id)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            on_progress(PipelineProgress(25.0, 10, 40, "render_project"))
            if outcome == "fail":
                raise BackendError("melt exited with code 1", tool="melt", exit_code=1)
            if outcome == "block":
                while not self.release.is_set():
                    cancel_token.raise_if_cancelled()
                    time.sleep(0.01)
            on_progress(PipelineProgress(100.0, 40, 40, "render_project"))
            return PipelineResult(output_file_size_bytes=1024)
        finally:
            with self._lock:
                self.active -= 1


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "jobs.db"


@pytest.fixture
def store(db_path):
    """A fresh job store in a temporary directory."""
    job_store = JobStore(db_path)
    yield job_store
    job_store.close()


@pytest.fixture
def make_job(tmp_path) -> Callable[..., RenderJob]:
    """Factory for render jobs with paths under ``tmp_path``."""
    counter = [0]

    def _make(render_type: RenderType = RenderType.PROJECT_RENDER, **kwargs) -> RenderJob:
        counter[0] += 1
        return RenderJob.create(
            str(tmp_path / f"project_{counter[0]}.mlt"),
            str(tmp_path / "out" / f"render_{counter[0]}.mp4"),
            render_type,
            **kwargs,
        )

    return _make


@pytest.fixture
def config(tmp_path, db_path) -> QueueConfig:
    """Config with near-zero backoff so retry tests run quickly."""
    return QueueConfig(
        database_path=str(db_path),
        auto_start_queue=True,
        retry_delay_scale=0.005,
        progress_persist_interval=0.0,
        shutdown_timeout=2.0,
        temp_dir=str(tmp_path / "work"),
    )


@pytest.fixture
def orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


@pytest.fixture
def service(config, store, orchestrator):
    """Unstarted service wired to the fake orchestrator."""
    svc = RenderQueueService(
        config,
        store=store,
        orchestrator=orchestrator,
        process_id=4242,
        machine_name="render-box",
    )
    yield svc
    svc.stop()


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging() so caplog sees renderqueue records."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.NOTSET)
    root.propagate = True
