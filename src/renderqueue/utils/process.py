"""External process supervision.

``ProcessManager`` terminates a spawned tool and every process it forked:
first politely, then by force after a timeout. ``run_tool`` starts a
tool, streams its output to a callback, and wires the job's
cancellation token to ``ProcessManager.shutdown`` so that cancelling a
job stops its tools.
"""

import logging
import signal
import subprocess
import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Sequence

import psutil

from ..core.cancellation import CancellationToken
from ..exceptions import BackendError, OperationCancelledError

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Graceful exit windows per tool family (seconds)
RENDER_GRACEFUL_TIMEOUT = 3.0
ENCODER_GRACEFUL_TIMEOUT = 2.0
KILL_WAIT_TIMEOUT = 0.5


def popen_platform_kwargs() -> Dict[str, object]:
    """Spawn options that let the tool be signalled on its own.

    On Windows the tool gets its own process group so CTRL_BREAK_EVENT
    reaches it without hitting us; elsewhere it gets its own session.
    """
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _descendants(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def _still_running(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


class CancellationRegistration:
    """Handle returned by ``ProcessManager.register_cancellation``."""

    def __init__(self, token: CancellationToken) -> None:
        self._token = token
        self._registration = 0
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def triggered(self) -> bool:
        return self._thread is not None

    def unregister(self) -> None:
        if self._registration:
            self._token.unregister(self._registration)
            self._registration = 0

    def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for a triggered shutdown to finish."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)


class ProcessManager:
    """Graceful-then-forceful termination of process trees."""

    def __init__(
        self,
        kill_wait_timeout: float = KILL_WAIT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.kill_wait_timeout = kill_wait_timeout
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def shutdown(
        self,
        process: subprocess.Popen,
        graceful_timeout: float,
        label: str,
    ) -> bool:
        """Stop ``process`` and all of its descendants.

        Args:
            process: Process started by us
            graceful_timeout: Seconds to wait after the polite request
            label: Name used in log messages

        Returns:
            True if the process and its known descendants are gone
        """
        if process.poll() is not None:
            return True

        pid = process.pid
        # Descendants are found through the parent, so look before it dies.
        tree = {p.pid: p for p in _descendants(pid)}

        self._request_graceful_exit(process, label)
        try:
            process.wait(timeout=graceful_timeout)
            self._logger.debug(f"{label} (pid {pid}) exited gracefully")
            parent_exited = True
        except subprocess.TimeoutExpired:
            self._logger.warning(
                f"{label} (pid {pid}) did not exit within {graceful_timeout:.1f}s, "
                f"killing process tree"
            )
            parent_exited = False
            for child in _descendants(pid):
                tree.setdefault(child.pid, child)

        survivors = [p for p in tree.values() if _still_running(p)]
        if parent_exited and not survivors:
            return True

        for proc in survivors:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                self._logger.warning(f"Cannot kill pid {proc.pid} of {label}: {e}")

        if not parent_exited:
            try:
                process.kill()
            except OSError:
                pass

        _, alive = psutil.wait_procs(survivors, timeout=self.kill_wait_timeout)
        if not parent_exited:
            try:
                process.wait(timeout=self.kill_wait_timeout)
            except subprocess.TimeoutExpired:
                pass

        alive = [p for p in alive if _still_running(p)]
        if alive or process.poll() is None:
            self._logger.warning(
                f"{label}: process tree not fully terminated, "
                f"{len(alive) + (process.poll() is None)} process(es) still running"
            )
            return False

        self._logger.info(f"{label} (pid {pid}) terminated")
        return True

    def _request_graceful_exit(self, process: subprocess.Popen, label: str) -> None:
        try:
            if IS_WINDOWS and hasattr(signal, "CTRL_BREAK_EVENT"):
                process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                process.terminate()
        except (OSError, ValueError) as e:
            self._logger.debug(f"Graceful stop request to {label} failed: {e}")

    def register_cancellation(
        self,
        process: subprocess.Popen,
        token: CancellationToken,
        label: str,
        graceful_timeout: float,
    ) -> CancellationRegistration:
        """Shut ``process`` down when ``token`` is cancelled.

        The shutdown runs on its own thread so the cancelling caller is not
        blocked for the graceful timeout.
        """
        registration = CancellationRegistration(token)

        def _on_cancel() -> None:
            with registration._lock:
                if registration._thread is not None:
                    return
                registration._thread = threading.Thread(
                    target=self.shutdown,
                    args=(process, graceful_timeout, label),
                    name=f"shutdown-{label}",
                    daemon=True,
                )
                registration._thread.start()

        registration._registration = token.register(_on_cancel)
        return registration


@dataclass
class ToolResult:
    """Outcome of a finished tool run."""
    returncode: int
    output_tail: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def run_tool(
    command: Sequence[str],
    label: str,
    cancel_token: CancellationToken,
    process_manager: ProcessManager,
    graceful_timeout: float,
    on_output_line: Optional[Callable[[str], None]] = None,
    on_tick: Optional[Callable[[], None]] = None,
    tick_interval: float = 0.5,
    cwd: Optional[str] = None,
) -> ToolResult:
    """Run an external tool under cancellation supervision.

    Output (stderr merged into stdout) is read line by line on a helper
    thread; carriage returns count as line breaks so progress lines
    that redraw in place are seen one by one.

    Raises:
        BackendError: If the tool cannot be started
        OperationCancelledError: If ``cancel_token`` fired
    """
    cancel_token.raise_if_cancelled()
    logger.debug(f"Starting {label}: {' '.join(str(c) for c in command)}")

    try:
        process = subprocess.Popen(
            [str(c) for c in command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=cwd,
            **popen_platform_kwargs(),
        )
    except OSError as e:
        raise BackendError(f"Failed to start {label}: {e}", tool=label, cause=e)

    registration = process_manager.register_cancellation(
        process, cancel_token, label, graceful_timeout
    )
    tail: Deque[str] = deque(maxlen=20)

    def _pump() -> None:
        assert process.stdout is not None
        for line in process.stdout:
            line = line.strip()
            if not line:
                continue
            tail.append(line)
            if on_output_line is not None:
                try:
                    on_output_line(line)
                except Exception as e:
                    logger.error(f"Output handler for {label} failed: {e}", exc_info=True)

    reader = threading.Thread(target=_pump, name=f"reader-{label}", daemon=True)
    reader.start()

    try:
        while True:
            try:
                process.wait(timeout=tick_interval)
                break
            except subprocess.TimeoutExpired:
                if on_tick is not None and not cancel_token.is_cancelled:
                    on_tick()
        reader.join(timeout=1.0)
    finally:
        registration.unregister()
        if process.poll() is None:
            process_manager.shutdown(process, graceful_timeout, label)

    if registration.triggered or cancel_token.is_cancelled:
        registration.wait(timeout=graceful_timeout + 2 * process_manager.kill_wait_timeout)
        raise OperationCancelledError(f"{label} was cancelled")

    result = ToolResult(returncode=process.returncode, output_tail="\n".join(tail))
    logger.debug(f"{label} exited with code {result.returncode}")
    return result
