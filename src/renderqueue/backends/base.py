"""Base class for render backends.

A backend wraps one external tool. ``execute`` returns True on success
and False on failure; cancellation raises ``OperationCancelledError``.
In both non-success cases nothing is left at ``output_path``: single
file outputs are written to a staging name and only renamed into place
after the tool exits cleanly.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from ..core.cancellation import CancellationToken
from ..exceptions import BackendError, OperationCancelledError
from ..utils.process import (
    ENCODER_GRACEFUL_TIMEOUT,
    ProcessManager,
    run_tool,
)
from ..utils.tempfiles import remove_partial_output

# (percent 0-100 of this backend's work, current frame)
ProgressCallback = Callable[[float, int], None]


def staging_path(output_path: Path) -> Path:
    """Sibling path used while a file output is being written.

    The extension is kept so tools that pick a container from it still work.
    """
    return output_path.with_name(f"{output_path.stem}.partial{output_path.suffix}")


class RenderBackend(ABC):
    """One external tool invocation with progress and cancellation."""

    name = "backend"

    def __init__(
        self,
        executable: str,
        process_manager: Optional[ProcessManager] = None,
        graceful_timeout: float = ENCODER_GRACEFUL_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.executable = executable
        self.process_manager = process_manager or ProcessManager()
        self.graceful_timeout = graceful_timeout
        self._logger = logger if logger is not None else logging.getLogger(
            f"{__name__.rsplit('.', 1)[0]}.{self.name}"
        )
        self.last_error: Optional[str] = None

    @abstractmethod
    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        """Run the tool from ``input_path`` to ``output_path``."""

    def _run(
        self,
        command: Sequence[str],
        cancel_token: CancellationToken,
        output_path: Path,
        on_output_line: Optional[Callable[[str], None]] = None,
        on_tick: Optional[Callable[[], None]] = None,
        final_path: Optional[Path] = None,
    ) -> bool:
        """Run ``command`` and handle the output on every exit path.

        Args:
            output_path: What the tool writes; removed on failure
            final_path: If given, ``output_path`` is renamed to it on success
        """
        self.last_error = None
        try:
            result = run_tool(
                command,
                label=self.name,
                cancel_token=cancel_token,
                process_manager=self.process_manager,
                graceful_timeout=self.graceful_timeout,
                on_output_line=on_output_line,
                on_tick=on_tick,
            )
        except OperationCancelledError:
            self._logger.info(f"{self.name} cancelled")
            remove_partial_output(output_path, self._logger)
            raise
        except BackendError as e:
            self.last_error = str(e)
            self._logger.error(str(e))
            remove_partial_output(output_path, self._logger)
            return False

        if not result.succeeded:
            self.last_error = (
                f"{self.name} exited with code {result.returncode}: "
                f"{result.output_tail[-500:]}"
            )
            self._logger.error(self.last_error)
            remove_partial_output(output_path, self._logger)
            return False

        if final_path is not None:
            if not output_path.exists():
                self.last_error = f"{self.name} reported success but wrote no output"
                self._logger.error(self.last_error)
                return False
            os.replace(output_path, final_path)
        return True
