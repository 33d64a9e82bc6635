"""Scoped temporary storage for a job's working files."""

import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Union


class TemporaryWorkspace:
    """Private working directory that is always cleaned up.

    Use as a context manager; cleanup also runs when the object is
    garbage collected. Cleanup never raises: each failed deletion is
    logged and the remaining entries are still removed.

    Example:
        >>> with TemporaryWorkspace(prefix="renderqueue_job_") as ws:
        ...     frames = ws.create_subdirectory("frames")
        ...     audio = ws.create_file_path("audio.aac")
    """

    def __init__(
        self,
        parent_dir: Optional[Union[str, Path]] = None,
        prefix: str = "renderqueue_",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        if parent_dir is not None:
            Path(parent_dir).mkdir(parents=True, exist_ok=True)
        self.root = Path(tempfile.mkdtemp(prefix=prefix, dir=parent_dir))
        self._tracked: List[Path] = []
        self._lock = threading.Lock()
        self._cleaned = False
        self._logger.debug(f"Created workspace {self.root}")

    @property
    def is_cleaned(self) -> bool:
        return self._cleaned

    def create_subdirectory(self, name: str) -> Path:
        path = self._resolve(name)
        path.mkdir(parents=True, exist_ok=True)
        self._track(path)
        return path

    def create_file_path(self, name: str) -> Path:
        """Reserve a path inside the workspace; the file itself is not created."""
        path = self._resolve(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._track(path)
        return path

    def _resolve(self, name: str) -> Path:
        if self._cleaned:
            raise RuntimeError(f"Workspace {self.root} has already been cleaned up")
        path = (self.root / name).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Path escapes workspace: {name}")
        return path

    def _track(self, path: Path) -> None:
        with self._lock:
            if path not in self._tracked:
                self._tracked.append(path)

    def cleanup(self) -> None:
        """Delete every tracked entry, then the root. Never raises."""
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
            tracked = list(reversed(self._tracked))
            self._tracked.clear()

        failures = 0
        for path in tracked + [self.root]:
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                elif path.exists():
                    path.unlink()
            except OSError as e:
                failures += 1
                self._logger.warning(f"Failed to delete temporary path {path}: {e}")

        if failures:
            self._logger.warning(
                f"Workspace {self.root} cleaned up with {failures} leftover path(s)"
            )
        else:
            self._logger.debug(f"Cleaned up workspace {self.root}")

    def __enter__(self) -> "TemporaryWorkspace":
        return self

    def __exit__(self, *args: object) -> None:
        self.cleanup()

    def __del__(self) -> None:
        # Interpreter shutdown may have torn down module globals already.
        try:
            self.cleanup()
        except Exception:
            pass


def remove_partial_output(path: Union[str, Path], logger: Optional[logging.Logger] = None) -> None:
    """Delete a half-written output file or directory if present."""
    log = logger if logger is not None else logging.getLogger(__name__)
    target = Path(path)
    try:
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()
        else:
            return
        log.debug(f"Removed partial output {target}")
    except OSError as e:
        log.warning(f"Could not remove partial output {target}: {e}")


def file_size(path: Union[str, Path]) -> Optional[int]:
    try:
        return Path(path).stat().st_size
    except OSError:
        return None
