"""Exception hierarchy for renderqueue.

Exception Hierarchy:
    RenderQueueError (base)
    +-- ConfigurationError
    +-- JobStoreError
    +-- BackendError
    +-- IntegrityError
    +-- OperationCancelledError

Anything raised while a job executes is treated as a retryable failure
by the scheduler, except OperationCancelledError which is never counted
against a job's retry budget.
"""

from typing import Any, Dict, Optional


class RenderQueueError(Exception):
    """Base exception for all renderqueue errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        cause: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(RenderQueueError):
    """Invalid configuration value or unreadable configuration file."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = config_value
        super().__init__(message, details=details, cause=cause)


class JobStoreError(RenderQueueError):
    """The job database could not be read or written."""


class BackendError(RenderQueueError):
    """An external render tool failed.

    Raised when a backend process exits non-zero, cannot be started, or
    reports failure for a pipeline step.
    """

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr_tail: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if tool:
            details["tool"] = tool
        if exit_code is not None:
            details["exit_code"] = exit_code
        if stderr_tail:
            details["stderr"] = stderr_tail
        super().__init__(message, details=details, cause=cause)
        self.tool = tool
        self.exit_code = exit_code


class IntegrityError(RenderQueueError):
    """Output of a pipeline step does not match what was expected.

    Examples:
        - Frame extraction produced fewer frames than duration x fps
        - Reassembled video is shorter than the source
    """

    def __init__(
        self,
        message: str,
        check: Optional[str] = None,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if check:
            details["check"] = check
        if expected is not None:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual
        super().__init__(message, details=details)
        self.check = check
        self.expected = expected
        self.actual = actual


class OperationCancelledError(RenderQueueError):
    """The operation was cancelled through its cancellation token."""

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)
