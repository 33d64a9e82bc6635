"""Utilities: logging, process supervision, temporary storage, media probing."""

from .logging import LogConfig, adapt_logger, configure_logging, get_logger
from .process import ProcessManager, ToolResult, run_tool
from .tempfiles import TemporaryWorkspace

__all__ = [
    "LogConfig",
    "adapt_logger",
    "configure_logging",
    "get_logger",
    "ProcessManager",
    "ToolResult",
    "run_tool",
    "TemporaryWorkspace",
]
