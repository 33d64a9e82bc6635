"""Structured logging utilities for renderqueue.

Logging is configured once at startup from the process-wide
configuration and each component receives its logger at construction:

    >>> from renderqueue.utils.logging import LogConfig, configure_logging, get_logger
    >>> configure_logging(LogConfig(log_level="DEBUG", log_format="json"))
    >>> logger = get_logger("scheduler")
    >>> logger.info("Job started", job_id="3f2a...", attempt=1)
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER_NAME = "renderqueue"
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


@dataclass
class LogConfig:
    """Configuration for renderqueue logging.

    Attributes:
        log_level: Default log level for all components
        log_format: Output format ('text' for humans, 'json' for machines)
        log_file: Optional file path for log output
        component_levels: Component-specific log levels
        max_file_size_mb: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
        include_timestamp: Whether to include timestamps in text output
    """

    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None
    component_levels: Dict[str, str] = field(default_factory=dict)
    max_file_size_mb: int = 10
    backup_count: int = 5
    include_timestamp: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.log_level.upper() not in VALID_LEVELS:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. "
                f"Must be one of: {', '.join(VALID_LEVELS)}"
            )
        if self.log_format not in ("text", "json"):
            raise ValueError(
                f"Invalid log_format '{self.log_format}'. "
                "Must be 'text' or 'json'"
            )
        for component, level in self.component_levels.items():
            if level.upper() not in VALID_LEVELS:
                raise ValueError(
                    f"Invalid log level '{level}' for component '{component}'"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        return cls(
            log_level=data.get("log_level", "INFO"),
            log_format=data.get("log_format", "text"),
            log_file=data.get("log_file"),
            component_levels=dict(data.get("component_levels") or {}),
            max_file_size_mb=data.get("max_file_size_mb", 10),
            backup_count=data.get("backup_count", 5),
            include_timestamp=data.get("include_timestamp", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": self.log_file,
            "component_levels": dict(self.component_levels),
            "max_file_size_mb": self.max_file_size_mb,
            "backup_count": self.backup_count,
            "include_timestamp": self.include_timestamp,
        }


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    {"timestamp": "...Z", "level": "INFO", "component": "scheduler",
     "message": "Job completed", "job_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name.split(".")[-1],
            "message": record.getMessage(),
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable formatter.

    2026-01-05 10:30:45 | INFO     | scheduler    | Job completed [job_id=...]
    """

    def __init__(self, include_timestamp: bool = True) -> None:
        if include_timestamp:
            fmt = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"
        else:
            fmt = "%(levelname)-8s | %(name)-12s | %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            extra_str = ", ".join(f"{k}={v}" for k, v in extra_fields.items())
            message = f"{message} [{extra_str}]"
        return message


class RenderQueueLogger(logging.LoggerAdapter):
    """Logger adapter accepting structured keyword fields.

    Keyword arguments other than the standard logging ones are collected
    into ``extra_fields`` and rendered by the formatters.
    """

    def __init__(
        self,
        logger: logging.Logger,
        component: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(logger, extra or {})
        self.component = component

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        # Per-call fields win over bound ones.
        fields = dict(self.extra or {})
        fields.update(
            (key, kwargs.pop(key)) for key in list(kwargs) if key not in _LOGGING_KWARGS
        )
        kwargs.setdefault("extra", {})["extra_fields"] = fields
        return msg, kwargs

    def bind(self, **fields: Any) -> "RenderQueueLogger":
        """Return a child adapter that adds ``fields`` to every record."""
        merged = dict(self.extra or {})
        merged.update(fields)
        return RenderQueueLogger(self.logger, self.component, merged)


_log_config: Optional[LogConfig] = None
_configured_loggers: Dict[str, RenderQueueLogger] = {}


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Install handlers on the renderqueue root logger.

    Should be called once at application startup. Calling it again
    replaces the previous handlers.
    """
    global _log_config

    if config is None:
        config = LogConfig()
    _log_config = config

    level = getattr(logging, config.log_level.upper())
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter(include_timestamp=config.include_timestamp)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

    for component, component_level in config.component_levels.items():
        component_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        component_logger.setLevel(getattr(logging, component_level.upper()))

    root_logger.propagate = False


def get_logger(component: str) -> RenderQueueLogger:
    """Get the cached logger for a component (e.g. 'scheduler', 'job_store').

    Unlike configure_logging this never installs handlers, so library use
    without configuration stays silent except for Python's last-resort
    handler.
    """
    if component in _configured_loggers:
        return _configured_loggers[component]

    base_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
    if _log_config and component in _log_config.component_levels:
        level = _log_config.component_levels[component]
        base_logger.setLevel(getattr(logging, level.upper()))

    logger = RenderQueueLogger(base_logger, component)
    _configured_loggers[component] = logger
    return logger


def adapt_logger(
    logger: Optional[Union[logging.Logger, RenderQueueLogger]], component: str
) -> RenderQueueLogger:
    """Wrap a caller-supplied logger so it accepts structured fields.

    ``None`` gives the cached component logger.
    """
    if logger is None:
        return get_logger(component)
    if isinstance(logger, RenderQueueLogger):
        return logger
    return RenderQueueLogger(logger, component)


def configure_from_cli(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    base: Optional[LogConfig] = None,
) -> LogConfig:
    """Configure logging from CLI arguments layered over ``base``."""
    base = base or LogConfig()
    config = LogConfig(
        log_level=(log_level or base.log_level).upper(),
        log_format=log_format if log_format in ("text", "json") else base.log_format,
        log_file=log_file or base.log_file,
        component_levels=dict(base.component_levels),
        max_file_size_mb=base.max_file_size_mb,
        backup_count=base.backup_count,
        include_timestamp=base.include_timestamp,
    )
    configure_logging(config)
    return config
