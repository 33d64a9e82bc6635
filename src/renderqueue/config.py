"""Process-wide configuration for renderqueue.

Configuration is loaded once at startup and handed to every component.
Sources, later overriding earlier:

1. Built-in defaults (``QueueConfig`` field defaults)
2. User config: ~/.renderqueue/config.yaml
3. Project config: .renderqueue.yaml (in current directory)
4. An explicit file passed to ``load_config``
"""

import logging
import tempfile
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exceptions import ConfigurationError
from .utils.logging import LogConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".renderqueue"

DEFAULT_CONFIG_TEMPLATE = """\
# renderqueue configuration
# Location: ~/.renderqueue/config.yaml or .renderqueue.yaml (project-local)

# SQLite job database
database_path: ~/.renderqueue/jobs.db

# Number of jobs rendered at the same time
max_concurrent_renders: 1

# Start processing the queue as soon as the scheduler starts
auto_start_queue: false

# Retry policy: delay before retry N is retry_backoff_base ** N seconds
max_retries: 3
retry_backoff_base: 2.0

# External tools (names are resolved through PATH)
melt_path: melt
ffmpeg_path: ffmpeg
ffprobe_path: ffprobe
rife_path: rife-ncnn-vulkan
realesrgan_path: realesrgan-ncnn-vulkan
realcugan_path: realcugan-ncnn-vulkan

logging:
  log_level: INFO
  log_format: text
"""


@dataclass
class QueueConfig:
    """Settings shared by the scheduler, store, pipeline and backends.

    Attributes:
        database_path: SQLite file holding the job table
        queue_capacity: Bound of the in-memory work queue
        max_concurrent_renders: Size of the concurrency permit pool
        auto_start_queue: Whether dispatch starts unpaused
        max_retries: Default retry budget for new jobs
        retry_backoff_base: Base of the exponential backoff
        retry_delay_scale: Multiplier applied to every backoff delay
        progress_persist_interval: Minimum seconds between progress writes per job
        shutdown_timeout: Seconds to wait for running jobs on stop
        render_graceful_timeout: Graceful exit window for render backends
        encoder_graceful_timeout: Graceful exit window for encoders
        kill_wait_timeout: Wait after force-killing a process tree
        duration_tolerance: Allowed output/source duration difference (seconds)
        frame_tolerance: Allowed extracted frame count deviation
        temp_dir: Parent directory for job workspaces (system temp if None)
    """

    database_path: str = str(DEFAULT_CONFIG_DIR / "jobs.db")
    queue_capacity: int = 100
    max_concurrent_renders: int = 1
    auto_start_queue: bool = False
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_delay_scale: float = 1.0
    progress_persist_interval: float = 1.0
    shutdown_timeout: float = 5.0
    render_graceful_timeout: float = 3.0
    encoder_graceful_timeout: float = 2.0
    kill_wait_timeout: float = 0.5
    duration_tolerance: float = 2.0
    frame_tolerance: int = 1
    temp_dir: Optional[str] = None

    melt_path: str = "melt"
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    rife_path: str = "rife-ncnn-vulkan"
    realesrgan_path: str = "realesrgan-ncnn-vulkan"
    realcugan_path: str = "realcugan-ncnn-vulkan"

    verbose_logging: bool = False
    logging: LogConfig = field(default_factory=LogConfig)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        self.database_path = str(Path(self.database_path).expanduser())
        if self.temp_dir:
            self.temp_dir = str(Path(self.temp_dir).expanduser())

        if self.queue_capacity < 1:
            raise ConfigurationError(
                "queue_capacity must be at least 1",
                config_key="queue_capacity",
                config_value=self.queue_capacity,
            )
        if self.max_concurrent_renders < 1:
            raise ConfigurationError(
                "max_concurrent_renders must be at least 1",
                config_key="max_concurrent_renders",
                config_value=self.max_concurrent_renders,
            )
        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries cannot be negative",
                config_key="max_retries",
                config_value=self.max_retries,
            )
        if self.retry_backoff_base < 1.0:
            raise ConfigurationError(
                "retry_backoff_base must be >= 1.0",
                config_key="retry_backoff_base",
                config_value=self.retry_backoff_base,
            )
        for key in (
            "retry_delay_scale",
            "progress_persist_interval",
            "shutdown_timeout",
            "render_graceful_timeout",
            "encoder_graceful_timeout",
            "kill_wait_timeout",
            "duration_tolerance",
        ):
            value = getattr(self, key)
            if value < 0:
                raise ConfigurationError(
                    f"{key} cannot be negative", config_key=key, config_value=value
                )
        if self.frame_tolerance < 0:
            raise ConfigurationError(
                "frame_tolerance cannot be negative",
                config_key="frame_tolerance",
                config_value=self.frame_tolerance,
            )

        if self.verbose_logging and self.logging.log_level.upper() != "DEBUG":
            self.logging = LogConfig.from_dict(
                {**self.logging.to_dict(), "log_level": "DEBUG"}
            )

    def get_temp_root(self) -> Path:
        """Directory under which job workspaces are created."""
        if self.temp_dir:
            return Path(self.temp_dir)
        return Path(tempfile.gettempdir())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueConfig":
        """Build a config from a (possibly partial) dictionary.

        Unknown keys are ignored with a warning.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            if key == "logging":
                try:
                    value = LogConfig.from_dict(value or {})
                except ValueError as e:
                    raise ConfigurationError(str(e), config_key="logging", cause=e)
            kwargs[key] = value

        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = value.to_dict() if isinstance(value, LogConfig) else value
        return result


@dataclass
class ConfigFileManager:
    """Loads, merges and saves YAML configuration files.

    Attributes:
        user_config_path: Path to user-level config file
        project_config_path: Path to project-local config file
        loaded_config: The merged configuration dictionary
    """

    user_config_path: Path = field(
        default_factory=lambda: DEFAULT_CONFIG_DIR / "config.yaml"
    )
    project_config_path: Path = field(
        default_factory=lambda: Path.cwd() / ".renderqueue.yaml"
    )
    loaded_config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.user_config_path = Path(self.user_config_path)
        self.project_config_path = Path(self.project_config_path)

    def load(self, extra_paths: Optional[List[Path]] = None) -> Dict[str, Any]:
        """Load and merge configuration from all sources.

        Raises:
            ConfigurationError: If a present file cannot be parsed
        """
        config: Dict[str, Any] = QueueConfig().to_dict()

        sources = [self.user_config_path, self.project_config_path]
        sources.extend(Path(p) for p in extra_paths or [])

        for path in sources:
            if not path.exists():
                continue
            overlay = self._load_yaml_file(path)
            if overlay:
                config = self._deep_merge(config, overlay)
                logger.debug(f"Loaded configuration from {path}")

        self.loaded_config = config
        return config

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"YAML parsing error in {path}: {e}", cause=e)
        except OSError as e:
            raise ConfigurationError(f"Failed to read {path}: {e}", cause=e)

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        return data

    def _deep_merge(self, base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, overlay takes precedence."""
        result = base.copy()

        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save_user_config(self) -> None:
        """Save current configuration to the user config file."""
        self.user_config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.user_config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.loaded_config, f, default_flow_style=False, sort_keys=False)

    def init_config(self, target: str = "user") -> Path:
        """Write the commented default template to the user or project file."""
        config_path = self.user_config_path if target == "user" else self.project_config_path
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_TEMPLATE)
        return config_path


def load_config(
    path: Optional[Union[str, Path]] = None,
    manager: Optional[ConfigFileManager] = None,
) -> QueueConfig:
    """Load the process-wide configuration.

    Args:
        path: Optional explicit config file, highest precedence
        manager: File manager to use (custom search paths in tests)
    """
    manager = manager or ConfigFileManager()
    extra = [Path(path).expanduser()] if path else []
    if extra and not extra[0].exists():
        raise ConfigurationError(f"Configuration file not found: {extra[0]}")
    return QueueConfig.from_dict(manager.load(extra))


def save_config(config: QueueConfig, path: Union[str, Path]) -> Path:
    """Write ``config`` as YAML to ``path``."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    return path
