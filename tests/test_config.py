"""Tests for QueueConfig validation and YAML configuration files."""
import pytest
import yaml

from renderqueue.config import (
    ConfigFileManager,
    DEFAULT_CONFIG_TEMPLATE,
    QueueConfig,
    load_config,
    save_config,
)
from renderqueue.exceptions import ConfigurationError
from renderqueue.utils.logging import LogConfig


@pytest.fixture
def manager(tmp_path):
    """File manager whose user and project files live under tmp_path."""
    return ConfigFileManager(
        user_config_path=tmp_path / "home" / "config.yaml",
        project_config_path=tmp_path / "project" / ".renderqueue.yaml",
    )


class TestQueueConfig:
    """Test QueueConfig defaults and validation."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = QueueConfig()

        assert config.max_concurrent_renders == 1
        assert config.max_retries == 3
        assert config.retry_backoff_base == 2.0
        assert config.auto_start_queue is False
        assert config.queue_capacity == 100
        assert config.melt_path == "melt"
        assert config.logging.log_level == "INFO"

    @pytest.mark.parametrize("key,value", [
        ("queue_capacity", 0),
        ("max_concurrent_renders", 0),
        ("max_retries", -1),
        ("retry_backoff_base", 0.5),
        ("shutdown_timeout", -1.0),
        ("frame_tolerance", -1),
    ])
    def test_invalid_values(self, key, value):
        """Test that out-of-range values raise ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            QueueConfig(**{key: value})

        assert exc_info.value.details["config_key"] == key

    def test_expands_user_paths(self):
        """Test that ~ is expanded in paths."""
        config = QueueConfig(database_path="~/jobs.db", temp_dir="~/work")

        assert "~" not in config.database_path
        assert "~" not in config.temp_dir

    def test_temp_root(self, tmp_path):
        """Test the workspace parent directory."""
        assert QueueConfig(temp_dir=str(tmp_path)).get_temp_root() == tmp_path
        assert QueueConfig().get_temp_root().is_dir()

    def test_verbose_forces_debug(self):
        """Test that verbose_logging raises the log level to DEBUG."""
        config = QueueConfig(verbose_logging=True)

        assert config.logging.log_level == "DEBUG"

    def test_from_dict_ignores_unknown_keys(self, caplog):
        """Test that unknown keys are skipped with a warning."""
        config = QueueConfig.from_dict({"max_retries": 5, "gpu_count": 2})

        assert config.max_retries == 5
        assert "gpu_count" in caplog.text

    def test_from_dict_builds_log_config(self):
        """Test the nested logging section."""
        config = QueueConfig.from_dict({"logging": {"log_level": "WARNING", "log_format": "json"}})

        assert isinstance(config.logging, LogConfig)
        assert config.logging.log_format == "json"

    def test_from_dict_invalid_logging(self):
        """Test that a bad logging section is a configuration error."""
        with pytest.raises(ConfigurationError):
            QueueConfig.from_dict({"logging": {"log_level": "LOUD"}})

    def test_to_dict_round_trip(self):
        """Test that to_dict output builds an equal config."""
        config = QueueConfig(max_retries=7, ffmpeg_path="/opt/ffmpeg")

        assert QueueConfig.from_dict(config.to_dict()) == config


class TestConfigFiles:
    """Test loading and merging YAML files."""

    def test_missing_files_give_defaults(self, manager):
        """Test that no files means built-in defaults."""
        config = load_config(manager=manager)

        assert config == QueueConfig()

    def test_project_overrides_user(self, manager):
        """Test file precedence and deep merge of the logging section."""
        manager.user_config_path.parent.mkdir(parents=True)
        manager.user_config_path.write_text(
            "max_retries: 5\nmax_concurrent_renders: 2\nlogging:\n  log_level: DEBUG\n"
        )
        manager.project_config_path.parent.mkdir(parents=True)
        manager.project_config_path.write_text(
            "max_concurrent_renders: 4\nlogging:\n  log_format: json\n"
        )

        config = load_config(manager=manager)

        assert config.max_retries == 5
        assert config.max_concurrent_renders == 4
        assert config.logging.log_level == "DEBUG"
        assert config.logging.log_format == "json"

    def test_explicit_file_wins(self, manager, tmp_path):
        """Test that an explicit path has the highest precedence."""
        manager.project_config_path.parent.mkdir(parents=True)
        manager.project_config_path.write_text("max_retries: 1\n")
        explicit = tmp_path / "custom.yaml"
        explicit.write_text("max_retries: 9\n")

        assert load_config(explicit, manager=manager).max_retries == 9

    def test_explicit_file_must_exist(self, manager, tmp_path):
        """Test that a missing explicit file is an error."""
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "nope.yaml", manager=manager)

    def test_invalid_yaml(self, manager):
        """Test that unparsable YAML is reported."""
        manager.user_config_path.parent.mkdir(parents=True)
        manager.user_config_path.write_text("max_retries: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(manager=manager)

    def test_non_mapping_yaml(self, manager):
        """Test that a YAML list is rejected."""
        manager.user_config_path.parent.mkdir(parents=True)
        manager.user_config_path.write_text("- one\n- two\n")

        with pytest.raises(ConfigurationError):
            load_config(manager=manager)

    def test_init_config_writes_template(self, manager):
        """Test that the template is written and parses to a valid config."""
        path = manager.init_config("project")

        assert path == manager.project_config_path
        assert path.read_text() == DEFAULT_CONFIG_TEMPLATE
        data = yaml.safe_load(path.read_text())
        assert QueueConfig.from_dict(data).max_retries == 3

    def test_save_config(self, tmp_path, manager):
        """Test that a saved config loads back unchanged."""
        config = QueueConfig(max_retries=6, database_path=str(tmp_path / "jobs.db"))
        path = save_config(config, tmp_path / "saved.yaml")

        assert load_config(path, manager=manager) == config
