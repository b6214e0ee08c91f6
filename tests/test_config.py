"""Tests for configuration loading and validation."""

import pytest
from pydantic import ValidationError

from flowengine.config import (
    AppConfig,
    DatabaseType,
    LogLevel,
    get_config,
    get_testing_config,
    load_config,
    reset_config,
    validate_config,
)
from flowengine.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Test cases for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.max_concurrent_executions == 10
        assert config.max_revisits == 1
        assert config.database_type == DatabaseType.SQLITE
        assert config.get_uvicorn_config()["log_level"] == "info"

    @pytest.mark.parametrize("field,value", [
        ("database_url", "oracle://db"),
        ("port", 0),
        ("max_concurrent_executions", 0),
        ("max_revisits", 0),
        ("http_timeout_ms", 0),
        ("http_retry_count", -1),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})

    def test_testing_config(self):
        config = get_testing_config()

        assert ":memory:" in config.database_url
        assert config.log_level == LogLevel.WARNING


class TestEnvironmentLoading:
    """Test cases for environment-driven configuration."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FLOWENGINE_PORT", "9000")
        monkeypatch.setenv("FLOWENGINE_MAX_REVISITS", "3")
        monkeypatch.setenv("FLOWENGINE_CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("FLOWENGINE_LOG_LEVEL", "debug")

        config = get_config()

        assert config.port == 9000
        assert config.max_revisits == 3
        assert config.cors_origins == ["http://a.test", "http://b.test"]
        assert config.log_level == LogLevel.DEBUG
        assert get_config() is config

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("FLOWENGINE_MAX_CONCURRENT_EXECUTIONS", "many")

        with pytest.raises(ConfigurationError):
            get_config()

    def test_load_config_reads_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FLOWENGINE_APP_NAME", raising=False)
        env_file = tmp_path / "engine.env"
        env_file.write_text("FLOWENGINE_APP_NAME=From File\n", encoding="utf-8")

        try:
            config = load_config(str(env_file))
        finally:
            monkeypatch.delenv("FLOWENGINE_APP_NAME", raising=False)

        assert config.app_name == "From File"


class TestValidateConfig:
    """Test cases for validate_config."""

    def test_creates_missing_directories(self, tmp_path):
        config = AppConfig(
            database_url=f"sqlite:///{tmp_path / 'data' / 'engine.db'}",
            log_file=str(tmp_path / "logs" / "engine.log"),
        )

        validate_config(config)

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "logs").is_dir()

    def test_uncreatable_directory_fails(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        config = AppConfig(log_file=str(blocker / "logs" / "engine.log"))

        with pytest.raises(ConfigurationError):
            validate_config(config)
