"""Configuration management for the flow execution engine."""

import os
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .core.exceptions import ConfigurationError
from .core.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "FLOWENGINE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Flow Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./flowengine.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution engine settings
    max_concurrent_executions: int = Field(
        default=10,
        description="Worker pool size; further executions wait in pending"
    )
    max_revisits: int = Field(
        default=1,
        description="Maximum number of visits of one node within a run"
    )
    http_timeout_ms: int = Field(
        default=30000,
        description="Default timeout of http_request actions in milliseconds"
    )
    http_retry_count: int = Field(
        default=0,
        description="Default retry count of http_request actions"
    )
    execution_retention_hours: int = Field(
        default=24 * 30,
        description="Age after which terminal execution records may be cleaned up"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log records")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].lower().split('+')[0]

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_executions', 'max_revisits')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('http_timeout_ms')
    @classmethod
    def validate_http_timeout(cls, v):
        if v <= 0:
            raise ValueError("HTTP timeout must be positive")
        return v

    @field_validator('http_retry_count')
    @classmethod
    def validate_http_retry_count(cls, v):
        if v < 0:
            raise ValueError("HTTP retry count cannot be negative")
        return v

    @property
    def database_type(self) -> DatabaseType:
        """Get the database type from the URL."""
        scheme = self.database_url.split('://')[0].lower()
        if scheme == 'sqlite':
            return DatabaseType.SQLITE
        elif scheme.startswith('postgresql'):
            return DatabaseType.POSTGRESQL
        elif scheme.startswith('mysql'):
            return DatabaseType.MYSQL
        else:
            raise ValueError(f"Unknown database type: {scheme}")

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_type == DatabaseType.SQLITE

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from FLOWENGINE_* environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return [item.strip() for item in value.split(',') if item.strip()] or default
            return type_func(value)

        try:
            return cls(
                app_name=get_env("APP_NAME", "Flow Engine"),
                app_version=get_env("APP_VERSION", "1.0.0"),
                debug=get_env("DEBUG", False, bool),
                host=get_env("HOST", "0.0.0.0"),
                port=get_env("PORT", 8000, int),
                reload=get_env("RELOAD", False, bool),
                cors_origins=get_env("CORS_ORIGINS", ["*"], list),
                database_url=get_env("DATABASE_URL", "sqlite:///./flowengine.db"),
                database_echo=get_env("DATABASE_ECHO", False, bool),
                max_concurrent_executions=get_env("MAX_CONCURRENT_EXECUTIONS", 10, int),
                max_revisits=get_env("MAX_REVISITS", 1, int),
                http_timeout_ms=get_env("HTTP_TIMEOUT_MS", 30000, int),
                http_retry_count=get_env("HTTP_RETRY_COUNT", 0, int),
                execution_retention_hours=get_env("EXECUTION_RETENTION_HOURS", 24 * 30, int),
                log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
                log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
                log_file=get_env("LOG_FILE", None),
                log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
                log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
                structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment configuration: {str(e)}")


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and environment variables."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """
    Check that the configured paths are usable.

    Raises:
        ConfigurationError: If a database or log directory cannot be created
    """
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.max_concurrent_executions > 100:
        logger.warning("High concurrent execution limit may impact performance")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        http_timeout_ms=5000,
    )
