"""Application startup script and CLI interface."""

import sys
import argparse

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import ConfigurationError
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Flow Engine - executes published flows and records their runs"
    )

    # Server configuration
    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # Environment configuration
    parser.add_argument("--testing", action="store_true", help="Use the in-memory testing configuration")
    parser.add_argument("--config", help="Path to a .env configuration file")

    parser.add_argument("--database-url", help="Database connection URL")

    # Logging configuration
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    # Execution engine configuration
    parser.add_argument(
        "--max-concurrent-executions",
        type=int,
        help="Maximum number of concurrently running executions"
    )
    parser.add_argument(
        "--max-revisits",
        type=int,
        help="Maximum number of visits of one node within a run"
    )

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the flow engine server")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("migrate", help="Create indexes and tune the database")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")
    cleanup_parser = db_subparsers.add_parser("cleanup", help="Delete old terminal executions")
    cleanup_parser.add_argument(
        "--max-age-hours",
        type=int,
        default=None,
        help="Age threshold (default: configured retention)"
    )

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration and apply command line overrides."""
    if args.testing:
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {
        "host": args.host,
        "port": args.port,
        "reload": args.reload or None,
        "database_url": args.database_url,
        "log_level": LogLevel(args.log_level) if args.log_level else None,
        "log_file": args.log_file,
        "debug": args.debug or None,
        "max_concurrent_executions": args.max_concurrent_executions,
        "max_revisits": args.max_revisits,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}

    # Re-validate so overrides go through the field validators
    return AppConfig.model_validate({**config.model_dump(), **overrides})


def run_server(config: AppConfig):
    """Run the flow engine server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")

    app = create_app(config)
    uvicorn.run(app, **config.get_uvicorn_config())


def run_database_command(command: str, config: AppConfig, max_age_hours=None):
    """Run database management commands."""
    from .core.recorder import SqlExecutionRecorder
    from .storage.database import create_tables, drop_tables, init_database
    from .storage.migrations import run_migrations

    logger = get_logger(__name__)
    init_database(config.database_url, echo=config.database_echo)

    if command == "init":
        create_tables()
        logger.info("Database tables created successfully")

    elif command == "migrate":
        run_migrations()
        logger.info("Database migrations completed successfully")

    elif command == "reset":
        drop_tables()
        create_tables()
        run_migrations()
        logger.info("Database reset completed successfully")

    elif command == "cleanup":
        hours = config.execution_retention_hours if max_age_hours is None else max_age_hours
        deleted = SqlExecutionRecorder().cleanup_completed(max_age_hours=hours)
        print(f"Deleted {deleted} execution records older than {hours} hours")


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Max Concurrent Executions: {config.max_concurrent_executions}")
    print(f"  Max Revisits: {config.max_revisits}")
    print(f"  HTTP Timeout (ms): {config.http_timeout_ms}")
    print(f"  HTTP Retry Count: {config.http_retry_count}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
    except ConfigurationError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e.message}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)

        if args.command == "run" or args.command is None:
            run_server(config)

        elif args.command == "db":
            if not args.db_command:
                print("Database command required. Use --help for options.")
                sys.exit(1)
            setup_logging(level=config.log_level.value)
            run_database_command(args.db_command, config, getattr(args, "max_age_hours", None))

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
        else:
            parser.print_help()

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
