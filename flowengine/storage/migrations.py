"""Index and pragma migrations for the execution tables."""

from typing import Optional
from sqlalchemy import Engine, text

from .database import get_database_engine
from ..core.logging import get_logger

logger = get_logger(__name__)


_INDEXES = [
    # Cleanup of old terminal runs
    "CREATE INDEX IF NOT EXISTS idx_executions_status_completed ON executions(status, completed_at)",
    # Listing per flow, newest first
    "CREATE INDEX IF NOT EXISTS idx_executions_flow_started ON executions(flow_id, started_at)",
    "CREATE INDEX IF NOT EXISTS idx_executions_started_at ON executions(started_at DESC)",
    # Log read-back in (timestamp, sequence) order
    "CREATE INDEX IF NOT EXISTS idx_execution_logs_execution_order "
    "ON execution_logs(execution_id, timestamp, sequence)",
    "CREATE INDEX IF NOT EXISTS idx_execution_logs_level ON execution_logs(execution_id, level)",
]


def create_indexes(engine: Optional[Engine] = None):
    """Create indexes used by the recorder's read queries."""
    engine = engine or get_database_engine()
    try:
        with engine.connect() as connection:
            for statement in _INDEXES:
                connection.execute(text(statement))
            connection.commit()
            logger.info("Created execution table indexes")
    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_database(engine: Optional[Engine] = None):
    """Apply SQLite settings suited to many concurrent writers."""
    engine = engine or get_database_engine()
    if engine.dialect.name != "sqlite" or engine.url.database in (None, "", ":memory:"):
        return

    try:
        with engine.connect() as connection:
            connection.execute(text("PRAGMA journal_mode=WAL"))
            connection.execute(text("PRAGMA cache_size=10000"))
            connection.execute(text("PRAGMA optimize"))
            connection.commit()
            logger.info("Applied SQLite optimizations")
    except Exception as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations(engine: Optional[Engine] = None):
    """Run all migrations."""
    try:
        logger.info("Starting database migrations")
        create_indexes(engine)
        optimize_database(engine)
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Database migrations failed: {str(e)}")
        raise


if __name__ == "__main__":
    run_migrations()
