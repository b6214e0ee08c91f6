"""Database models and storage layer."""

from .database import (
    Base,
    init_database,
    get_database_engine,
    get_session_factory,
    reset_database_engine,
    create_tables,
    drop_tables,
)
from .models import ExecutionModel, ExecutionLogModel

__all__ = [
    "Base",
    "init_database",
    "get_database_engine",
    "get_session_factory",
    "reset_database_engine",
    "create_tables",
    "drop_tables",
    "ExecutionModel",
    "ExecutionLogModel",
]
