"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine configured for ``database_url``."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every session sees an empty database
            return create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        return create_engine(database_url, connect_args=connect_args, echo=echo)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create the global engine and session factory, replacing any previous one."""
    global _engine, _session_factory

    if database_url is None:
        database_url = os.getenv("FLOWENGINE_DATABASE_URL", "sqlite:///./flowengine.db")

    reset_database_engine()
    _engine = create_database_engine(database_url, echo=echo)
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_database_engine() -> Engine:
    """Get the global engine, initializing it from the environment if needed."""
    if _engine is None:
        init_database()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the global session factory."""
    if _session_factory is None:
        init_database()
    return _session_factory


def reset_database_engine():
    """Dispose of the global database engine (mainly for testing)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    # Registers the ORM models on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
