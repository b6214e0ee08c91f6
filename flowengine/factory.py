"""Application factory for creating FastAPI instances."""

from typing import Optional
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import AppConfig, get_config, validate_config
from .actions import register_default_actions
from .core.actions import ActionRegistry
from .core.logging import setup_logging, get_logger
from .core.recorder import SqlExecutionRecorder
from .core.supervisor import RunSupervisor
from .core.websocket_manager import WebSocketManager
from .models.core import utc_now
from .storage.database import create_tables, get_database_engine, init_database
from .storage.migrations import run_migrations
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.action_registry: Optional[ActionRegistry] = None
        self.recorder: Optional[SqlExecutionRecorder] = None
        self.websocket_manager: Optional[WebSocketManager] = None
        self.supervisor: Optional[RunSupervisor] = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> None:
    """Initialize database and run migrations."""
    try:
        init_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")

        try:
            run_migrations()
        except Exception as e:
            logger.warning(f"Database migrations failed: {str(e)}")
            # Indexes are an optimization; the tables are usable without them

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, logger) -> tuple:
    """Initialize core application components."""
    try:
        action_registry = ActionRegistry()
        register_default_actions(action_registry, config)

        recorder = SqlExecutionRecorder()
        websocket_manager = WebSocketManager()
        supervisor = RunSupervisor(
            action_registry=action_registry,
            recorder=recorder,
            publisher=websocket_manager,
            max_concurrent_executions=config.max_concurrent_executions,
            max_revisits=config.max_revisits,
        )

        logger.info("Core components initialized")

        return action_registry, recorder, websocket_manager, supervisor

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def cleanup_expired_executions(recorder: SqlExecutionRecorder, config: AppConfig, logger) -> None:
    try:
        deleted = recorder.cleanup_completed(max_age_hours=config.execution_retention_hours)
        if deleted:
            logger.info(f"Removed {deleted} expired execution records")
    except Exception as e:
        logger.warning(f"Execution record cleanup failed: {str(e)}")


def graceful_shutdown(supervisor: RunSupervisor, websocket_manager: WebSocketManager, logger) -> None:
    """Handle graceful shutdown of application components."""
    logger.info("Shutting down flow engine")

    try:
        supervisor.shutdown(wait=True)
    except Exception as e:
        logger.error(f"Error during run supervisor shutdown: {str(e)}")

    try:
        websocket_manager.stop_broadcast_processor()
    except Exception as e:
        logger.error(f"Error stopping WebSocket broadcast processor: {str(e)}")


def create_lifespan_handler(config: AppConfig):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            initialize_database(config, logger)
            action_registry, recorder, websocket_manager, supervisor = initialize_core_components(config, logger)
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        app_state.config = config
        app_state.action_registry = action_registry
        app_state.recorder = recorder
        app_state.websocket_manager = websocket_manager
        app_state.supervisor = supervisor

        init_dependencies(
            supervisor=supervisor,
            recorder=recorder,
            action_registry=action_registry,
            websocket_manager=websocket_manager
        )

        cleanup_expired_executions(recorder, config, logger)
        websocket_manager.start_broadcast_processor()
        logger.info("Application startup completed successfully")

        try:
            yield
        finally:
            graceful_shutdown(supervisor, websocket_manager, logger)

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure FastAPI application instance."""

    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Flow execution engine: runs published flows and records their execution trail",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        supervisor = app_state.supervisor
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "active_executions": len(supervisor.active_executions()) if supervisor else 0,
        }

    @app.get("/health/ready")
    async def readiness_check():
        """Readiness check endpoint: database reachable and engine started."""
        try:
            with get_database_engine().connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as e:
            logger = get_logger(__name__)
            logger.error(f"Readiness check failed: {str(e)}")
            return JSONResponse(
                status_code=503,
                content={"ready": False, "error": str(e), "timestamp": utc_now().isoformat()}
            )

        ready = app_state.supervisor is not None
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"ready": ready, "timestamp": utc_now().isoformat()}
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
