"""Core flow engine components."""

from .exceptions import (
    WorkflowEngineError,
    FlowValidationError,
    FlowNotPublishedError,
    ExecutionNotFoundError,
    InvalidStateTransitionError,
    TraversalError,
    NoStartNodeError,
    DeadEndError,
    CycleDetectedError,
    NodeExecutionError,
    ActionRegistryError,
    StorageError,
    TransientError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .actions import ActionRegistry
from .context import ExecutionContext
from .graph import validate_flow
from .recorder import ExecutionRecorder, InMemoryExecutionRecorder, SqlExecutionRecorder
from .events import NullPublisher, Publisher
from .supervisor import RunSupervisor

__all__ = [
    "WorkflowEngineError",
    "FlowValidationError",
    "FlowNotPublishedError",
    "ExecutionNotFoundError",
    "InvalidStateTransitionError",
    "TraversalError",
    "NoStartNodeError",
    "DeadEndError",
    "CycleDetectedError",
    "NodeExecutionError",
    "ActionRegistryError",
    "StorageError",
    "TransientError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "ActionRegistry",
    "ExecutionContext",
    "validate_flow",
    "ExecutionRecorder",
    "InMemoryExecutionRecorder",
    "SqlExecutionRecorder",
    "NullPublisher",
    "Publisher",
    "RunSupervisor",
]
