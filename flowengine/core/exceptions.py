"""Custom exceptions for the flow engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    STATE = "state"


class WorkflowEngineError(Exception):
    """Base exception for all flow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or getattr(self, "default_code", None) or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class FlowValidationError(WorkflowEngineError):
    """Raised when a flow violates its structural invariants."""

    default_code = "ValidationError"

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        flow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if flow_id:
            self.add_context(flow_id=flow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class FlowNotPublishedError(WorkflowEngineError):
    """Raised when a flow whose publish state forbids execution is started."""

    default_code = "FlowNotPublished"

    def __init__(self, message: str, flow_id: Optional[str] = None, status: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if flow_id:
            self.add_context(flow_id=flow_id)
        if status:
            self.add_details(flow_status=status)


class ExecutionNotFoundError(WorkflowEngineError):
    """Raised when an execution id is unknown."""

    default_code = "NotFound"

    def __init__(self, message: str, execution_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)


class InvalidStateTransitionError(WorkflowEngineError):
    """Raised when an operation targets an execution in the wrong status."""

    default_code = "InvalidStateTransition"

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        current_status: Optional[str] = None,
        requested_status: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.STATE,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if current_status:
            self.add_details(current_status=current_status)
        if requested_status:
            self.add_details(requested_status=requested_status)


class TraversalError(WorkflowEngineError):
    """Base class for structural failures that terminate a run."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.node_id = node_id
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class NoStartNodeError(TraversalError):
    """Raised when a flow has no start node at run time."""

    default_code = "NoStartNode"


class DeadEndError(TraversalError):
    """Raised when a non-end node has no usable outgoing connection."""

    default_code = "DeadEnd"


class CycleDetectedError(TraversalError):
    """Raised when a node is visited more often than allowed."""

    default_code = "CycleDetected"


class NodeExecutionError(TraversalError):
    """Raised when a node executor reports failure."""

    default_code = "NodeExecutionError"

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        execution_time: Optional[float] = None,
        **kwargs
    ):
        super().__init__(message, node_id=node_id, execution_id=execution_id, **kwargs)
        if execution_time is not None:
            self.add_details(execution_time_ms=execution_time)


class ActionRegistryError(WorkflowEngineError):
    """Raised when action registry operations fail."""

    def __init__(
        self,
        message: str,
        action_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if action_name:
            self.add_context(action_name=action_name)
        if operation:
            self.add_context(operation=operation)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("recoverable", True)
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class TransientError(WorkflowEngineError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            retry_after=5,
            **kwargs
        )


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
