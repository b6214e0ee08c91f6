"""Per-execution mutable state."""

import copy
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import (
    ErrorDetail,
    ExecutionSnapshot,
    ExecutionStatusEnum,
    Flow,
    utc_now,
)
from .exceptions import InvalidStateTransitionError
from .logging import get_logger

logger = get_logger(__name__)


_ALLOWED_TRANSITIONS = {
    ExecutionStatusEnum.PENDING: {
        ExecutionStatusEnum.RUNNING,
        ExecutionStatusEnum.FAILED,
        ExecutionStatusEnum.CANCELLED,
    },
    ExecutionStatusEnum.RUNNING: {
        ExecutionStatusEnum.COMPLETED,
        ExecutionStatusEnum.FAILED,
        ExecutionStatusEnum.CANCELLED,
    },
}

TransitionListener = Callable[["ExecutionContext", ExecutionStatusEnum, ExecutionStatusEnum], None]


class ExecutionContext:
    """
    Single source of truth for one run.

    Variables, the execution path and the output are written only by the
    worker thread running the traversal loop. Other threads may request
    cancellation and take snapshots; both go through the internal lock.
    """

    def __init__(
        self,
        execution_id: str,
        flow: Flow,
        input_data: Any = None,
        variables: Optional[Dict[str, Any]] = None,
    ):
        self.execution_id = execution_id
        self.flow_id = flow.id
        self.flow_name = flow.name
        self.input_data = input_data
        self.output_data: Any = None
        self.variables: Dict[str, Any] = dict(variables or {})
        self.current_node_id: Optional[str] = None
        self.execution_path: List[str] = []
        self.status = ExecutionStatusEnum.PENDING
        self.started_at: datetime = utc_now()
        self.completed_at: Optional[datetime] = None
        self.error_detail: Optional[ErrorDetail] = None

        self._lock = threading.RLock()
        self._cancel_event = threading.Event()
        self._listeners: List[TransitionListener] = []

    @classmethod
    def new(cls, flow: Flow, execution_id: str, input_data: Any = None) -> "ExecutionContext":
        """Create a pending context with variables seeded from the flow's declarations."""
        variables = {
            variable.name: copy.deepcopy(variable.default_value)
            for variable in flow.variables
        }
        return cls(execution_id, flow, input_data=input_data, variables=variables)

    def add_listener(self, listener: TransitionListener):
        """Register a callback invoked after every status transition."""
        self._listeners.append(listener)

    # Variables

    def set_variable(self, name: str, value: Any):
        self.variables[name] = value

    def get_variable(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    # Path

    def record_visit(self, node_id: str):
        """Mark ``node_id`` as current and append it to the execution path."""
        with self._lock:
            self.current_node_id = node_id
            self.execution_path.append(node_id)

    def visit_count(self, node_id: str) -> int:
        return self.execution_path.count(node_id)

    # Status

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def transition(self, new_status: ExecutionStatusEnum, error_detail: Optional[ErrorDetail] = None):
        """
        Move the run to ``new_status``.

        Args:
            new_status: Target status
            error_detail: Failure description, stored when moving to failed

        Raises:
            InvalidStateTransitionError: If the run is terminal or the move is not allowed
        """
        with self._lock:
            old_status = self.status
            if new_status not in _ALLOWED_TRANSITIONS.get(old_status, set()):
                raise InvalidStateTransitionError(
                    f"Cannot transition execution {self.execution_id} "
                    f"from {old_status.value} to {new_status.value}",
                    execution_id=self.execution_id,
                    current_status=old_status.value,
                    requested_status=new_status.value,
                )

            self.status = new_status
            if error_detail is not None:
                self.error_detail = error_detail
            if new_status.is_terminal:
                self.completed_at = utc_now()

        logger.debug(f"Execution {self.execution_id}: {old_status.value} -> {new_status.value}")

        for listener in list(self._listeners):
            listener(self, old_status, new_status)

    # Cancellation

    def request_cancel(self):
        """Raise the cancellation signal observed by the traversal loop."""
        self._cancel_event.set()

    @property
    def is_cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def snapshot(self) -> ExecutionSnapshot:
        """Point-in-time copy safe to hand to other threads."""
        with self._lock:
            return ExecutionSnapshot(
                execution_id=self.execution_id,
                flow_id=self.flow_id,
                status=self.status,
                variables=copy.deepcopy(self.variables),
                input_data=copy.deepcopy(self.input_data),
                output_data=copy.deepcopy(self.output_data),
                current_node_id=self.current_node_id,
                execution_path=list(self.execution_path),
                started_at=self.started_at,
                completed_at=self.completed_at,
                error_detail=self.error_detail,
            )
