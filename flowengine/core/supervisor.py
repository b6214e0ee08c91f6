"""Run Supervisor: registry of in-flight executions and their worker pool."""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from ..models.core import (
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatusEnum,
    Flow,
    FlowStatus,
    LogLevelEnum,
    utc_now,
)
from .actions import ActionRegistry
from .context import ExecutionContext
from .events import EXECUTION_STATUS, ExecutionEvents, NullPublisher, Publisher
from .exceptions import (
    ExecutionNotFoundError,
    FlowNotPublishedError,
    FlowValidationError,
    InvalidStateTransitionError,
    WorkflowEngineError,
)
from .graph import validate_flow
from .logging import get_logger
from .node_executors import NodeExecutorRegistry
from .recorder import ExecutionRecorder, InMemoryExecutionRecorder
from .traversal import Suspension, TraversalEngine

logger = get_logger(__name__)


class _RunHandle:
    """Registry entry for one in-flight execution."""

    def __init__(self, context: ExecutionContext, flow: Flow):
        self.context = context
        self.flow = flow
        self.future: Optional[Future] = None
        self.done = threading.Event()
        # Set while the run is parked on a delay and holds no worker
        self.suspension: Optional[Suspension] = None
        self.timer: Optional[threading.Timer] = None


def snapshot_from_record(record: ExecutionRecord) -> ExecutionSnapshot:
    """Snapshot of an execution that is no longer registered."""
    return ExecutionSnapshot(
        execution_id=record.id,
        flow_id=record.flow_id,
        status=record.status,
        input_data=record.input_data,
        output_data=record.output_data,
        current_node_id=record.execution_path[-1] if record.execution_path else None,
        execution_path=list(record.execution_path),
        started_at=record.started_at,
        completed_at=record.completed_at,
        error_detail=record.error_detail,
    )


class RunSupervisor:
    """
    Owns the set of in-flight executions.

    Each execution runs as tasks on a bounded thread pool; executions
    beyond ``max_concurrent_executions`` stay ``pending`` until a worker
    frees up. A run parked on a delay node gives its worker back and is
    re-submitted by a timer when the delay expires. The registry is the
    only structure shared between workers and callers and is guarded by a
    lock. An execution is removed from it as soon as it reaches a terminal
    status.
    """

    def __init__(
        self,
        action_registry: Optional[ActionRegistry] = None,
        recorder: Optional[ExecutionRecorder] = None,
        publisher: Optional[Publisher] = None,
        max_concurrent_executions: int = 10,
        max_revisits: int = 1,
    ):
        """Initialize the supervisor.

        Args:
            action_registry: Registry of action sub-executors
            recorder: Sink for execution records and logs
            publisher: Transport for progress events
            max_concurrent_executions: Size of the worker pool
            max_revisits: Maximum visits of one node within a run
        """
        if max_concurrent_executions < 1:
            raise ValueError("max_concurrent_executions must be at least 1")

        self.action_registry = action_registry or ActionRegistry()
        self.recorder = recorder or InMemoryExecutionRecorder()
        self.events = ExecutionEvents(self.recorder, publisher or NullPublisher())
        self.executors = NodeExecutorRegistry(self.action_registry)
        self.traversal = TraversalEngine(self.executors, self.events, max_revisits=max_revisits)

        self._registry: Dict[str, _RunHandle] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions, thread_name_prefix="flowengine-run"
        )
        self._shutting_down = False

        logger.info(
            f"RunSupervisor initialized with max_concurrent_executions={max_concurrent_executions}, "
            f"max_revisits={max_revisits}"
        )

    def start(self, flow: Flow, input_data: Any = None) -> str:
        """
        Validate ``flow`` and launch an execution of it.

        Args:
            flow: Flow to execute
            input_data: Input payload handed to the start node

        Returns:
            The new execution id; the execution is ``pending`` at return

        Raises:
            FlowNotPublishedError: If the flow is not published
            FlowValidationError: If the flow violates its structural invariants
            StorageError: If the initial record cannot be written
            WorkflowEngineError: If the supervisor is shutting down
        """
        if flow.status != FlowStatus.PUBLISHED:
            raise FlowNotPublishedError(
                f"Flow {flow.id} is {flow.status.value}; only published flows can be executed",
                flow_id=flow.id,
                status=flow.status.value,
            )

        validation = validate_flow(flow)
        if not validation.is_valid:
            raise FlowValidationError(
                f"Flow validation failed: {'; '.join(validation.errors)}",
                validation_errors=validation.errors,
                flow_id=flow.id,
            )
        if validation.warnings:
            logger.warning(f"Flow {flow.id} validation warnings: {'; '.join(validation.warnings)}")

        if self._shutting_down:
            raise WorkflowEngineError("Run supervisor is shutting down", error_code="SupervisorShutdown")

        execution_id = str(uuid.uuid4())
        context = ExecutionContext.new(flow, execution_id, input_data)
        context.add_listener(self.events.on_transition)
        context.add_listener(self._on_transition)

        self.events.create_record(context)
        self.events.publish(EXECUTION_STATUS, context, status=ExecutionStatusEnum.PENDING.value)

        handle = _RunHandle(context, flow)
        with self._lock:
            self._registry[execution_id] = handle
            try:
                handle.future = self._executor.submit(self._run, handle)
                submitted = True
            except RuntimeError as e:
                # The pool was shut down after the check above
                logger.warning(f"Could not schedule execution {execution_id}: {str(e)}")
                submitted = False

        if not submitted:
            self.events.log(context, LogLevelEnum.WARN, "Execution cancelled: run supervisor is shutting down")
            context.transition(ExecutionStatusEnum.CANCELLED)
            raise WorkflowEngineError(
                "Run supervisor is shutting down",
                error_code="SupervisorShutdown",
                context={"execution_id": execution_id},
            )

        logger.info(f"Started execution {execution_id} of flow {flow.id}")
        return execution_id

    def cancel(self, execution_id: str) -> None:
        """
        Request cancellation of an execution.

        A pending execution whose worker has not started, or one parked on
        a delay, is cancelled at once; a running one stops at its next loop
        boundary.

        Raises:
            ExecutionNotFoundError: If the id is unknown
            InvalidStateTransitionError: If the execution is already terminal
        """
        with self._lock:
            handle = self._registry.get(execution_id)

        if handle is None:
            self._cancel_unregistered(execution_id)
            return

        context = handle.context
        if context.is_terminal:
            raise InvalidStateTransitionError(
                f"Execution {execution_id} is already {context.status.value}",
                execution_id=execution_id,
                current_status=context.status.value,
                requested_status=ExecutionStatusEnum.CANCELLED.value,
            )

        with self._lock:
            context.request_cancel()
            parked = handle.suspension is not None
            if parked:
                handle.timer.cancel()
                handle.suspension = None
                handle.timer = None

        if parked:
            # No worker holds a parked run
            self.events.log(context, LogLevelEnum.INFO, "Execution cancelled by user")
            context.transition(ExecutionStatusEnum.CANCELLED)
            logger.info(f"Cancelled delayed execution {execution_id}")
        elif handle.future is not None and handle.future.cancel():
            # The worker never started, so nothing else touches this context
            self.events.log(context, LogLevelEnum.INFO, "Execution cancelled by user")
            context.transition(ExecutionStatusEnum.CANCELLED)
            logger.info(f"Cancelled pending execution {execution_id}")
        else:
            logger.info(f"Cancellation requested for execution {execution_id}")

    def _cancel_unregistered(self, execution_id: str):
        record = self.recorder.get_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)

        if record.status.is_terminal:
            raise InvalidStateTransitionError(
                f"Execution {execution_id} is already {record.status.value}",
                execution_id=execution_id,
                current_status=record.status.value,
                requested_status=ExecutionStatusEnum.CANCELLED.value,
            )

        # A non-terminal record without a worker was left behind by an earlier process
        completed_at = utc_now()
        record.status = ExecutionStatusEnum.CANCELLED
        record.completed_at = completed_at
        record.duration_ms = (completed_at - record.started_at).total_seconds() * 1000
        self.recorder.update_execution(record)
        logger.warning(f"Cancelled orphaned execution record {execution_id}")

    def status(self, execution_id: str) -> ExecutionSnapshot:
        """
        Snapshot of an execution.

        Raises:
            ExecutionNotFoundError: If the id is unknown
        """
        with self._lock:
            handle = self._registry.get(execution_id)
        if handle is not None:
            return handle.context.snapshot()

        record = self.recorder.get_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
        return snapshot_from_record(record)

    def wait(self, execution_id: str, timeout: Optional[float] = None) -> ExecutionSnapshot:
        """
        Block until the execution is terminal or ``timeout`` seconds pass.

        Returns:
            The snapshot at return time; callers must check ``status``
        """
        with self._lock:
            handle = self._registry.get(execution_id)
        if handle is None:
            return self.status(execution_id)

        handle.done.wait(timeout)
        return handle.context.snapshot()

    def retry(self, execution_id: str, flow: Flow) -> str:
        """Start a new execution of ``flow`` with the input of a previous execution."""
        record = self.recorder.get_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
        if record.flow_id != flow.id:
            raise FlowValidationError(
                f"Execution {execution_id} belongs to flow {record.flow_id}, not {flow.id}",
                flow_id=flow.id,
            )
        logger.info(f"Retrying execution {execution_id} of flow {flow.id}")
        return self.start(flow, record.input_data)

    def active_executions(self) -> List[str]:
        with self._lock:
            return list(self._registry.keys())

    def shutdown(self, wait: bool = True):
        """Cancel every in-flight execution and stop the worker pool."""
        self._shutting_down = True
        for execution_id in self.active_executions():
            try:
                self.cancel(execution_id)
            except (ExecutionNotFoundError, InvalidStateTransitionError):
                continue
        self._executor.shutdown(wait=wait)
        logger.info("RunSupervisor shut down")

    def _run(self, handle: _RunHandle, resume: Optional[Suspension] = None):
        context = handle.context
        parked = False
        try:
            while True:
                resume = self.traversal.run(handle.flow, context, resume=resume)
                if resume is None or context.is_terminal:
                    break
                if self._park(handle, resume):
                    parked = True
                    break
                # Cancellation arrived; finish on this worker
        finally:
            if not parked:
                if not context.is_terminal:
                    logger.error(f"Execution {context.execution_id} left the engine in {context.status.value}")
                self._deregister(context.execution_id)

    def _park(self, handle: _RunHandle, suspension: Suspension) -> bool:
        """Arm the resume timer; False if the run must continue on the current worker."""
        with self._lock:
            if handle.context.is_cancel_requested:
                return False
            timer = threading.Timer(suspension.resume_after, self._wake, args=(handle, suspension))
            timer.daemon = True
            handle.suspension = suspension
            handle.timer = timer
            timer.start()
        logger.debug(
            f"Execution {handle.context.execution_id} parked for {suspension.resume_after:.3f}s "
            f"before node {suspension.next_node.id}"
        )
        return True

    def _wake(self, handle: _RunHandle, suspension: Suspension):
        with self._lock:
            if handle.suspension is not suspension:
                # Cancelled while parked
                return
            handle.suspension = None
            handle.timer = None
            try:
                handle.future = self._executor.submit(self._run, handle, suspension)
                return
            except RuntimeError:
                logger.warning(
                    f"Worker pool stopped; finishing execution {handle.context.execution_id} on the timer thread"
                )
        self._run(handle, suspension)

    def _on_transition(self, context: ExecutionContext, old_status: ExecutionStatusEnum,
                       new_status: ExecutionStatusEnum):
        if new_status.is_terminal:
            self._deregister(context.execution_id)

    def _deregister(self, execution_id: str):
        with self._lock:
            handle = self._registry.pop(execution_id, None)
        if handle is not None:
            self.events.forget(execution_id)
            handle.done.set()
            logger.debug(f"Deregistered execution {execution_id}")
