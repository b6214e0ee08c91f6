"""Fan-out of run progress to the execution recorder and a publish transport."""

import threading
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

from ..models.core import (
    ExecutionLogEntry,
    ExecutionRecord,
    ExecutionStatusEnum,
    LogLevelEnum,
    utc_now,
)
from .context import ExecutionContext
from .logging import get_logger
from .recorder import ExecutionRecorder, to_jsonable

logger = get_logger(__name__)


# Topics published during a run
EXECUTION_STATUS = "execution_status"
NODE_ENTERED = "node_entered"
NODE_COMPLETED = "node_completed"
NODE_FAILED = "node_failed"
RUN_COMPLETED = "run_completed"


class Publisher(Protocol):
    """Narrow publish capability the engine needs from a transport."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...


class NullPublisher:
    """Publisher that drops every event."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        return None


def build_record(context: ExecutionContext) -> ExecutionRecord:
    """Project an execution context onto its persisted record."""
    snapshot = context.snapshot()
    error_detail = snapshot.error_detail
    return ExecutionRecord(
        id=snapshot.execution_id,
        flow_id=snapshot.flow_id,
        flow_name=context.flow_name,
        status=snapshot.status,
        input_data=snapshot.input_data,
        output_data=snapshot.output_data,
        error_message=error_detail.message if error_detail else None,
        error_detail=error_detail,
        execution_path=snapshot.execution_path,
        started_at=snapshot.started_at,
        completed_at=snapshot.completed_at,
        duration_ms=context.duration_ms,
    )


class ExecutionEvents:
    """
    Writes log entries and record updates for running executions and
    publishes progress events.

    Failures of the recorder or the publisher during a run are logged and
    never abort the run.
    """

    def __init__(self, recorder: ExecutionRecorder, publisher: Optional[Publisher] = None):
        self.recorder = recorder
        self.publisher = publisher or NullPublisher()
        self._sequences: Dict[str, int] = {}
        self._last_timestamps: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def create_record(self, context: ExecutionContext):
        """Persist the initial record; errors propagate to the caller."""
        self.recorder.create_execution(build_record(context))

    def update_record(self, context: ExecutionContext):
        try:
            self.recorder.update_execution(build_record(context))
        except Exception as e:
            logger.error(f"Failed to update execution record {context.execution_id}: {str(e)}")

    def log(
        self,
        context: ExecutionContext,
        level: LogLevelEnum,
        message: str,
        node_id: Optional[str] = None,
        data: Any = None,
    ):
        """Append one entry to the execution's persisted log trail."""
        execution_id = context.execution_id
        with self._lock:
            sequence = self._sequences.get(execution_id, 0) + 1
            self._sequences[execution_id] = sequence
            timestamp = utc_now()
            last = self._last_timestamps.get(execution_id)
            # Wall clock can step backwards; entries of one run must not
            if last is not None and timestamp < last:
                timestamp = last + timedelta(microseconds=1)
            self._last_timestamps[execution_id] = timestamp

        entry = ExecutionLogEntry(
            execution_id=execution_id,
            node_id=node_id,
            level=level,
            message=message,
            data=to_jsonable(data) if data is not None else None,
            timestamp=timestamp,
            sequence=sequence,
        )
        try:
            self.recorder.append_log(entry)
        except Exception as e:
            logger.error(f"Failed to write execution log for {execution_id}: {str(e)}")

    def publish(self, topic: str, context: ExecutionContext, **payload):
        body = {"executionId": context.execution_id, "flowId": context.flow_id}
        body.update(payload)
        try:
            self.publisher.publish(topic, to_jsonable(body))
        except Exception as e:
            logger.warning(f"Failed to publish {topic} for {context.execution_id}: {str(e)}")

    def on_transition(self, context: ExecutionContext, old_status: ExecutionStatusEnum,
                      new_status: ExecutionStatusEnum):
        """Context listener persisting and publishing every status change."""
        self.update_record(context)
        self.publish(
            EXECUTION_STATUS,
            context,
            status=new_status.value,
            previousStatus=old_status.value,
        )
        if new_status.is_terminal:
            detail = context.error_detail
            self.publish(
                RUN_COMPLETED,
                context,
                status=new_status.value,
                outputData=context.output_data,
                error=detail.model_dump(mode="json") if detail else None,
                durationMs=context.duration_ms,
            )

    def forget(self, execution_id: str):
        """Drop per-run bookkeeping once the run is terminal."""
        with self._lock:
            self._sequences.pop(execution_id, None)
            self._last_timestamps.pop(execution_id, None)
