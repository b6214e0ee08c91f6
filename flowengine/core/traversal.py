"""Traversal Engine: the per-run state machine walking a flow."""

import json
from dataclasses import dataclass
from typing import Any, List, Optional

from ..models.core import (
    ConditionConfig,
    Connection,
    ErrorDetail,
    ExecutionStatusEnum,
    Flow,
    LogLevelEnum,
    Node,
    NodeExecutionResult,
    NodeType,
    utc_now,
)
from .context import ExecutionContext
from .events import NODE_COMPLETED, NODE_ENTERED, NODE_FAILED, ExecutionEvents
from .exceptions import (
    CycleDetectedError,
    DeadEndError,
    InvalidStateTransitionError,
    NoStartNodeError,
    NodeExecutionError,
    TraversalError,
)
from .graph import find_node, find_start_node, outgoing_connections
from .logging import clear_logging_context, get_logger, set_logging_context
from .node_executors import NodeExecutorRegistry
from .recorder import to_jsonable

logger = get_logger(__name__)

OUTPUT_SUMMARY_LIMIT = 1000


def summarize_output(value: Any, limit: int = OUTPUT_SUMMARY_LIMIT) -> Any:
    """Return ``value`` as JSON data, or a truncated string if it is large."""
    data = to_jsonable(value)
    text = json.dumps(data, default=str)
    if len(text) <= limit:
        return data
    return text[:limit] + "...(truncated)"


@dataclass
class Suspension:
    """Point where a run parked after a delay node, and when to pick it up."""
    next_node: Node
    data: Any
    resume_after: float  # seconds


class TraversalEngine:
    """
    Walks one flow for one execution context until a terminal status.

    Node invocation within a run is strictly sequential. Cancellation is
    observed at the top of every iteration, so an in-flight node always
    finishes before the run becomes cancelled. A delay node does not hold
    the calling thread: the walk stops and hands back a Suspension, and the
    caller resumes it with ``run(flow, context, resume=...)`` once the
    delay has passed.
    """

    def __init__(self, executors: NodeExecutorRegistry, events: ExecutionEvents, max_revisits: int = 1):
        if max_revisits < 1:
            raise ValueError("max_revisits must be at least 1")
        self.executors = executors
        self.events = events
        self.max_revisits = max_revisits

    def run(self, flow: Flow, context: ExecutionContext,
            resume: Optional[Suspension] = None) -> Optional[Suspension]:
        """
        Execute ``flow`` until it is terminal or parks on a delay.

        Never raises: every failure is captured into the context's error
        detail and the execution log.

        Args:
            flow: Validated flow to traverse
            context: Context owned by the calling worker
            resume: Suspension returned by an earlier call; None starts the run

        Returns:
            A Suspension if a delay node parked the run, else None with the
            context terminal
        """
        set_logging_context(execution_id=context.execution_id, flow_id=context.flow_id)
        try:
            return self._traverse(flow, context, resume)
        except TraversalError as e:
            self._fail(context, e)
        except InvalidStateTransitionError as e:
            logger.warning(f"Execution {context.execution_id} ended by a rejected transition: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected error in execution {context.execution_id}: {str(e)}", exc_info=True)
            self._fail(context, NodeExecutionError(
                f"Unexpected engine error: {str(e)}",
                node_id=context.current_node_id,
                execution_id=context.execution_id,
            ))
        finally:
            clear_logging_context()
        return None

    def _traverse(self, flow: Flow, context: ExecutionContext,
                  resume: Optional[Suspension]) -> Optional[Suspension]:
        if resume is not None:
            logger.debug(f"Resuming execution {context.execution_id} at node {resume.next_node.id}")
            current = resume.next_node
            current_data = resume.data
        else:
            start_node = find_start_node(flow)
            if start_node is None:
                raise NoStartNodeError(
                    f"Flow {flow.id} has no start node", execution_id=context.execution_id
                )

            self.events.log(
                context, LogLevelEnum.INFO, "Flow execution started",
                data={"flowId": flow.id, "flowName": flow.name, "inputData": context.input_data},
            )
            logger.info(f"Starting execution {context.execution_id} of flow {flow.id}")

            current = start_node
            current_data = context.input_data

        while True:
            if context.is_cancel_requested:
                self._cancel(context)
                return None

            visits = context.visit_count(current.id)
            if visits >= self.max_revisits:
                raise CycleDetectedError(
                    f"Node {current.id} would be visited {visits + 1} times, "
                    f"exceeding the limit of {self.max_revisits}",
                    node_id=current.id,
                    execution_id=context.execution_id,
                )

            result = self._execute_node(current, current_data, context)
            current_data = result.output_data

            if current.type == NodeType.END:
                self._complete(context)
                return None

            current = self._select_next(flow, current, result, context)

            if result.resume_after_ms and not context.is_cancel_requested:
                return Suspension(current, current_data, result.resume_after_ms / 1000)

    def _execute_node(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeExecutionResult:
        context.record_visit(node.id)
        self.events.log(
            context, LogLevelEnum.INFO, f"Entering node: {node.label}",
            node_id=node.id, data={"nodeType": node.type.value},
        )
        self.events.publish(
            NODE_ENTERED, context, nodeId=node.id, nodeType=node.type.value, nodeName=node.name,
        )

        result = self.executors.execute(node, current_data, context)

        if not result.success:
            self.events.log(
                context, LogLevelEnum.ERROR, f"Node execution failed: {result.error}",
                node_id=node.id, data={"executionTimeMs": result.execution_time_ms},
            )
            self.events.publish(
                NODE_FAILED, context, nodeId=node.id, error=result.error,
                executionTimeMs=result.execution_time_ms,
            )
            raise NodeExecutionError(
                result.error or f"Node {node.id} failed",
                node_id=node.id,
                execution_id=context.execution_id,
                execution_time=result.execution_time_ms,
            )

        log_data = {
            "outputData": summarize_output(result.output_data),
            "executionTimeMs": result.execution_time_ms,
        }
        if result.branch is not None:
            log_data["branch"] = result.branch
        self.events.log(
            context, LogLevelEnum.INFO, "Node executed successfully", node_id=node.id, data=log_data,
        )
        if result.message:
            self.events.log(context, LogLevelEnum.INFO, result.message, node_id=node.id)
        self.events.publish(
            NODE_COMPLETED, context, nodeId=node.id, branch=result.branch,
            executionTimeMs=result.execution_time_ms,
        )
        return result

    def _select_next(self, flow: Flow, node: Node, result: NodeExecutionResult,
                     context: ExecutionContext) -> Node:
        connections = outgoing_connections(flow, node.id)

        if node.type == NodeType.CONDITION:
            candidates = self._branch_candidates(node, result.branch, connections)
        else:
            candidates = connections
            if len(candidates) > 1:
                logger.debug(
                    f"Node {node.id} has {len(candidates)} outgoing connections; "
                    f"following the first declared"
                )

        if not candidates:
            detail = f" for branch '{result.branch}'" if node.type == NodeType.CONDITION else ""
            raise DeadEndError(
                f"Node {node.id} has no outgoing connection{detail}",
                node_id=node.id,
                execution_id=context.execution_id,
            )

        target_id = candidates[0].target_node_id
        target = find_node(flow, target_id)
        if target is None:
            raise DeadEndError(
                f"Connection from {node.id} targets unknown node {target_id}",
                node_id=node.id,
                execution_id=context.execution_id,
            )
        return target

    @staticmethod
    def _branch_candidates(node: Node, branch: str, connections: List[Connection]) -> List[Connection]:
        matching = [c for c in connections if c.source_handle == branch]
        if matching:
            return matching
        default_path = ConditionConfig.model_validate(node.config).default_path
        return [c for c in connections if c.source_handle == default_path]

    # Terminal transitions: the log line is written before the status
    # changes so readers observing a terminal status see the full trail.

    def _complete(self, context: ExecutionContext):
        elapsed_ms = (utc_now() - context.started_at).total_seconds() * 1000
        self.events.log(
            context, LogLevelEnum.INFO, "Flow execution completed",
            data={"durationMs": elapsed_ms, "outputData": summarize_output(context.output_data)},
        )
        context.transition(ExecutionStatusEnum.COMPLETED)
        logger.info(f"Execution {context.execution_id} completed in {context.duration_ms:.1f}ms")

    def _cancel(self, context: ExecutionContext):
        self.events.log(context, LogLevelEnum.INFO, "Execution cancelled by user")
        context.transition(ExecutionStatusEnum.CANCELLED)
        logger.info(f"Execution {context.execution_id} cancelled")

    def _fail(self, context: ExecutionContext, error: TraversalError):
        detail = ErrorDetail(
            code=error.error_code,
            message=error.message,
            node_id=error.node_id or context.current_node_id,
            timestamp=utc_now(),
        )
        self.events.log(
            context, LogLevelEnum.ERROR, f"Flow execution failed: {error.message}",
            node_id=None, data={"code": detail.code, "nodeId": detail.node_id},
        )
        try:
            context.transition(ExecutionStatusEnum.FAILED, error_detail=detail)
        except InvalidStateTransitionError as e:
            logger.warning(f"Could not mark execution {context.execution_id} failed: {e.message}")
            return
        logger.error(f"Execution {context.execution_id} failed with {detail.code}: {detail.message}")
