"""FastAPI REST endpoints for the flow engine."""

import json
from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status, WebSocket, WebSocketDisconnect
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..core.actions import ActionRegistry
from ..core.exceptions import (
    ExecutionNotFoundError,
    FlowNotPublishedError,
    FlowValidationError,
    InvalidStateTransitionError,
    WorkflowEngineError,
    create_error_response,
)
from ..core.recorder import ExecutionRecorder
from ..core.supervisor import RunSupervisor
from ..core.websocket_manager import WebSocketManager
from ..models.core import (
    ExecutionLogEntry,
    ExecutionPage,
    ExecutionSnapshot,
    ExecutionStatistics,
    ExecutionStatusEnum,
    Flow,
    LogLevelEnum,
    utc_now,
)
from ..core.logging import get_logger

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["executions"])

# Global instances (initialized by the application factory)
_supervisor: Optional[RunSupervisor] = None
_recorder: Optional[ExecutionRecorder] = None
_action_registry: Optional[ActionRegistry] = None
_websocket_manager: Optional[WebSocketManager] = None


def init_dependencies(
    supervisor: RunSupervisor,
    recorder: ExecutionRecorder,
    action_registry: ActionRegistry,
    websocket_manager: Optional[WebSocketManager] = None
):
    """Initialize the global dependencies."""
    global _supervisor, _recorder, _action_registry, _websocket_manager
    _supervisor = supervisor
    _recorder = recorder
    _action_registry = action_registry
    _websocket_manager = websocket_manager


def get_supervisor() -> RunSupervisor:
    """Dependency to get the run supervisor."""
    if _supervisor is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Run supervisor not initialized"
        )
    return _supervisor


def get_recorder() -> ExecutionRecorder:
    """Dependency to get the execution recorder."""
    if _recorder is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution recorder not initialized"
        )
    return _recorder


def get_action_registry() -> ActionRegistry:
    if _action_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Action registry not initialized"
        )
    return _action_registry


def _http_status_for(error: WorkflowEngineError) -> int:
    if isinstance(error, (FlowValidationError, FlowNotPublishedError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, ExecutionNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, InvalidStateTransitionError):
        return status.HTTP_409_CONFLICT
    if error.error_code == "SupervisorShutdown":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: WorkflowEngineError) -> HTTPException:
    """Map an engine error onto an HTTPException carrying its error body."""
    status_code = _http_status_for(error)
    if status_code >= 500:
        logger.error(f"Request failed with {error.error_code}: {error.message}")
    else:
        logger.warning(f"Request rejected with {error.error_code}: {error.message}")
    return HTTPException(status_code=status_code, detail=create_error_response(error))


# Request/Response models
class StartExecutionRequest(BaseModel):
    """Request model for starting an execution."""
    model_config = ConfigDict(populate_by_name=True)

    flow: Flow = Field(..., description="Flow definition to execute")
    input_data: Any = Field(
        default=None,
        validation_alias=AliasChoices("inputData", "input_data"),
        description="Input payload handed to the start node"
    )


class RetryExecutionRequest(BaseModel):
    """Request model for re-running a previous execution."""
    flow: Flow = Field(..., description="Flow definition of the original execution")


class StartExecutionResponse(BaseModel):
    """Response model for an accepted execution."""
    execution_id: str = Field(..., description="Identifier of the new execution")
    status: ExecutionStatusEnum = Field(..., description="Status at acceptance time")
    message: str = Field(..., description="Human-readable result")


class CancelExecutionResponse(BaseModel):
    execution_id: str
    message: str


class CleanupResponse(BaseModel):
    deleted: int = Field(..., description="Number of execution records deleted")


@router.post(
    "/executions",
    response_model=StartExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a flow",
    description="Validate a published flow and start an execution of it"
)
async def start_execution(
    request: StartExecutionRequest,
    supervisor: RunSupervisor = Depends(get_supervisor)
) -> StartExecutionResponse:
    """
    Start an execution.

    Args:
        request: Flow definition and input data
        supervisor: Run supervisor dependency

    Returns:
        The new execution id; the run continues in the background

    Raises:
        HTTPException: If the flow is invalid or not published
    """
    try:
        execution_id = supervisor.start(request.flow, request.input_data)
    except WorkflowEngineError as e:
        raise to_http_exception(e)

    logger.info(f"Accepted execution {execution_id} of flow {request.flow.id}")
    return StartExecutionResponse(
        execution_id=execution_id,
        status=ExecutionStatusEnum.PENDING,
        message="Flow execution started"
    )


@router.get(
    "/executions",
    response_model=ExecutionPage,
    summary="List executions",
)
async def list_executions(
    flow_id: Optional[str] = Query(None, description="Filter by flow id"),
    execution_status: Optional[ExecutionStatusEnum] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    recorder: ExecutionRecorder = Depends(get_recorder)
) -> ExecutionPage:
    """List execution records, newest first."""
    try:
        return recorder.list_executions(flow_id=flow_id, status=execution_status, page=page, limit=limit)
    except WorkflowEngineError as e:
        raise to_http_exception(e)


@router.get(
    "/executions/stats",
    response_model=ExecutionStatistics,
    summary="Execution statistics",
)
async def get_execution_statistics(
    flow_id: Optional[str] = Query(None, description="Restrict to one flow"),
    days: int = Query(7, ge=1, le=365),
    recorder: ExecutionRecorder = Depends(get_recorder)
) -> ExecutionStatistics:
    try:
        return recorder.get_statistics(flow_id=flow_id, days=days)
    except WorkflowEngineError as e:
        raise to_http_exception(e)


@router.delete(
    "/executions",
    response_model=CleanupResponse,
    summary="Delete old terminal executions",
)
async def cleanup_executions(
    max_age_hours: int = Query(24, ge=0),
    recorder: ExecutionRecorder = Depends(get_recorder)
) -> CleanupResponse:
    try:
        deleted = recorder.cleanup_completed(max_age_hours=max_age_hours)
    except WorkflowEngineError as e:
        raise to_http_exception(e)
    return CleanupResponse(deleted=deleted)


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionSnapshot,
    summary="Get execution status",
    description="Snapshot of a running or finished execution"
)
async def get_execution_status(
    execution_id: str,
    supervisor: RunSupervisor = Depends(get_supervisor)
) -> ExecutionSnapshot:
    try:
        return supervisor.status(execution_id)
    except WorkflowEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=CancelExecutionResponse,
    summary="Cancel an execution",
)
async def cancel_execution(
    execution_id: str,
    supervisor: RunSupervisor = Depends(get_supervisor)
) -> CancelExecutionResponse:
    """
    Request cancellation of an execution.

    Raises:
        HTTPException: 404 for unknown ids, 409 for finished executions
    """
    try:
        supervisor.cancel(execution_id)
    except WorkflowEngineError as e:
        raise to_http_exception(e)
    return CancelExecutionResponse(execution_id=execution_id, message="Cancellation requested")


@router.post(
    "/executions/{execution_id}/retry",
    response_model=StartExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Re-run an execution with its original input",
)
async def retry_execution(
    execution_id: str,
    request: RetryExecutionRequest,
    supervisor: RunSupervisor = Depends(get_supervisor)
) -> StartExecutionResponse:
    try:
        new_execution_id = supervisor.retry(execution_id, request.flow)
    except WorkflowEngineError as e:
        raise to_http_exception(e)
    return StartExecutionResponse(
        execution_id=new_execution_id,
        status=ExecutionStatusEnum.PENDING,
        message=f"Flow execution restarted from {execution_id}"
    )


@router.get(
    "/executions/{execution_id}/logs",
    response_model=List[ExecutionLogEntry],
    summary="Get execution logs",
)
async def get_execution_logs(
    execution_id: str,
    level: Optional[LogLevelEnum] = Query(None, description="Filter by log level"),
    recorder: ExecutionRecorder = Depends(get_recorder)
) -> List[ExecutionLogEntry]:
    try:
        if recorder.get_execution(execution_id) is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
        return recorder.get_logs(execution_id, level=level)
    except WorkflowEngineError as e:
        raise to_http_exception(e)


@router.get("/actions", summary="List registered action types")
async def list_actions(
    action_registry: ActionRegistry = Depends(get_action_registry)
) -> Dict[str, str]:
    return action_registry.list_actions()


# WebSocket endpoint for real-time monitoring

@router.websocket("/ws/monitor")
async def websocket_monitor(websocket: WebSocket):
    """
    WebSocket endpoint for real-time execution monitoring.

    Message format for client messages:
    {
        "action": "subscribe" | "unsubscribe" | "ping",
        "execution_id": "execution id, or '*' for every execution"
    }

    Message format for server messages:
    {
        "event_type": "execution_status" | "node_entered" | "node_completed" | "node_failed" | "run_completed" | ...,
        "execution_id": "execution id",
        "timestamp": "iso_timestamp",
        "data": {...}
    }
    """
    if not _websocket_manager:
        await websocket.close(code=1011, reason="WebSocket monitoring not available")
        return

    connection_id = None
    try:
        connection_id = await _websocket_manager.connect(websocket)

        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
            except json.JSONDecodeError:
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": "Invalid JSON message format",
                    "timestamp": utc_now().isoformat()
                })
                continue

            action = message.get("action")
            execution_id = message.get("execution_id")

            if action == "subscribe" and execution_id:
                await _websocket_manager.subscribe(connection_id, execution_id)

            elif action == "unsubscribe" and execution_id:
                if await _websocket_manager.unsubscribe(connection_id, execution_id):
                    await _websocket_manager.send_to_connection(connection_id, {
                        "event_type": "unsubscribed",
                        "execution_id": execution_id,
                        "timestamp": utc_now().isoformat()
                    })

            elif action == "ping":
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "pong",
                    "timestamp": utc_now().isoformat()
                })

            else:
                await _websocket_manager.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": f"Unknown action: {action}",
                    "timestamp": utc_now().isoformat()
                })

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {str(e)}")
    finally:
        if connection_id:
            await _websocket_manager.disconnect(connection_id)
