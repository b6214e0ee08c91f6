"""Core Pydantic models for the flow execution engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored by the database layer."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NodeType(str, Enum):
    """Enumeration of node kinds a flow may contain."""
    START = "start"
    END = "end"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"
    VARIABLE = "variable"


class FlowStatus(str, Enum):
    """Publish state of a flow definition."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.COMPLETED,
    ExecutionStatusEnum.FAILED,
    ExecutionStatusEnum.CANCELLED,
})


class LogLevelEnum(str, Enum):
    """Severity of a persisted execution log entry."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class DataType(str, Enum):
    """Value types used by condition rules and variable nodes."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class ValidationResult(BaseModel):
    """Result of flow validation."""
    is_valid: bool = Field(..., description="Whether the flow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


# Flow definition (read-only to the engine)

class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Node(_FrozenModel):
    """A typed unit of work within a flow."""
    id: str = Field(..., description="Unique identifier for the node")
    type: NodeType = Field(..., description="Kind of node")
    name: str = Field(default="", description="Display name of the node")
    config: Dict[str, Any] = Field(default_factory=dict, description="Node-type specific configuration")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @property
    def label(self) -> str:
        return self.name or self.id


class Connection(_FrozenModel):
    """A directed edge between two nodes."""
    id: Optional[str] = Field(None, description="Connection identifier")
    source_node_id: str = Field(..., alias="sourceNodeId", description="Source node ID")
    target_node_id: str = Field(..., alias="targetNodeId", description="Target node ID")
    source_handle: Optional[str] = Field(
        None, alias="sourceHandle", description="Branch handle on the source node"
    )


class FlowVariable(_FrozenModel):
    """A flow-level variable declaration."""
    name: str = Field(..., description="Variable name")
    type: DataType = Field(default=DataType.ANY, description="Declared value type")
    default_value: Any = Field(
        None,
        validation_alias=AliasChoices("defaultValue", "default_value", "value"),
        description="Initial value seeded into every run",
    )
    is_global: bool = Field(
        default=False,
        validation_alias=AliasChoices("isGlobal", "is_global"),
        description="Declared scope; resolved run-locally",
    )


class Flow(_FrozenModel):
    """Complete, immutable definition of a flow graph."""
    id: str = Field(..., description="Flow ID")
    name: str = Field(default="", description="Flow name")
    description: Optional[str] = Field(None, description="Flow description")
    status: FlowStatus = Field(default=FlowStatus.PUBLISHED, description="Publish state")
    nodes: List[Node] = Field(default_factory=list, description="Nodes in declaration order")
    connections: List[Connection] = Field(default_factory=list, description="Connections in declaration order")
    variables: List[FlowVariable] = Field(default_factory=list, description="Flow-level variables")


# Node configurations, validated lazily by the node executors

class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ConditionRule(_ConfigModel):
    """Single comparison inside a condition node."""
    id: Optional[str] = None
    left_operand: Any = Field(None, alias="leftOperand")
    operator: str = Field(...)
    right_operand: Any = Field(None, alias="rightOperand")
    data_type: DataType = Field(default=DataType.ANY, alias="dataType")


class ConditionConfig(_ConfigModel):
    """Configuration of a condition node."""
    conditions: List[ConditionRule] = Field(default_factory=list)
    operator: str = Field(default="AND")
    default_path: str = Field(default="false", alias="defaultPath")

    @field_validator('operator')
    @classmethod
    def validate_operator(cls, operator):
        operator = (operator or "AND").upper()
        if operator not in ("AND", "OR"):
            raise ValueError(f"Unsupported logical operator: {operator}")
        return operator

    @field_validator('default_path')
    @classmethod
    def validate_default_path(cls, default_path):
        default_path = str(default_path).lower()
        if default_path not in ("true", "false"):
            raise ValueError("defaultPath must be 'true' or 'false'")
        return default_path


class DelayConfig(_ConfigModel):
    """Configuration of a delay node."""
    delay_type: str = Field(default="fixed", alias="delayType")
    duration: Optional[float] = Field(default=1000)
    duration_variable: Optional[str] = Field(None, alias="durationVariable")
    unit: str = Field(default="milliseconds")


class VariableConfig(_ConfigModel):
    """Configuration of a variable node."""
    operation: str = Field(...)
    variable_name: str = Field(..., alias="variableName")
    value: Any = None
    value_variable: Optional[str] = Field(None, alias="valueVariable")
    data_type: DataType = Field(default=DataType.ANY, alias="dataType")
    scope: str = Field(default="local")

    @field_validator('variable_name')
    @classmethod
    def validate_variable_name(cls, variable_name):
        if not variable_name or not variable_name.strip():
            raise ValueError("variableName cannot be empty")
        return variable_name.strip()


class ActionConfig(_ConfigModel):
    """Configuration of an action node."""
    action_type: str = Field(..., alias="actionType")
    action_config: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("actionConfig", "action_config", "config"),
    )


class EndConfig(_ConfigModel):
    """Configuration of an end node."""
    return_value: Any = Field(None, alias="returnValue")
    success_message: Optional[str] = Field(None, alias="successMessage")


# Execution records

class ErrorDetail(BaseModel):
    """Structured description of why a run failed."""
    code: str = Field(..., description="Error code, e.g. DeadEnd")
    message: str = Field(..., description="Human readable error message")
    node_id: Optional[str] = Field(None, description="Node that was executing, if any")
    timestamp: datetime = Field(..., description="When the failure was captured")


class NodeExecutionResult(BaseModel):
    """Outcome of one node invocation; consumed immediately by the traversal loop."""
    node_id: str
    success: bool
    output_data: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0.0
    branch: Optional[str] = Field(None, description="Handle selected by a condition node")
    message: Optional[str] = Field(None, description="Extra message for the execution log")
    resume_after_ms: Optional[float] = Field(
        None, description="Set by delay nodes: wait this long before running the next node"
    )


class ExecutionLogEntry(BaseModel):
    """Append-only log line produced by one execution."""
    execution_id: str = Field(..., description="ID of the execution")
    node_id: Optional[str] = Field(None, description="Node that produced the line; None for system lines")
    level: LogLevelEnum = Field(..., description="Severity")
    message: str = Field(..., description="Log message")
    data: Optional[Any] = Field(None, description="Structured payload")
    timestamp: datetime = Field(..., description="Timestamp of the entry")
    sequence: int = Field(default=0, description="Insertion order within the execution")


class ExecutionRecord(BaseModel):
    """Persisted record of one execution."""
    id: str
    flow_id: str
    flow_name: Optional[str] = None
    status: ExecutionStatusEnum
    input_data: Any = None
    output_data: Any = None
    error_message: Optional[str] = None
    error_detail: Optional[ErrorDetail] = None
    execution_path: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None


class ExecutionSnapshot(BaseModel):
    """Point-in-time copy of an execution's state."""
    execution_id: str
    flow_id: str
    status: ExecutionStatusEnum
    variables: Dict[str, Any] = Field(default_factory=dict)
    input_data: Any = None
    output_data: Any = None
    current_node_id: Optional[str] = None
    execution_path: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_detail: Optional[ErrorDetail] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ExecutionPage(BaseModel):
    """One page of execution records."""
    items: List[ExecutionRecord] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 0


class ExecutionStatistics(BaseModel):
    """Aggregate execution statistics over a period."""
    total: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    average_duration_ms: float = 0.0
    period: str = "7d"
