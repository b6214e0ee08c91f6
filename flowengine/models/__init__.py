"""Data models for the flow execution engine."""

from .core import (
    utc_now,
    NodeType,
    FlowStatus,
    ExecutionStatusEnum,
    TERMINAL_STATUSES,
    LogLevelEnum,
    DataType,
    ValidationResult,
    Node,
    Connection,
    FlowVariable,
    Flow,
    ConditionRule,
    ConditionConfig,
    DelayConfig,
    VariableConfig,
    ActionConfig,
    EndConfig,
    ErrorDetail,
    NodeExecutionResult,
    ExecutionLogEntry,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionPage,
    ExecutionStatistics,
)

__all__ = [
    "utc_now",
    "NodeType",
    "FlowStatus",
    "ExecutionStatusEnum",
    "TERMINAL_STATUSES",
    "LogLevelEnum",
    "DataType",
    "ValidationResult",
    "Node",
    "Connection",
    "FlowVariable",
    "Flow",
    "ConditionRule",
    "ConditionConfig",
    "DelayConfig",
    "VariableConfig",
    "ActionConfig",
    "EndConfig",
    "ErrorDetail",
    "NodeExecutionResult",
    "ExecutionLogEntry",
    "ExecutionRecord",
    "ExecutionSnapshot",
    "ExecutionPage",
    "ExecutionStatistics",
]
