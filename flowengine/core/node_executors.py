"""Executors for each node type."""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from ..models.core import (
    ActionConfig,
    ConditionConfig,
    ConditionRule,
    DataType,
    DelayConfig,
    EndConfig,
    ExecutionStatusEnum,
    Node,
    NodeExecutionResult,
    NodeType,
    VariableConfig,
)
from .actions import ActionRegistry
from .context import ExecutionContext
from .logging import get_logger

logger = get_logger(__name__)


_UNIT_TO_MS = {
    "milliseconds": 1,
    "ms": 1,
    "seconds": 1000,
    "s": 1000,
    "minutes": 60 * 1000,
    "m": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "h": 60 * 60 * 1000,
}


@dataclass
class NodeOutput:
    """What a handler hands back to the executor wrapper."""
    data: Any = None
    branch: Optional[str] = None
    message: Optional[str] = None
    resume_after_ms: Optional[float] = None


NodeHandler = Callable[[Node, Any, ExecutionContext], NodeOutput]


class NodeConfigError(ValueError):
    """Raised by handlers when a node's configuration cannot be used."""


def get_nested_value(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path against nested dicts and lists."""
    if not path:
        return data

    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            if key not in current:
                return default
            current = current[key]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> float:
    """Coerce to a number or raise NodeConfigError."""
    if isinstance(value, bool):
        return 1 if value else 0
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise NodeConfigError(f"Value '{value}' is not a number")
        return int(number) if number.is_integer() else number
    raise NodeConfigError(f"Value of type {type(value).__name__} is not a number")


def coerce_value(value: Any, data_type: DataType) -> Any:
    """Coerce ``value`` to ``data_type``; ``any`` leaves it unchanged."""
    if data_type == DataType.NUMBER:
        return to_number(value)
    if data_type == DataType.STRING:
        return "" if value is None else str(value)
    if data_type == DataType.BOOLEAN:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes", "on"):
                return True
            if lowered in ("false", "0", "no", "off", ""):
                return False
            raise NodeConfigError(f"Value '{value}' is not a boolean")
        return bool(value)
    if data_type == DataType.ARRAY:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise NodeConfigError(f"Value of type {type(value).__name__} is not an array")
    if data_type == DataType.OBJECT:
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        raise NodeConfigError(f"Value of type {type(value).__name__} is not an object")
    return value


def _values_equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    # Loose numeric comparison for untyped rules, e.g. 5 == "5"
    if _is_number(left) != _is_number(right):
        try:
            return to_number(left) == to_number(right)
        except NodeConfigError:
            return False
    return False


def _ordered(left: Any, right: Any) -> Optional[Tuple[Any, Any]]:
    """Operands as a comparable pair, or None if either is missing or not a number."""
    if left is None or right is None:
        return None
    if isinstance(left, str) and isinstance(right, str):
        try:
            return to_number(left), to_number(right)
        except NodeConfigError:
            return left, right
    try:
        return to_number(left), to_number(right)
    except NodeConfigError:
        return None


def _greater_than(left: Any, right: Any) -> bool:
    pair = _ordered(left, right)
    return pair is not None and pair[0] > pair[1]


def _less_than(left: Any, right: Any) -> bool:
    pair = _ordered(left, right)
    return pair is not None and pair[0] < pair[1]


def _contains(left: Any, right: Any) -> bool:
    if left is None:
        return False
    if isinstance(left, str):
        return ("" if right is None else str(right)) in left
    if isinstance(left, dict):
        return right in left
    if isinstance(left, (list, tuple, set)):
        return any(_values_equal(item, right) for item in left)
    return False


COMPARISON_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _values_equal,
    "not_equals": lambda left, right: not _values_equal(left, right),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": _contains,
    "starts_with": lambda left, right: left is not None and str(left).startswith("" if right is None else str(right)),
    "ends_with": lambda left, right: left is not None and str(left).endswith("" if right is None else str(right)),
    "is_empty": lambda left, right: is_empty(left),
    "is_not_empty": lambda left, right: not is_empty(left),
}


class NodeExecutorRegistry:
    """
    Lookup table from node type to handler.

    Handlers map ``(node, current_data, context)`` to a NodeOutput and raise
    on failure; ``execute`` turns either outcome into a NodeExecutionResult so
    nothing escapes to the traversal loop.
    """

    def __init__(self, action_registry: ActionRegistry):
        self.action_registry = action_registry
        self._handlers: Dict[NodeType, NodeHandler] = {
            NodeType.START: self._execute_start,
            NodeType.END: self._execute_end,
            NodeType.CONDITION: self._execute_condition,
            NodeType.ACTION: self._execute_action,
            NodeType.DELAY: self._execute_delay,
            NodeType.VARIABLE: self._execute_variable,
        }

    def register_handler(self, node_type: NodeType, handler: NodeHandler):
        """Replace the handler for one node type."""
        self._handlers[node_type] = handler

    def execute(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeExecutionResult:
        """
        Run the handler for ``node``.

        Args:
            node: Node to execute
            current_data: Output of the previous node
            context: Context of the owning run

        Returns:
            NodeExecutionResult: success with output, or failure with the error message
        """
        start_time = time.perf_counter()
        handler = self._handlers.get(node.type)

        try:
            if handler is None:
                raise NodeConfigError(f"Unsupported node type: {node.type}")
            output = handler(node, current_data, context)
        except ValidationError as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            message = f"Invalid {node.type.value} node configuration: {_summarize_validation_error(e)}"
            logger.warning(f"Node {node.id} in execution {context.execution_id}: {message}")
            return NodeExecutionResult(
                node_id=node.id, success=False, error=message, execution_time_ms=elapsed
            )
        except Exception as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            message = str(e) or type(e).__name__
            logger.warning(f"Node {node.id} in execution {context.execution_id} failed: {message}")
            return NodeExecutionResult(
                node_id=node.id, success=False, error=message, execution_time_ms=elapsed
            )

        elapsed = (time.perf_counter() - start_time) * 1000
        return NodeExecutionResult(
            node_id=node.id,
            success=True,
            output_data=output.data,
            execution_time_ms=elapsed,
            branch=output.branch,
            message=output.message,
            resume_after_ms=output.resume_after_ms,
        )

    # Handlers

    def _execute_start(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        if context.status == ExecutionStatusEnum.PENDING:
            context.transition(ExecutionStatusEnum.RUNNING)
        return NodeOutput(data=context.input_data)

    def _execute_end(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        config = EndConfig.model_validate(node.config)
        output = config.return_value if config.return_value is not None else current_data
        context.output_data = output
        return NodeOutput(data=output, message=config.success_message)

    def _execute_condition(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        config = ConditionConfig.model_validate(node.config)
        if not config.conditions:
            raise NodeConfigError("Condition node has no rules configured")

        outcomes = [self._evaluate_rule(rule, current_data, context) for rule in config.conditions]
        passed = all(outcomes) if config.operator == "AND" else any(outcomes)

        branch = "true" if passed else "false"
        logger.debug(f"Condition node {node.id} evaluated {outcomes} with {config.operator} -> {branch}")
        return NodeOutput(data=current_data, branch=branch)

    def _execute_action(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        config = ActionConfig.model_validate(node.config)
        output = self.action_registry.call_action(
            config.action_type,
            config.action_config,
            current_data,
            variables=context.variables,
        )
        return NodeOutput(data=output)

    def _execute_delay(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        config = DelayConfig.model_validate(node.config)

        if config.delay_type == "variable":
            if not config.duration_variable:
                raise NodeConfigError("Variable delay requires durationVariable")
            if not context.has_variable(config.duration_variable):
                raise NodeConfigError(f"Delay variable '{config.duration_variable}' is not defined")
            raw_duration = context.get_variable(config.duration_variable)
        elif config.delay_type == "fixed":
            raw_duration = config.duration
        else:
            raise NodeConfigError(f"Unsupported delay type: {config.delay_type}")

        if raw_duration is None:
            raise NodeConfigError("Delay duration is not set")
        duration = to_number(raw_duration)
        if math.isnan(duration) or math.isinf(duration) or duration < 0:
            raise NodeConfigError(f"Invalid delay duration: {raw_duration}")

        factor = _UNIT_TO_MS.get(config.unit.lower())
        if factor is None:
            raise NodeConfigError(f"Unsupported delay unit: {config.unit}")

        delay_ms = duration * factor
        if context.is_cancel_requested:
            logger.info(f"Delay node {node.id} skipped: cancellation requested")
            return NodeOutput(data=current_data)

        # The wait itself happens off the worker; the supervisor resumes the run later
        logger.debug(f"Delay node {node.id} suspending run for {delay_ms}ms")
        return NodeOutput(
            data=current_data,
            message=f"Waiting {delay_ms:g}ms before continuing",
            resume_after_ms=delay_ms if delay_ms > 0 else None,
        )

    def _execute_variable(self, node: Node, current_data: Any, context: ExecutionContext) -> NodeOutput:
        config = VariableConfig.model_validate(node.config)
        name = config.variable_name
        operation = config.operation.lower()

        if operation == "get":
            return NodeOutput(data=context.get_variable(name))

        if config.value_variable:
            if not context.has_variable(config.value_variable):
                raise NodeConfigError(f"Variable '{config.value_variable}' is not defined")
            value = context.get_variable(config.value_variable)
        else:
            value = config.value

        if operation == "set":
            context.set_variable(name, coerce_value(value, config.data_type))
        elif operation in ("increment", "decrement"):
            current = context.get_variable(name)
            current = 0 if current is None else to_number(current)
            step = 1 if value is None else to_number(value)
            context.set_variable(name, current + step if operation == "increment" else current - step)
        elif operation == "append":
            current = context.get_variable(name)
            if current is None:
                current = []
            if isinstance(current, list):
                context.set_variable(name, current + [value])
            elif isinstance(current, str):
                context.set_variable(name, current + ("" if value is None else str(value)))
            else:
                raise NodeConfigError(
                    f"Cannot append to variable '{name}' of type {type(current).__name__}"
                )
        else:
            raise NodeConfigError(f"Unsupported variable operation: {config.operation}")

        return NodeOutput(data=current_data)

    # Condition helpers

    def _resolve_operand(self, operand: Any, current_data: Any, context: ExecutionContext) -> Any:
        if not isinstance(operand, str):
            return operand

        if operand == "input":
            return current_data
        if operand.startswith("input."):
            return get_nested_value(current_data, operand[len("input."):])
        if operand.startswith("variables."):
            name, _, rest = operand[len("variables."):].partition(".")
            value = context.get_variable(name)
            return get_nested_value(value, rest) if rest else value
        if context.has_variable(operand):
            return context.get_variable(operand)
        return operand

    def _evaluate_rule(self, rule: ConditionRule, current_data: Any, context: ExecutionContext) -> bool:
        comparator = COMPARISON_OPERATORS.get(rule.operator)
        if comparator is None:
            raise NodeConfigError(f"Unsupported comparison operator: {rule.operator}")

        left = self._resolve_operand(rule.left_operand, current_data, context)
        if rule.operator in ("is_empty", "is_not_empty"):
            right = None
        else:
            right = self._resolve_operand(rule.right_operand, current_data, context)

        if rule.data_type != DataType.ANY:
            # Missing operands stay None; data of the wrong shape fails the rule, not the node
            try:
                if left is not None:
                    left = coerce_value(left, rule.data_type)
                if right is not None:
                    right = coerce_value(right, rule.data_type)
            except NodeConfigError as e:
                logger.debug(f"Rule {rule.left_operand} {rule.operator} evaluated false: {e}")
                return False

        try:
            return bool(comparator(left, right))
        except TypeError as e:
            raise NodeConfigError(f"Cannot compare {left!r} and {right!r} with {rule.operator}: {e}")


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "config"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
