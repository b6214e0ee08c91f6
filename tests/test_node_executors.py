"""Tests for node executors."""

import pytest

from flowengine.core.actions import ActionRegistry
from flowengine.core.context import ExecutionContext
from flowengine.core.node_executors import NodeExecutorRegistry, NodeOutput, get_nested_value
from flowengine.models.core import ExecutionStatusEnum, Flow, FlowVariable, NodeType

from conftest import echo_action, linear_flow, node


@pytest.fixture
def registry():
    actions = ActionRegistry()
    actions.register_action("echo", echo_action)
    return NodeExecutorRegistry(actions)


@pytest.fixture
def context():
    base = linear_flow("exec-flow")
    flow = Flow(
        id=base.id,
        nodes=base.nodes,
        connections=base.connections,
        variables=[FlowVariable(name="limit", defaultValue=10), FlowVariable(name="tags", defaultValue=[])],
    )
    return ExecutionContext.new(flow, "exec-1", {"x": 5})


def condition(*rules, **config):
    return node("check", "condition", conditions=list(rules), **config)


def rule(left, operator, right=None, data_type="any"):
    return {"leftOperand": left, "operator": operator, "rightOperand": right, "dataType": data_type}


class TestStartAndEnd:
    """Test cases for start and end nodes."""

    def test_start_moves_run_to_running_and_emits_input(self, registry, context):
        result = registry.execute(node("start", "start"), None, context)

        assert result.success
        assert result.output_data == {"x": 5}
        assert context.status == ExecutionStatusEnum.RUNNING

    def test_end_captures_current_data(self, registry, context):
        result = registry.execute(node("end", "end"), {"done": True}, context)

        assert result.success
        assert context.output_data == {"done": True}

    def test_end_return_value_replaces_output(self, registry, context):
        end = node("end", "end", returnValue={"ok": 1}, successMessage="All good")

        result = registry.execute(end, {"ignored": True}, context)

        assert context.output_data == {"ok": 1}
        assert result.message == "All good"


class TestConditionNode:
    """Test cases for condition evaluation and branch selection."""

    def test_input_path_equals(self, registry, context):
        result = registry.execute(condition(rule("input.x", "equals", 5)), {"x": 5}, context)

        assert result.success
        assert result.branch == "true"
        assert result.output_data == {"x": 5}

    def test_loose_numeric_equality(self, registry, context):
        result = registry.execute(condition(rule("input.x", "equals", "5")), {"x": 5}, context)

        assert result.branch == "true"

    def test_and_with_all_rules_false_selects_false(self, registry, context):
        check = condition(rule("input.x", "equals", 1), rule("input.x", "greater_than", 100))

        result = registry.execute(check, {"x": 5}, context)

        assert result.branch == "false"

    def test_or_needs_one_rule(self, registry, context):
        check = condition(rule("input.x", "equals", 1), rule("input.x", "less_than", 10), operator="or")

        result = registry.execute(check, {"x": 5}, context)

        assert result.branch == "true"

    def test_variable_operands(self, registry, context):
        check = condition(
            rule("input.x", "less_than", "variables.limit"),
            rule("limit", "equals", 10, data_type="number"),
        )

        result = registry.execute(check, {"x": 5}, context)

        assert result.branch == "true"

    def test_string_and_emptiness_operators(self, registry, context):
        data = {"name": "flow-engine", "tags": []}
        check = condition(
            rule("input.name", "starts_with", "flow"),
            rule("input.name", "ends_with", "engine"),
            rule("input.name", "contains", "-"),
            rule("input.tags", "is_empty"),
            rule("input.name", "is_not_empty"),
        )

        result = registry.execute(check, data, context)

        assert result.branch == "true"

    @pytest.mark.parametrize("check", [
        rule("input.age", "greater_than", 18),
        rule("input.age", "less_than", 18),
        rule("input.age", "greater_than", 18, data_type="number"),
        rule("input.name", "less_than", 3),
    ])
    def test_missing_or_non_numeric_operand_takes_false_branch(self, registry, context, check):
        result = registry.execute(condition(check), {"name": "flow"}, context)

        assert result.success
        assert result.branch == "false"

    def test_empty_rule_set_fails_node(self, registry, context):
        result = registry.execute(condition(), {"x": 5}, context)

        assert not result.success
        assert "no rules" in result.error

    def test_unknown_operator_fails_node(self, registry, context):
        result = registry.execute(condition(rule("input.x", "matches", 5)), {"x": 5}, context)

        assert not result.success
        assert "Unsupported comparison operator" in result.error

    def test_invalid_logical_operator_is_a_config_failure(self, registry, context):
        check = condition(rule("input.x", "equals", 5), operator="XOR")

        result = registry.execute(check, {"x": 5}, context)

        assert not result.success
        assert result.error.startswith("Invalid condition node configuration")


class TestVariableNode:
    """Test cases for variable operations."""

    def test_set_with_coercion(self, registry, context):
        set_node = node("v", "variable", operation="set", variableName="count", value="7", dataType="number")

        result = registry.execute(set_node, {"x": 5}, context)

        assert result.success
        assert context.get_variable("count") == 7
        assert result.output_data == {"x": 5}

    def test_get_returns_value(self, registry, context):
        result = registry.execute(node("v", "variable", operation="get", variableName="limit"), None, context)

        assert result.output_data == 10

    def test_increment_and_decrement_default_to_zero_and_one(self, registry, context):
        registry.execute(node("v", "variable", operation="increment", variableName="n"), None, context)
        registry.execute(node("v", "variable", operation="increment", variableName="n", value=4), None, context)
        registry.execute(node("v", "variable", operation="decrement", variableName="n"), None, context)

        assert context.get_variable("n") == 4

    def test_append_to_list_and_string(self, registry, context):
        registry.execute(node("v", "variable", operation="append", variableName="tags", value="a"), None, context)
        registry.execute(node("v", "variable", operation="append", variableName="fresh", value=1), None, context)
        context.set_variable("text", "ab")
        registry.execute(node("v", "variable", operation="append", variableName="text", value="c"), None, context)

        assert context.get_variable("tags") == ["a"]
        assert context.get_variable("fresh") == [1]
        assert context.get_variable("text") == "abc"

    def test_value_variable_copies_other_variable(self, registry, context):
        copy_node = node("v", "variable", operation="set", variableName="copy", valueVariable="limit")

        registry.execute(copy_node, None, context)

        assert context.get_variable("copy") == 10

    def test_unknown_operation_fails(self, registry, context):
        result = registry.execute(node("v", "variable", operation="multiply", variableName="n"), None, context)

        assert not result.success
        assert "Unsupported variable operation" in result.error


class TestDelayNode:
    """Test cases for delay nodes."""

    def test_fixed_delay_passes_data_through(self, registry, context):
        result = registry.execute(node("d", "delay", duration=5), {"x": 1}, context)

        assert result.success
        assert result.output_data == {"x": 1}
        assert result.resume_after_ms == 5

    def test_delay_returns_at_once_and_asks_to_resume_later(self, registry, context):
        result = registry.execute(node("d", "delay", duration=1, unit="hours"), None, context)

        assert result.success
        assert result.resume_after_ms == 60 * 60 * 1000
        assert result.execution_time_ms < 5000

    def test_variable_delay(self, registry, context):
        context.set_variable("wait", 2)
        delay = node("d", "delay", delayType="variable", durationVariable="wait", unit="seconds")

        result = registry.execute(delay, None, context)

        assert result.success
        assert result.resume_after_ms == 2000

    def test_zero_delay_does_not_suspend(self, registry, context):
        result = registry.execute(node("d", "delay", duration=0), None, context)

        assert result.success
        assert result.resume_after_ms is None

    @pytest.mark.parametrize("duration", [-1, "soon"])
    def test_invalid_duration_fails(self, registry, context, duration):
        context.set_variable("wait", duration)
        delay = node("d", "delay", delayType="variable", durationVariable="wait")

        result = registry.execute(delay, None, context)

        assert not result.success

    def test_cancellation_skips_the_wait(self, registry, context):
        context.request_cancel()

        result = registry.execute(node("d", "delay", duration=1, unit="hours"), None, context)

        assert result.success
        assert result.resume_after_ms is None


class TestActionNode:
    """Test cases for action dispatch."""

    def test_action_output_becomes_node_output(self, registry, context):
        action = node("a", "action", actionType="echo", actionConfig={"payload": {"status": 200}})

        result = registry.execute(action, {"x": 5}, context)

        assert result.success
        assert result.output_data == {"status": 200}

    def test_unknown_action_type_fails(self, registry, context):
        result = registry.execute(node("a", "action", actionType="teleport"), None, context)

        assert not result.success
        assert "Unsupported action type: teleport" in result.error

    def test_raising_action_becomes_failure(self, registry, context):
        def broken(config, input_data):
            raise RuntimeError("upstream exploded")

        registry.action_registry.register_action("broken", broken)

        result = registry.execute(node("a", "action", actionType="broken"), None, context)

        assert not result.success
        assert result.error == "upstream exploded"

    def test_actions_may_read_variables(self, registry, context):
        def reader(config, input_data, variables=None):
            return variables["limit"]

        registry.action_registry.register_action("reader", reader)

        result = registry.execute(node("a", "action", actionType="reader"), None, context)

        assert result.output_data == 10


class TestCustomHandlers:

    def test_registered_handler_replaces_builtin(self, registry, context):
        registry.register_handler(NodeType.DELAY, lambda n, data, ctx: NodeOutput(data="custom"))

        result = registry.execute(node("d", "delay"), None, context)

        assert result.output_data == "custom"


def test_get_nested_value():
    data = {"a": {"b": [10, {"c": "deep"}]}}

    assert get_nested_value(data, "a.b.1.c") == "deep"
    assert get_nested_value(data, "a.b.0") == 10
    assert get_nested_value(data, "a.missing", "fallback") == "fallback"
    assert get_nested_value(data, "") is data
