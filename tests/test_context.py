"""Tests for the per-execution context."""

import pytest

from flowengine.core.context import ExecutionContext
from flowengine.core.exceptions import InvalidStateTransitionError
from flowengine.models.core import ExecutionStatusEnum, Flow, FlowVariable

from conftest import linear_flow


@pytest.fixture
def flow():
    return Flow(
        id="ctx-flow",
        name="Context Flow",
        nodes=linear_flow("ctx-flow").nodes,
        connections=linear_flow("ctx-flow").connections,
        variables=[
            FlowVariable(name="items", defaultValue=[]),
            FlowVariable(name="retries", value=3),
        ],
    )


class TestExecutionContext:
    """Test cases for ExecutionContext."""

    def test_new_context_is_pending_with_seeded_variables(self, flow):
        context = ExecutionContext.new(flow, "exec-1", {"x": 1})

        assert context.status == ExecutionStatusEnum.PENDING
        assert context.variables == {"items": [], "retries": 3}
        assert context.input_data == {"x": 1}
        assert context.execution_path == []

    def test_variables_are_private_per_run(self, flow):
        """Mutable defaults are copied so runs never share them."""
        first = ExecutionContext.new(flow, "exec-1")
        second = ExecutionContext.new(flow, "exec-2")

        first.get_variable("items").append("a")

        assert second.get_variable("items") == []

    def test_record_visit_tracks_path_and_counts(self, flow):
        context = ExecutionContext.new(flow, "exec-1")

        context.record_visit("start")
        context.record_visit("a")
        context.record_visit("a")

        assert context.current_node_id == "a"
        assert context.execution_path == ["start", "a", "a"]
        assert context.visit_count("a") == 2
        assert context.visit_count("end") == 0

    def test_allowed_transitions_and_listeners(self, flow):
        context = ExecutionContext.new(flow, "exec-1")
        seen = []
        context.add_listener(lambda ctx, old, new: seen.append((old, new)))

        context.transition(ExecutionStatusEnum.RUNNING)
        context.transition(ExecutionStatusEnum.COMPLETED)

        assert seen == [
            (ExecutionStatusEnum.PENDING, ExecutionStatusEnum.RUNNING),
            (ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.COMPLETED),
        ]
        assert context.is_terminal
        assert context.completed_at is not None
        assert context.duration_ms >= 0

    def test_terminal_status_is_final(self, flow):
        context = ExecutionContext.new(flow, "exec-1")
        context.transition(ExecutionStatusEnum.CANCELLED)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            context.transition(ExecutionStatusEnum.RUNNING)

        assert exc_info.value.error_code == "InvalidStateTransition"
        assert context.status == ExecutionStatusEnum.CANCELLED

    def test_pending_cannot_complete_directly(self, flow):
        context = ExecutionContext.new(flow, "exec-1")

        with pytest.raises(InvalidStateTransitionError):
            context.transition(ExecutionStatusEnum.COMPLETED)

    def test_cancel_signal(self, flow):
        context = ExecutionContext.new(flow, "exec-1")

        assert not context.is_cancel_requested
        context.request_cancel()

        assert context.is_cancel_requested
        assert context.status == ExecutionStatusEnum.PENDING

    def test_snapshot_is_a_copy(self, flow):
        context = ExecutionContext.new(flow, "exec-1", {"x": 1})
        context.record_visit("start")

        snapshot = context.snapshot()
        context.get_variable("items").append("later")
        context.record_visit("end")

        assert snapshot.variables["items"] == []
        assert snapshot.execution_path == ["start"]
        assert snapshot.flow_id == "ctx-flow"
        assert not snapshot.is_terminal
