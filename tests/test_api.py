"""Tests for the REST and WebSocket API."""

import time

import pytest
from fastapi.testclient import TestClient

from flowengine.config import get_testing_config
from flowengine.factory import create_app
from flowengine.models.core import Flow
from flowengine.storage.database import reset_database_engine

from conftest import WAIT_TIMEOUT, linear_flow, node

TERMINAL = {"completed", "failed", "cancelled"}


def flow_payload(flow):
    return flow.model_dump(mode="json", by_alias=True)


@pytest.fixture
def client(tmp_path):
    """TestClient over an application backed by a temporary SQLite file."""
    config = get_testing_config().model_copy(
        update={"database_url": f"sqlite:///{tmp_path / 'api.db'}"}
    )
    app = create_app(config)
    with TestClient(app) as test_client:
        yield test_client
    reset_database_engine()


def start(client, flow, input_data=None):
    response = client.post(
        "/api/v1/executions", json={"flow": flow_payload(flow), "inputData": input_data}
    )
    assert response.status_code == 202, response.text
    return response.json()["execution_id"]


def wait_for_terminal(client, execution_id):
    deadline = time.monotonic() + WAIT_TIMEOUT
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/executions/{execution_id}").json()
        if body["status"] in TERMINAL:
            return body
        time.sleep(0.02)
    pytest.fail(f"execution {execution_id} did not finish")


class TestHealthEndpoints:
    """Test cases for health endpoints."""

    def test_root_and_health(self, client):
        assert client.get("/").status_code == 200

        health = client.get("/health").json()

        assert health["status"] == "healthy"
        assert health["active_executions"] == 0

    def test_readiness(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["ready"] is True


class TestExecutionEndpoints:
    """Test cases for the execution endpoints."""

    def test_execute_and_poll(self, client):
        flow = linear_flow(
            "api-flow",
            node("set", "variable", operation="set", variableName="seen", value=True),
        )

        execution_id = start(client, flow, {"order": 42})
        body = wait_for_terminal(client, execution_id)

        assert body["status"] == "completed"
        assert body["output_data"] == {"order": 42}
        assert body["execution_path"] == ["start", "set", "end"]

    def test_logs_are_returned_in_order(self, client):
        execution_id = start(client, linear_flow("logged"))
        wait_for_terminal(client, execution_id)

        response = client.get(f"/api/v1/executions/{execution_id}/logs")
        errors = client.get(f"/api/v1/executions/{execution_id}/logs", params={"level": "error"})

        assert response.status_code == 200
        messages = [entry["message"] for entry in response.json()]
        assert messages[0] == "Flow execution started"
        assert messages[-1] == "Flow execution completed"
        assert errors.json() == []

    def test_failed_run_reports_error_detail(self, client):
        flow = linear_flow("unknown-action", node("call", "action", actionType="teleport"))

        execution_id = start(client, flow)
        body = wait_for_terminal(client, execution_id)

        assert body["status"] == "failed"
        assert body["error_detail"]["code"] == "NodeExecutionError"
        assert body["error_detail"]["node_id"] == "call"

    def test_invalid_flow_is_rejected(self, client):
        flow = Flow(id="no-end", nodes=[node("start", "start")])

        response = client.post("/api/v1/executions", json={"flow": flow_payload(flow)})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "ValidationError"
        assert client.get("/api/v1/executions").json()["total"] == 0

    def test_unknown_execution_is_404(self, client):
        assert client.get("/api/v1/executions/missing").status_code == 404
        assert client.get("/api/v1/executions/missing/logs").status_code == 404
        assert client.post("/api/v1/executions/missing/cancel").status_code == 404

    def test_cancel_finished_execution_conflicts(self, client):
        execution_id = start(client, linear_flow("quick"))
        wait_for_terminal(client, execution_id)

        response = client.post(f"/api/v1/executions/{execution_id}/cancel")

        assert response.status_code == 409

    def test_cancel_running_execution(self, client):
        flow = linear_flow("slow", node("wait", "delay", duration=1, unit="hours"))
        execution_id = start(client, flow)

        response = client.post(f"/api/v1/executions/{execution_id}/cancel")
        body = wait_for_terminal(client, execution_id)

        assert response.status_code == 200
        assert body["status"] == "cancelled"

    def test_retry_and_list(self, client):
        flow = linear_flow("retried")
        first = start(client, flow, {"n": 1})
        wait_for_terminal(client, first)

        response = client.post(f"/api/v1/executions/{first}/retry", json={"flow": flow_payload(flow)})
        second = response.json()["execution_id"]
        body = wait_for_terminal(client, second)

        assert response.status_code == 202
        assert body["input_data"] == {"n": 1}
        listing = client.get("/api/v1/executions", params={"flow_id": "retried", "status": "completed"}).json()
        assert listing["total"] == 2
        stats = client.get("/api/v1/executions/stats", params={"flow_id": "retried"}).json()
        assert stats["status_breakdown"] == {"completed": 2}

    def test_cleanup_keeps_recent_records(self, client):
        execution_id = start(client, linear_flow("recent"))
        wait_for_terminal(client, execution_id)

        response = client.delete("/api/v1/executions", params={"max_age_hours": 24})

        assert response.json() == {"deleted": 0}

    def test_list_actions(self, client):
        actions = client.get("/api/v1/actions").json()

        assert {"http_request", "file_operation", "data_transform", "notification", "custom_script"} <= set(actions)


class TestMonitorWebSocket:
    """Test cases for the monitoring WebSocket."""

    def test_subscribe_and_receive_progress(self, client):
        with client.websocket_connect("/api/v1/ws/monitor") as websocket:
            assert websocket.receive_json()["event_type"] == "connection_established"

            websocket.send_json({"action": "subscribe", "execution_id": "*"})
            assert websocket.receive_json()["event_type"] == "subscription_confirmed"

            execution_id = start(client, linear_flow("watched"))

            seen = []
            while "run_completed" not in seen:
                event = websocket.receive_json()
                if event["execution_id"] == execution_id:
                    seen.append(event["event_type"])

        assert seen[0] == "execution_status"
        assert "node_entered" in seen

    def test_ping_and_unknown_action(self, client):
        with client.websocket_connect("/api/v1/ws/monitor") as websocket:
            websocket.receive_json()

            websocket.send_json({"action": "ping"})
            assert websocket.receive_json()["event_type"] == "pong"

            websocket.send_json({"action": "dance"})
            assert websocket.receive_json()["event_type"] == "error"
