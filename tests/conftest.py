"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from flowengine.core.actions import ActionRegistry
from flowengine.core.recorder import InMemoryExecutionRecorder, SqlExecutionRecorder
from flowengine.core.supervisor import RunSupervisor
from flowengine.models.core import Connection, Flow, Node, NodeType
from flowengine.storage.database import create_database_engine, create_tables, drop_tables

# Generous bound for background runs; tests normally finish in milliseconds
WAIT_TIMEOUT = 10.0


def node(node_id: str, node_type: str, **config) -> Node:
    """Build a node; keyword arguments become its config."""
    return Node(id=node_id, type=NodeType(node_type), name=node_id.title(), config=config)


def connect(source: str, target: str, handle: Optional[str] = None) -> Connection:
    return Connection(
        id=f"{source}-{target}", sourceNodeId=source, targetNodeId=target, sourceHandle=handle
    )


def linear_flow(flow_id: str, *middle: Node, **flow_fields) -> Flow:
    """start -> middle... -> end."""
    nodes = [node("start", "start"), *middle, node("end", "end")]
    ids = [n.id for n in nodes]
    connections = [connect(a, b) for a, b in zip(ids, ids[1:])]
    return Flow(id=flow_id, name=flow_id, nodes=nodes, connections=connections, **flow_fields)


class RecordingPublisher:
    """Publisher capturing every event for assertions."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.events.append({"topic": topic, **payload})

    def topics_for(self, execution_id: str) -> List[str]:
        return [e["topic"] for e in self.events if e.get("executionId") == execution_id]

    def statuses_for(self, execution_id: str) -> List[str]:
        return [
            e["status"] for e in self.events
            if e.get("executionId") == execution_id and e["topic"] == "execution_status"
        ]


def echo_action(config: Dict[str, Any], input_data: Any) -> Any:
    """Stub action returning its configured payload, or the input."""
    return config.get("payload", input_data)


@pytest.fixture
def action_registry():
    """ActionRegistry with a stub http_request action."""
    registry = ActionRegistry()
    registry.register_action("http_request", echo_action, "Stubbed HTTP action")
    return registry


@pytest.fixture
def recorder():
    return InMemoryExecutionRecorder()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def supervisor(action_registry, recorder, publisher):
    """RunSupervisor over in-memory storage, shut down after the test."""
    run_supervisor = RunSupervisor(
        action_registry=action_registry,
        recorder=recorder,
        publisher=publisher,
        max_concurrent_executions=4,
    )
    yield run_supervisor
    run_supervisor.shutdown(wait=True)


@pytest.fixture
def temp_db_engine():
    """Engine bound to a temporary SQLite file with all tables created."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    engine = create_database_engine(f"sqlite:///{db_path}")
    create_tables(engine)

    yield engine

    drop_tables(engine)
    engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def sql_recorder(temp_db_engine):
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=temp_db_engine)
    return SqlExecutionRecorder(session_factory=session_factory)
