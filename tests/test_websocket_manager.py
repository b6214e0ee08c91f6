"""Tests for the WebSocket manager."""

import asyncio
import json

from flowengine.core.websocket_manager import ALL_EXECUTIONS, WebSocketManager


class FakeWebSocket:
    """Collects sent frames; optionally fails every send."""

    def __init__(self, fail=False):
        self.accepted = False
        self.fail = fail
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def event_types(self):
        return [message["event_type"] for message in self.sent]


def run(coroutine):
    return asyncio.run(coroutine)


class TestWebSocketManager:
    """Test cases for WebSocketManager."""

    def test_connect_and_subscribe(self):
        manager = WebSocketManager()
        websocket = FakeWebSocket()

        async def scenario():
            connection_id = await manager.connect(websocket)
            await manager.subscribe(connection_id, "exec-1")
            return connection_id

        run(scenario())

        assert websocket.accepted
        assert websocket.event_types() == ["connection_established", "subscription_confirmed"]
        assert manager.get_connection_count() == 1
        assert manager.get_subscriber_count("exec-1") == 1

    def test_published_events_reach_matching_subscribers(self):
        manager = WebSocketManager()
        watcher = FakeWebSocket()
        everything = FakeWebSocket()
        bystander = FakeWebSocket()

        async def scenario():
            await manager.subscribe(await manager.connect(watcher), "exec-1")
            await manager.subscribe(await manager.connect(everything), ALL_EXECUTIONS)
            await manager.subscribe(await manager.connect(bystander), "exec-2")

            manager.publish("node_entered", {"executionId": "exec-1", "nodeId": "start"})
            manager.publish("node_entered", {"executionId": "exec-3", "nodeId": "start"})
            return await manager.process_pending()

        processed = run(scenario())

        assert processed == 2
        assert manager.pending_event_count() == 0
        assert watcher.event_types()[-1] == "node_entered"
        assert watcher.sent[-1]["execution_id"] == "exec-1"
        assert watcher.sent[-1]["data"]["nodeId"] == "start"
        assert everything.event_types().count("node_entered") == 2
        assert "node_entered" not in bystander.event_types()

    def test_failed_connections_are_dropped(self):
        manager = WebSocketManager()
        healthy = FakeWebSocket()
        broken = FakeWebSocket()

        async def scenario():
            await manager.subscribe(await manager.connect(healthy), "exec-1")
            broken_id = await manager.connect(broken)
            await manager.subscribe(broken_id, "exec-1")
            broken.fail = True
            return await manager.broadcast("execution_status", {"executionId": "exec-1", "status": "running"})

        delivered = run(scenario())

        assert delivered == 1
        assert manager.get_connection_count() == 1
        assert manager.get_subscriber_count("exec-1") == 1

    def test_unsubscribe_and_disconnect(self):
        manager = WebSocketManager()
        websocket = FakeWebSocket()

        async def scenario():
            connection_id = await manager.connect(websocket)
            await manager.subscribe(connection_id, "exec-1")
            await manager.unsubscribe(connection_id, "exec-1")
            delivered = await manager.broadcast("node_entered", {"executionId": "exec-1"})
            await manager.disconnect(connection_id)
            return delivered

        assert run(scenario()) == 0
        assert manager.get_subscriber_count("exec-1") == 0
        assert manager.get_connection_count() == 0
