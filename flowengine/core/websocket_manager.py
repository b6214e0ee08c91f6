"""WebSocket Manager: publishes execution progress to monitoring clients."""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Dict, Set, Any, Optional
from queue import Queue, Empty
from fastapi import WebSocket, WebSocketDisconnect

from ..models.core import utc_now
from .logging import get_logger

logger = get_logger(__name__)

# Subscription key receiving events of every execution
ALL_EXECUTIONS = "*"


class WebSocketConnection:
    """Represents a WebSocket connection with metadata."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at: datetime = utc_now()
        self.subscribed_executions: Set[str] = set()
        self.is_active = True


class WebSocketManager:
    """
    Manager for WebSocket connections and event broadcasting.

    ``publish`` is called from worker threads and only enqueues; an asyncio
    task started with ``start_broadcast_processor`` drains the queue on the
    event loop and sends to subscribers.
    """

    def __init__(self, poll_interval: float = 0.05):
        self._connections: Dict[str, WebSocketConnection] = {}
        self._subscribers: Dict[str, Set[str]] = {}  # execution_id -> connection_ids
        self._broadcast_lock = asyncio.Lock()

        self._broadcast_queue: Queue = Queue()
        self._queue_processor_task: Optional[asyncio.Task] = None
        self._processing_broadcasts = False
        self._poll_interval = poll_interval

        logger.info("WebSocketManager initialized")

    # Publisher capability

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        """Queue an event for broadcasting; safe to call from any thread."""
        try:
            self._broadcast_queue.put((topic, payload))
        except Exception as e:
            logger.error(f"Failed to queue {topic} event: {str(e)}")

    def pending_event_count(self) -> int:
        return self._broadcast_queue.qsize()

    # Connections

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept a new WebSocket connection.

        Returns:
            Connection ID for the new connection
        """
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = WebSocketConnection(websocket, connection_id)

        logger.info(f"WebSocket connection established: {connection_id}")

        await self._send_to_connection(connection_id, {
            "event_type": "connection_established",
            "connection_id": connection_id,
            "timestamp": utc_now().isoformat(),
        })

        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Handle WebSocket disconnection and cleanup."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return

        connection.is_active = False
        for execution_id in list(connection.subscribed_executions):
            self._remove_subscription(connection_id, execution_id)

        del self._connections[connection_id]
        logger.info(f"WebSocket connection disconnected and cleaned up: {connection_id}")

    async def subscribe(self, connection_id: str, execution_id: str) -> bool:
        """
        Subscribe a connection to the events of one execution, or of all
        executions with ``"*"``.

        Returns:
            True if subscription was successful, False otherwise
        """
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            logger.warning(f"Attempted to subscribe unknown or inactive connection: {connection_id}")
            return False

        connection.subscribed_executions.add(execution_id)
        self._subscribers.setdefault(execution_id, set()).add(connection_id)

        logger.info(f"Connection {connection_id} subscribed to execution {execution_id}")

        await self._send_to_connection(connection_id, {
            "event_type": "subscription_confirmed",
            "execution_id": execution_id,
            "timestamp": utc_now().isoformat(),
        })
        return True

    async def unsubscribe(self, connection_id: str, execution_id: str) -> bool:
        if connection_id not in self._connections:
            return False
        self._remove_subscription(connection_id, execution_id)
        logger.info(f"Connection {connection_id} unsubscribed from execution {execution_id}")
        return True

    def _remove_subscription(self, connection_id: str, execution_id: str):
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.subscribed_executions.discard(execution_id)

        subscribers = self._subscribers.get(execution_id)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._subscribers[execution_id]

    # Broadcasting

    async def broadcast(self, topic: str, payload: Dict[str, Any]) -> int:
        """
        Send one event to the subscribers of its execution.

        Returns:
            Number of connections the event was delivered to
        """
        execution_id = payload.get("executionId")
        targets = set(self._subscribers.get(ALL_EXECUTIONS, set()))
        if execution_id:
            targets |= self._subscribers.get(execution_id, set())
        if not targets:
            return 0

        event = {
            "event_type": topic,
            "execution_id": execution_id,
            "timestamp": utc_now().isoformat(),
            "data": payload,
        }

        delivered = 0
        async with self._broadcast_lock:
            disconnected = []
            for connection_id in targets:
                if await self._send_to_connection(connection_id, event):
                    delivered += 1
                else:
                    disconnected.append(connection_id)

            for connection_id in disconnected:
                await self.disconnect(connection_id)

        logger.debug(f"Broadcasted {topic} for execution {execution_id} to {delivered} subscribers")
        return delivered

    async def _send_to_connection(self, connection_id: str, data: Dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            return False

        try:
            await connection.websocket.send_text(json.dumps(data, default=str))
            return True
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected during send: {connection_id}")
            connection.is_active = False
            return False
        except Exception as e:
            logger.error(f"Error sending WebSocket message to {connection_id}: {str(e)}")
            connection.is_active = False
            return False

    async def send_to_connection(self, connection_id: str, data: Dict[str, Any]) -> bool:
        """Public method to send data to a specific connection."""
        return await self._send_to_connection(connection_id, data)

    def get_connection_count(self) -> int:
        return len([conn for conn in self._connections.values() if conn.is_active])

    def get_subscriber_count(self, execution_id: str) -> int:
        return len(self._subscribers.get(execution_id, set()))

    # Queue processing

    def start_broadcast_processor(self):
        """Start the broadcast queue processor on the running event loop."""
        if not self._processing_broadcasts:
            self._processing_broadcasts = True
            self._queue_processor_task = asyncio.create_task(self._process_broadcast_queue())
            logger.info("WebSocket broadcast processor started")

    def stop_broadcast_processor(self):
        """Stop the broadcast queue processor."""
        self._processing_broadcasts = False
        if self._queue_processor_task:
            self._queue_processor_task.cancel()
            self._queue_processor_task = None
            logger.info("WebSocket broadcast processor stopped")

    async def process_pending(self) -> int:
        """Broadcast every queued event; returns how many were processed."""
        processed = 0
        while True:
            try:
                topic, payload = self._broadcast_queue.get_nowait()
            except Empty:
                return processed
            try:
                await self.broadcast(topic, payload)
            finally:
                self._broadcast_queue.task_done()
            processed += 1

    async def _process_broadcast_queue(self):
        while self._processing_broadcasts:
            try:
                if not await self.process_pending():
                    await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error processing broadcast queue: {str(e)}")
                await asyncio.sleep(self._poll_interval)
