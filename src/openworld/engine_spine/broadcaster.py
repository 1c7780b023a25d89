"""Best-effort event fan-out for lifecycle status and decoded stream events.

Publishing never fails the publisher: a subscriber that raises is logged and
skipped, and an SSE connection whose buffer overflows is disconnected.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Protocol

logger = logging.getLogger(__name__)

STATUS_TOPIC = "engine.status"
CHAT_TOKEN_TOPIC = "chat.token"
PULL_PROGRESS_TOPIC = "model.pull_progress"

# Ring buffer size per connection
MAX_BUFFER_SIZE = 10_000

Subscriber = Callable[[dict[str, Any]], None]


class EventSink(Protocol):
    """Anything accepting best-effort event publications."""

    def publish(self, event_type: str, payload: dict[str, Any]) -> int: ...


@dataclass
class Connection:
    """Active SSE connection."""

    id: str
    queue: asyncio.Queue[dict[str, Any]] = field(
        default_factory=lambda: asyncio.Queue(maxsize=MAX_BUFFER_SIZE)
    )
    last_sequence: int = 0
    is_closed: bool = False


class EventBroadcaster:
    """Fans events out to callback subscribers and SSE connections.

    Each published event is wrapped as::

        {"event_type": ..., "sequence_number": ..., "payload": {...}}

    Sequence numbers are assigned under a lock, so within one publisher
    events keep their publication order.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._sequence = 0
        self._connection_counter = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def add_connection(self, connection_id: str | None = None) -> Connection:
        """Add a new SSE connection.

        Args:
            connection_id: Optional ID, generated if not provided

        Returns:
            Connection object for receiving events
        """
        with self._lock:
            if connection_id is None:
                self._connection_counter += 1
                connection_id = f"conn_{self._connection_counter}"

            conn = Connection(id=connection_id)
            self._connections[connection_id] = conn
        logger.debug(f"Added connection: {connection_id}")
        return conn

    def remove_connection(self, connection_id: str) -> None:
        """Remove an SSE connection."""
        with self._lock:
            conn = self._connections.pop(connection_id, None)
        if conn is not None:
            conn.is_closed = True
            logger.debug(f"Removed connection: {connection_id}")

    def publish(self, event_type: str, payload: dict[str, Any]) -> int:
        """Deliver an event to every subscriber and connection.

        Delivery failures are logged and dropped; they never propagate.

        Returns:
            Number of subscribers and connections that received the event
        """
        with self._lock:
            self._sequence += 1
            event = {
                "event_type": event_type,
                "sequence_number": self._sequence,
                "payload": payload,
            }
            subscribers = list(self._subscribers)
            connections = list(self._connections.values())

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Subscriber failed on {event_type}: {e}")

        to_disconnect = []
        for conn in connections:
            if conn.is_closed:
                continue
            try:
                conn.queue.put_nowait(event)
                conn.last_sequence = event["sequence_number"]
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Connection {conn.id} buffer full, disconnecting")
                to_disconnect.append(conn.id)

        for conn_id in to_disconnect:
            self.remove_connection(conn_id)

        return delivered

    async def get_events(
        self,
        connection: Connection,
        timeout: float = 30.0,
    ) -> AsyncIterator[dict[str, Any]]:
        """Async iterator for connection events.

        Args:
            connection: Connection object
            timeout: How long to wait before re-checking the connection

        Yields:
            Event dictionaries
        """
        while not connection.is_closed:
            try:
                event = await asyncio.wait_for(
                    connection.queue.get(),
                    timeout=timeout,
                )
                yield event
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    def get_connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._connections)
