"""WebSocket connection manager."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """WebSocket event types."""

    # Queue events
    QUEUE_STATS_UPDATED = "queue_stats_updated"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"

    # System events
    CONNECTED = "connected"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


@dataclass
class WebSocketMessage:
    """WebSocket message structure."""

    event: EventType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(
            {
                "event": self.event.value,
                "data": self.data,
                "timestamp": self.timestamp.isoformat(),
            }
        )


@dataclass
class Connection:
    """WebSocket connection wrapper."""

    websocket: WebSocket
    connection_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)
    campaigns: set[str] = field(default_factory=set)


class ConnectionManager:
    """
    Manages dashboard WebSocket connections and per-campaign topics.

    Every publish to a campaign topic carries the next sequence number for
    that campaign. Subscribers that notice a gap ask for a resync and get a
    snapshot stamped with the current number.
    """

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._subscribers: dict[str, set[str]] = {}
        self._sequences: dict[str, int] = {}

    @property
    def connection_count(self) -> int:
        """Number of connected dashboards."""
        return len(self._connections)

    async def connect(
        self,
        websocket: WebSocket,
        connection_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> Connection:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket instance
            connection_id: Unique identifier for the connection
            metadata: Additional connection metadata

        Returns:
            Connection object
        """
        await websocket.accept()

        # A reconnect replaces the previous socket with the same id
        if connection_id in self._connections:
            self._drop(connection_id)

        connection = Connection(
            websocket=websocket,
            connection_id=connection_id,
            metadata=metadata or {},
        )
        self._connections[connection_id] = connection

        await self.send_to(
            connection_id,
            WebSocketMessage(event=EventType.CONNECTED, data={"connection_id": connection_id}),
        )

        return connection

    def _drop(self, connection_id: str) -> Connection | None:
        connection = self._connections.pop(connection_id, None)
        if connection:
            for campaign_id in connection.campaigns:
                subscribers = self._subscribers.get(campaign_id)
                if subscribers:
                    subscribers.discard(connection_id)
                    if not subscribers:
                        del self._subscribers[campaign_id]
        return connection

    async def disconnect(self, connection_id: str, websocket: WebSocket | None = None) -> None:
        """
        Remove a WebSocket connection and its subscriptions.

        When ``websocket`` is given, nothing happens unless it is still the
        socket registered under ``connection_id``.
        """
        current = self._connections.get(connection_id)
        if websocket is not None and (current is None or current.websocket is not websocket):
            return
        connection = self._drop(connection_id)
        if connection:
            try:
                await connection.websocket.close()
            except RuntimeError:
                pass  # already closed

    async def send_to(self, connection_id: str, message: WebSocketMessage) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            True if sent successfully
        """
        connection = self._connections.get(connection_id)
        if not connection:
            return False

        try:
            await connection.websocket.send_text(message.to_json())
            return True
        except Exception:
            logger.info("websocket_send_failed", connection_id=connection_id)
            await self.disconnect(connection_id, connection.websocket)
            return False

    def subscribe(self, connection_id: str, campaign_id: str) -> int:
        """Subscribe a connection to a campaign topic. Returns the current seq."""
        connection = self._connections.get(connection_id)
        if connection is None:
            raise KeyError(connection_id)
        connection.campaigns.add(campaign_id)
        self._subscribers.setdefault(campaign_id, set()).add(connection_id)
        return self.current_seq(campaign_id)

    def unsubscribe(self, connection_id: str, campaign_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection:
            connection.campaigns.discard(campaign_id)
        subscribers = self._subscribers.get(campaign_id)
        if subscribers:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._subscribers[campaign_id]

    def subscribers_of(self, campaign_id: str) -> list[str]:
        return sorted(self._subscribers.get(campaign_id, ()))

    def current_seq(self, campaign_id: str) -> int:
        return self._sequences.get(campaign_id, 0)

    async def publish_to_campaign(
        self,
        campaign_id: str,
        event: EventType,
        data: dict[str, Any],
    ) -> int:
        """
        Publish to every subscriber of a campaign with the next seq.

        Returns:
            Number of subscribers that received the message
        """
        seq = self._sequences.get(campaign_id, 0) + 1
        self._sequences[campaign_id] = seq

        message = WebSocketMessage(event=event, data={**data, "seq": seq})
        sent_count = 0
        failed = []

        for connection_id in list(self._subscribers.get(campaign_id, ())):
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                await connection.websocket.send_text(message.to_json())
                sent_count += 1
            except Exception:
                failed.append(connection)

        for connection in failed:
            await self.disconnect(connection.connection_id, connection.websocket)

        return sent_count

    def get_connection(self, connection_id: str) -> Connection | None:
        """Get a connection by its id."""
        return self._connections.get(connection_id)

    def reset(self) -> None:
        """Forget every connection and sequence (for testing)."""
        self._connections.clear()
        self._subscribers.clear()
        self._sequences.clear()


# Global connection manager instance
manager = ConnectionManager()
