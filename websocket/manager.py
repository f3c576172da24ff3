"""
WebSocket connection manager for the challenge set explorer.

Clients subscribe to ``view:<view_id>`` channels and receive a message every
time the filter state of that view changes, a sample is deleted or the view
is closed. Messages only carry a summary; clients fetch the full snapshot
or plot data over HTTP.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import orjson
from fastapi import WebSocket

from api.shared.logger import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Types of WebSocket messages."""

    # View-related messages
    VIEW_UPDATED = "view_updated"
    VIEW_CLOSED = "view_closed"
    SAMPLE_DELETED = "sample_deleted"

    # System messages
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


def view_channel(view_id: str) -> str:
    return f"view:{view_id}"


@dataclass
class WebSocketMessage:
    """Represents a WebSocket message."""

    type: MessageType
    channel: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        return orjson.dumps({
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        }).decode()

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = orjson.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("Message must be a JSON object")
        return cls(
            type=MessageType(data.get("type", "error")),
            channel=data.get("channel", ""),
            data=data.get("data") or {},
            timestamp=data.get("timestamp"),
        )


class WebSocketManager:
    """
    Manages WebSocket connections and their view channel subscriptions.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()

        # Channel subscriptions: channel -> set of WebSockets
        self._channels: Dict[str, Set[WebSocket]] = {}

        # WebSocket -> subscribed channels
        self._subscriptions: Dict[WebSocket, Set[str]] = {}

        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket connection
            client_id: Optional client identifier
        """
        await websocket.accept()

        async with self._lock:
            self._connections.add(websocket)
            self._subscriptions[websocket] = set()

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.CONNECTED,
                channel="system",
                data={"client_id": client_id},
            ),
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for channel in self._subscriptions.pop(websocket, set()):
                subscribers = self._channels.get(channel)
                if subscribers is not None:
                    subscribers.discard(websocket)
                    if not subscribers:
                        del self._channels[channel]
            self._connections.discard(websocket)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            self._channels.setdefault(channel, set()).add(websocket)
            self._subscriptions.setdefault(websocket, set()).add(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.SUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            subscribers = self._channels.get(channel)
            if subscribers is not None:
                subscribers.discard(websocket)
                if not subscribers:
                    del self._channels[channel]
            self._subscriptions.get(websocket, set()).discard(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.UNSUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def send_to_connection(self, websocket: WebSocket, message: WebSocketMessage) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await websocket.send_text(message.to_json())
            return True
        except Exception as e:
            logger.warning("Error sending WebSocket message: %s", e)
            await self.disconnect(websocket)
            return False

    async def broadcast_to_channel(self, channel: str, message: WebSocketMessage) -> int:
        """
        Broadcast a message to all subscribers of a channel.

        Returns:
            Number of connections that received the message
        """
        async with self._lock:
            subscribers = list(self._channels.get(channel, set()))

        sent_count = 0
        disconnected: List[WebSocket] = []
        payload = message.to_json()

        for websocket in subscribers:
            try:
                await websocket.send_text(payload)
                sent_count += 1
            except Exception:
                disconnected.append(websocket)

        # Clean up disconnected clients
        for ws in disconnected:
            await self.disconnect(ws)

        return sent_count

    def get_channel_subscribers(self, channel: str) -> int:
        return len(self._channels.get(channel, set()))

    def get_connection_count(self) -> int:
        return len(self._connections)

    async def handle_message(self, websocket: WebSocket, message_text: str) -> Optional[WebSocketMessage]:
        """
        Handle an incoming WebSocket message.

        Args:
            websocket: Source WebSocket connection
            message_text: Raw message text

        Returns:
            Response message or None
        """
        try:
            message = WebSocketMessage.from_json(message_text)
        except (orjson.JSONDecodeError, ValueError) as e:
            return WebSocketMessage(
                type=MessageType.ERROR,
                channel="system",
                data={"error": f"Invalid message format: {e}"},
            )

        if message.type == MessageType.PING:
            return WebSocketMessage(
                type=MessageType.PONG,
                channel="system",
                data={"timestamp": datetime.now().isoformat()},
            )

        channel = message.data.get("channel")
        if message.type == MessageType.SUBSCRIBE and channel:
            await self.subscribe(websocket, channel)
        elif message.type == MessageType.UNSUBSCRIBE and channel:
            await self.unsubscribe(websocket, channel)
        return None


# Global WebSocket manager instance
ws_manager = WebSocketManager()


# ============= Helper Functions for View Updates =============


async def notify_view_updated(view_id: str, summary: Dict[str, Any]) -> None:
    """
    Notify subscribers that the visible samples of a view changed.

    Args:
        view_id: View identifier
        summary: Visible count, filter tags and sample split
    """
    channel = view_channel(view_id)
    message = WebSocketMessage(
        type=MessageType.VIEW_UPDATED,
        channel=channel,
        data={"view_id": view_id, **summary},
    )
    await ws_manager.broadcast_to_channel(channel, message)


async def notify_sample_deleted(view_id: str, source: str, count: int) -> None:
    channel = view_channel(view_id)
    message = WebSocketMessage(
        type=MessageType.SAMPLE_DELETED,
        channel=channel,
        data={"view_id": view_id, "source": source, "count": count},
    )
    await ws_manager.broadcast_to_channel(channel, message)


async def notify_view_closed(view_id: str) -> None:
    channel = view_channel(view_id)
    message = WebSocketMessage(
        type=MessageType.VIEW_CLOSED,
        channel=channel,
        data={"view_id": view_id},
    )
    await ws_manager.broadcast_to_channel(channel, message)
