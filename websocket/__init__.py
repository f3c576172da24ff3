"""
WebSocket module for the challenge set explorer.

Pushes view updates (filter changes, sample deletions, closed views) to
subscribed clients.
"""

from .manager import (
    MessageType,
    WebSocketManager,
    WebSocketMessage,
    notify_sample_deleted,
    notify_view_closed,
    notify_view_updated,
    view_channel,
    ws_manager,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "ws_manager",
    "view_channel",
    "notify_view_updated",
    "notify_view_closed",
    "notify_sample_deleted",
]
