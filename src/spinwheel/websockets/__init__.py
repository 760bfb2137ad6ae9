"""WebSocket utilities for the spinwheel service."""

from .client import BaseWebSocketClient, ConnectionEvent, ConnectionState

__all__ = ["BaseWebSocketClient", "ConnectionEvent", "ConnectionState"]
