"""Fan-out of spin outcomes to connected overlay clients."""

import asyncio
import json
from typing import Protocol

from .error_boundary import safe_handler
from .events import Outcome
from .logger import get_logger

logger = get_logger(__name__)


class OverlayConnection(Protocol):
    """The slice of aiohttp's WebSocketResponse the broadcaster relies on."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...

    async def close(self) -> bool: ...


class OutcomeBroadcaster:
    """Best-effort pub/sub of outcomes to overlay sockets.

    No replay buffer: a client connecting after a spin never sees it.
    """

    def __init__(self):
        self._connections: set[OverlayConnection] = set()
        self._pending: set[asyncio.Task] = set()

    def add(self, connection: OverlayConnection) -> None:
        self._connections.add(connection)
        logger.info("Overlay client connected", connections=len(self._connections))

    def discard(self, connection: OverlayConnection) -> None:
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info("Overlay client disconnected", connections=len(self._connections))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def broadcast(self, outcome: Outcome) -> list[asyncio.Task]:
        """
        Send one outcome to every open connection.

        Returns immediately after scheduling one independent send per
        connection. Send failures are logged and never raised.

        Returns:
            list[asyncio.Task]: One delivery task per open connection
        """
        message = json.dumps(outcome.to_payload())

        # Snapshot so connects/disconnects during delivery don't disturb iteration
        targets = [connection for connection in list(self._connections) if not connection.closed]

        tasks = []
        for connection in targets:
            task = asyncio.create_task(self._deliver(connection, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)

        logger.info(
            "Broadcast spin",
            username=outcome.display_name,
            roll=outcome.roll,
            is_win=outcome.is_win,
            recipients=len(tasks),
        )
        return tasks

    @safe_handler
    async def _deliver(self, connection: OverlayConnection, message: str) -> None:
        if connection.closed:
            # Closed between snapshot and send
            self.discard(connection)
            return
        await connection.send_str(message)

    async def close_all(self) -> None:
        """Close every overlay connection. Used at shutdown."""
        connections = list(self._connections)
        self._connections.clear()

        for task in list(self._pending):
            task.cancel()

        for connection in connections:
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Error closing overlay connection", error=str(e))
