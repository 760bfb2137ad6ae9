"""OBS WebSocket connection.

Spins never go through OBS. The connection is held open and its state is
reported on /health; losing it does not affect redemptions.

obsws_python is a blocking client, so every call runs in a worker thread.
"""

import asyncio
import logging

import obsws_python as obs
from obsws_python.error import OBSSDKError

from .exceptions import ConnectionLost
from .logger import get_logger
from .websockets import BaseWebSocketClient

logger = get_logger(__name__)

# Refused connections are expected while OBS is closed; they are logged here instead
logging.getLogger("obsws_python.baseclient").setLevel(logging.CRITICAL)

# One attempt plus five retries, waiting 5s, 10s, 15s, 20s, 25s between them
MAX_CONNECT_ATTEMPTS = 6
RETRY_DELAY_STEP = 5.0
REQUEST_TIMEOUT = 5


class OBSClient(BaseWebSocketClient):
    """obs-websocket client that polls OBS to notice when it goes away."""

    def __init__(self, host: str, port: int, password: str, poll_interval: float = 10.0, **kwargs):
        kwargs.setdefault("max_reconnect_attempts", MAX_CONNECT_ATTEMPTS)
        kwargs.setdefault("reconnect_delay_base", RETRY_DELAY_STEP)
        super().__init__(f"ws://{host}:{port}", **kwargs)
        self.host = host
        self.port = port
        self.password = password
        self.poll_interval = poll_interval

        self._client: obs.ReqClient | None = None
        self.obs_version: str | None = None
        self.rpc_version: int | None = None

    def _next_delay(self) -> float:
        # Linear: the nth retry waits n * 5s
        return self.reconnect_delay_base * self._reconnect_attempts

    async def _do_connect(self) -> bool:
        try:
            self._client = await asyncio.to_thread(
                obs.ReqClient, host=self.host, port=self.port, password=self.password, timeout=REQUEST_TIMEOUT
            )
        except OBSSDKError as e:
            logger.error(
                f"OBS rejected the connection: {e}. Check the WebSocket server password "
                "(Tools > WebSocket Server Settings)",
                url=self.url,
            )
            return False

        version = await asyncio.to_thread(self._client.get_version)
        self.obs_version = version.obs_version
        self.rpc_version = version.rpc_version
        logger.info("OBS WebSocket identified successfully", obs_version=self.obs_version, rpc_version=self.rpc_version)
        return True

    async def _do_disconnect(self):
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await asyncio.to_thread(client.disconnect)
        except Exception as e:
            logger.debug("Error closing OBS connection", error=str(e))

    async def _do_listen(self):
        while self._client is not None:
            await asyncio.sleep(self.poll_interval)
            try:
                await asyncio.to_thread(self._client.get_version)
            except Exception as e:
                await self._do_disconnect()
                raise ConnectionLost(f"OBS stopped answering: {e}") from e

        raise ConnectionLost("OBS connection closed")

    def get_status(self) -> dict:
        status = super().get_status()
        status["obs_version"] = self.obs_version
        return status
