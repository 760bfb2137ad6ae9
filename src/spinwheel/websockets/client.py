"""Reconnecting base class for the service's outbound WebSocket connections.

Subclasses (the OBS connection) only implement ``_do_connect``,
``_do_disconnect`` and ``_do_listen``. Retries, backoff, the failure
breaker and keepalives live here.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..exceptions import ConnectionLost
from ..logger import get_logger

logger = get_logger(__name__)

MAX_HEARTBEAT_FAILURES = 3


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionEvent:
    """Transition from one ConnectionState to another."""

    def __init__(self, old_state: ConnectionState, new_state: ConnectionState, error: Exception | None = None):
        self.old_state = old_state
        self.new_state = new_state
        self.error = error
        self.timestamp = time.time()


@dataclass
class _FailureBreaker:
    """Stops connect attempts for a while after too many consecutive failures."""

    threshold: int
    cooldown: float
    failures: int = 0
    open_until: float = 0.0
    trips: int = 0

    def is_open(self) -> bool:
        if not self.open_until:
            return False
        if time.time() < self.open_until:
            return True
        # Cooldown elapsed; allow a fresh run of attempts
        self.failures = 0
        self.open_until = 0.0
        return False

    def failure(self) -> bool:
        """Count a failure. Returns True if this one opened the breaker."""
        self.failures += 1
        if self.failures < self.threshold or self.open_until:
            return False
        self.open_until = time.time() + self.cooldown
        self.trips += 1
        return True

    def success(self) -> None:
        self.failures = 0
        self.open_until = 0.0


class BaseWebSocketClient(ABC):
    """Connect, listen and reconnect lifecycle for a long-lived connection."""

    def __init__(
        self,
        url: str,
        max_reconnect_attempts: int = 10,
        reconnect_delay_base: float = 1.0,
        reconnect_delay_cap: float = 60.0,
        heartbeat_interval: float = 30.0,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: float = 300.0,
    ):
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_base = reconnect_delay_base
        self.reconnect_delay_cap = reconnect_delay_cap
        self.heartbeat_interval = heartbeat_interval

        self._breaker = _FailureBreaker(circuit_breaker_threshold, circuit_breaker_timeout)
        self._connection_state = ConnectionState.DISCONNECTED
        self._state_listeners: list[Callable[[ConnectionEvent], None]] = []
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._reconnect_delay = reconnect_delay_base

        self._heartbeat_task: asyncio.Task | None = None
        self._last_heartbeat = 0.0
        self._background_tasks: set[asyncio.Task] = set()
        self._connection_lock = asyncio.Lock()

        self.total_reconnects = 0
        self.successful_connects = 0

    @abstractmethod
    async def _do_connect(self) -> bool:
        """One connection attempt, including any protocol handshake. True on success."""

    @abstractmethod
    async def _do_disconnect(self):
        """Close the underlying socket."""

    @abstractmethod
    async def _do_listen(self):
        """Read until the connection drops, then raise ``ConnectionLost``."""

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def is_connected(self) -> bool:
        return self._connection_state is ConnectionState.CONNECTED

    @property
    def circuit_breaker_trips(self) -> int:
        return self._breaker.trips

    def on_connection_change(self, callback: Callable[[ConnectionEvent], None]):
        self._state_listeners.append(callback)

    def _set_state(self, new_state: ConnectionState, error: Exception | None = None):
        old_state = self._connection_state
        if new_state is old_state:
            return
        self._connection_state = new_state

        event = ConnectionEvent(old_state, new_state, error)
        for listener in self._state_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error("Connection state listener failed", url=self.url, error=str(e))

    def _next_delay(self) -> float:
        """Current backoff plus up to 10% jitter; doubles the backoff for next time."""
        delay = self._reconnect_delay + random.uniform(0, 0.1) * self._reconnect_delay
        self._reconnect_delay = min(self._reconnect_delay * 2, self.reconnect_delay_cap)
        return delay

    async def connect(self) -> bool:
        """Try to connect up to ``max_reconnect_attempts`` times with exponential backoff."""
        async with self._connection_lock:
            if self._breaker.is_open():
                logger.warning("Skipping connect, breaker open", url=self.url)
                self._set_state(ConnectionState.FAILED)
                return False

            self._set_state(ConnectionState.CONNECTING)
            self._reconnect_delay = self.reconnect_delay_base

            for attempt in range(1, self.max_reconnect_attempts + 1):
                self._reconnect_attempts = attempt
                logger.info("Connecting", url=self.url, attempt=attempt, max_attempts=self.max_reconnect_attempts)

                try:
                    connected = await self._do_connect()
                except asyncio.CancelledError:
                    self._set_state(ConnectionState.FAILED)
                    raise
                except Exception as e:
                    logger.error("Connect attempt raised", url=self.url, attempt=attempt, error=str(e))
                    connected = False

                if connected:
                    self._on_connected()
                    await self._start_heartbeat()
                    return True

                if self._breaker.failure():
                    logger.warning(
                        f"Breaker opened after {self._breaker.failures} straight failures, "
                        f"pausing connects for {self._breaker.cooldown}s",
                        url=self.url,
                    )

                if attempt < self.max_reconnect_attempts:
                    await asyncio.sleep(self._next_delay())

            logger.error("Giving up on connection", url=self.url, attempts=self.max_reconnect_attempts)
            self._set_state(ConnectionState.FAILED)
            return False

    def _on_connected(self) -> None:
        logger.info("Connected", url=self.url)
        self._reconnect_attempts = 0
        self._reconnect_delay = self.reconnect_delay_base
        self.successful_connects += 1
        self._breaker.success()
        self._set_state(ConnectionState.CONNECTED)

    async def listen_with_reconnect(self):
        """Run ``_do_listen`` forever, reconnecting after drops until ``disconnect()``."""
        while self._should_reconnect:
            try:
                if not self.is_connected and not await self.connect():
                    return
                await self._do_listen()
            except ConnectionLost:
                self.total_reconnects += 1
                logger.info("Connection dropped", url=self.url, reconnects=self.total_reconnects)
                await self._drop_connection()
                if not self._should_reconnect:
                    return
                self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(min(self._reconnect_delay, self.reconnect_delay_cap))
                self._reconnect_delay = min(self._reconnect_delay * 2, self.reconnect_delay_cap)
            except asyncio.CancelledError:
                await self._drop_connection()
                return
            except Exception as e:
                logger.error("Listen loop error", url=self.url, error=str(e))
                await self._drop_connection()
                if not self._should_reconnect:
                    return
                await asyncio.sleep(1)

    async def _drop_connection(self) -> None:
        await self._stop_heartbeat()
        self._set_state(ConnectionState.DISCONNECTED)

    async def disconnect(self):
        """Stop reconnecting, cancel background work and close the socket."""
        async with self._connection_lock:
            self._should_reconnect = False
            await self._stop_heartbeat()

            pending = [task for task in self._background_tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending, timeout=5.0)

            await self._do_disconnect()
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected", url=self.url)

    async def _start_heartbeat(self):
        await self._stop_heartbeat()
        self._heartbeat_task = self.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self):
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _heartbeat_loop(self):
        failures = 0
        while self.is_connected:
            await asyncio.sleep(self.heartbeat_interval)
            if not self.is_connected:
                return

            try:
                ok = await self._send_heartbeat()
            except Exception as e:
                logger.error("Heartbeat raised", url=self.url, error=str(e))
                return

            if ok:
                failures = 0
                self._last_heartbeat = time.time()
                continue

            failures += 1
            logger.warning("Heartbeat not sent", url=self.url, consecutive_failures=failures)
            if failures >= MAX_HEARTBEAT_FAILURES:
                logger.error("Stopping heartbeat after repeated failures", url=self.url)
                return

    async def _send_heartbeat(self) -> bool:
        """Protocol keepalive. The base class sends nothing."""
        return True

    def create_task(self, coro) -> asyncio.Task:
        """Start a task that ``disconnect()`` will cancel."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def get_status(self) -> dict:
        return {
            "connected": self.is_connected,
            "connection_state": self._connection_state.value,
            "url": self.url,
            "reconnect_attempts": self._reconnect_attempts,
            "total_reconnects": self.total_reconnects,
            "successful_connects": self.successful_connects,
            "circuit_breaker_trips": self._breaker.trips,
            "last_heartbeat": self._last_heartbeat,
        }
