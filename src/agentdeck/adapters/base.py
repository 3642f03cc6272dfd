"""Adapter contract and the lifecycle shared by every backend adapter."""

from __future__ import annotations

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..config import DEFAULT_HOST, DeckConfig
from ..descriptors import AgentDescriptor
from ..errors import StartupError, StartupTimeoutError

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class Connection:
    """Mutable connection snapshot of one adapter."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    address: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class AgentStatusUpdate:
    agent_id: str
    status: ConnectionState
    error: str | None = None
    server_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "agentId": self.agent_id,
            "status": self.status.value,
            "error": self.error,
            "serverUrl": self.server_url,
        }


StatusListener = Callable[[AgentStatusUpdate], None]


async def reserve_port(start_port: int, host: str = DEFAULT_HOST) -> socket.socket:
    """Bind a socket to the first free port at or above ``start_port``.

    Ports are probed one at a time, in increasing order.

    Returns:
        The bound (not yet listening) socket
    """
    port = start_port
    while True:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((host, port))
        except OSError:
            sock.close()
            logger.debug(f"Port {port} on {host} is taken, trying {port + 1}")
            port += 1
            await asyncio.sleep(0)
            continue
        return sock


async def find_available_port(start_port: int, host: str = DEFAULT_HOST) -> int:
    """Return the first port at or above ``start_port`` that can be bound right now."""
    sock = await reserve_port(start_port, host)
    port = sock.getsockname()[1]
    sock.close()
    return port


class BackendAdapter(ABC):
    """Owns the serving surface of one backend and its connection state.

    Subclasses implement :meth:`_start` (bring the backend up and return its
    base URL), :meth:`_stop` (release everything, safe to call on a partial
    start) and :meth:`_cancel`.
    """

    def __init__(self, descriptor: AgentDescriptor, config: DeckConfig | None = None):
        self.descriptor = descriptor
        self.config = config or DeckConfig()
        self.connection = Connection()
        self._lock = asyncio.Lock()
        self._listeners: list[StatusListener] = []

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def address(self) -> str | None:
        return self.connection.address

    def get_address(self) -> str | None:
        return self.address

    def is_connected(self) -> bool:
        return self.connection.state == ConnectionState.CONNECTED and self.connection.address is not None

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, state: ConnectionState, error: str | None = None) -> None:
        self.connection.state = state
        self.connection.error = error
        update = AgentStatusUpdate(self.id, state, error, self.connection.address)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.warning(f"Status listener failed for '{self.id}': {type(e).__name__}: {e}")

    async def connect(self) -> None:
        """Start the backend if it is not running.

        Concurrent callers share a single startup.

        Raises:
            StartupTimeoutError: If startup exceeds ``config.startup_timeout``
            StartupError: If startup fails for any other reason
        """
        if self.is_connected():
            return
        async with self._lock:
            if self.is_connected():
                return

            logger.info(f"Starting {self.descriptor.name}")
            self._set_state(ConnectionState.CONNECTING)
            timeout = self.config.startup_timeout
            try:
                address = await asyncio.wait_for(self._start(), timeout=timeout)
            except asyncio.TimeoutError as e:
                await self._release_failed_start()
                message = f"{self.descriptor.name} did not start within {timeout}s"
                self._set_state(ConnectionState.ERROR, message)
                raise StartupTimeoutError(message) from e
            except asyncio.CancelledError:
                await self._release_failed_start()
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except Exception as e:
                await self._release_failed_start()
                self._set_state(ConnectionState.ERROR, str(e))
                logger.error(f"Failed to start {self.descriptor.name}: {type(e).__name__}: {e}")
                if isinstance(e, StartupError):
                    raise
                raise StartupError(f"Failed to start {self.descriptor.name}: {e}") from e

            self.connection.address = address
            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"{self.descriptor.name} is serving at {address}")

    async def _release_failed_start(self) -> None:
        try:
            await self._stop()
        except Exception as e:
            logger.warning(f"Cleanup after failed start of '{self.id}' failed: {e}")
        self.connection.address = None

    async def disconnect(self) -> None:
        """Tear the backend down; a no-op when already disconnected."""
        async with self._lock:
            if self.connection.state == ConnectionState.DISCONNECTED:
                return
            try:
                await self._stop()
            finally:
                self.connection.address = None
                self._set_state(ConnectionState.DISCONNECTED)
                logger.info(f"{self.descriptor.name} disconnected")

    async def cancel_turn(self, task_id: str) -> None:
        """Ask the backend to cancel ``task_id``. Best effort, never raises."""
        if not self.is_connected():
            return
        try:
            await self._cancel(task_id)
        except Exception as e:
            logger.warning(f"Cancel of task {task_id} on '{self.id}' failed: {type(e).__name__}: {e}")

    @abstractmethod
    async def _start(self) -> str:
        """Bring the backend up and return its base URL."""

    @abstractmethod
    async def _stop(self) -> None:
        """Release everything :meth:`_start` created, even partially."""

    @abstractmethod
    async def _cancel(self, task_id: str) -> None:
        """Cancel a running task."""
