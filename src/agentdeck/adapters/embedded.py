"""Adapters that serve an A2A app in-process under uvicorn."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import socket
from abc import abstractmethod

import uvicorn

from ..config import DeckConfig
from ..descriptors import AgentDescriptor
from ..errors import StartupError
from .a2a_server import A2ARequestHandler, create_a2a_app
from .base import BackendAdapter, reserve_port
from .executor import AgentExecutor

logger = logging.getLogger(__name__)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class EmbeddedServerAdapter(BackendAdapter):
    """Runs an A2A app on a pre-bound local socket; the executor drives a CLI."""

    def __init__(self, descriptor: AgentDescriptor, config: DeckConfig | None = None):
        super().__init__(descriptor, config)
        self.handler: A2ARequestHandler | None = None
        self._server: EmbeddedServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None

    @property
    @abstractmethod
    def cli_binary(self) -> str:
        """CLI the executor runs; must be on PATH."""

    @abstractmethod
    def create_executor(self) -> AgentExecutor:
        pass

    @abstractmethod
    def agent_card(self, base_url: str) -> dict:
        pass

    async def _start(self) -> str:
        if shutil.which(self.cli_binary) is None:
            raise StartupError(f"{self.descriptor.name} CLI '{self.cli_binary}' not found on PATH")

        host = self.config.host
        self._socket = await reserve_port(self.config.port_for(self.id), host)
        port = self._socket.getsockname()[1]
        base_url = f"http://{host}:{port}"

        self.handler = A2ARequestHandler(self.create_executor())
        app = create_a2a_app(self.agent_card(base_url), self.handler)
        server_config = uvicorn.Config(
            app,
            log_config=None,
            log_level="warning",
            lifespan="off",
            timeout_graceful_shutdown=int(self.config.shutdown_timeout),
        )
        self._server = EmbeddedServer(server_config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        while not self._server.started:
            if self._serve_task.done():
                error = None if self._serve_task.cancelled() else self._serve_task.exception()
                raise StartupError(f"{self.descriptor.name} server exited during startup") from error
            await asyncio.sleep(0.05)
        return base_url

    async def _stop(self) -> None:
        if self.handler is not None:
            await self.handler.shutdown()
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await asyncio.wait_for(self._serve_task, timeout=self.config.shutdown_timeout + 1)
            except asyncio.TimeoutError:
                logger.warning(f"{self.descriptor.name} server did not stop in time")
            except Exception as e:
                logger.warning(f"{self.descriptor.name} server stopped with error: {e}")
        if self._socket is not None:
            self._socket.close()
        self.handler = None
        self._server = None
        self._serve_task = None
        self._socket = None

    async def _cancel(self, task_id: str) -> None:
        if self.handler is None or not self.handler.is_running(task_id):
            return
        await self.handler.cancel_task(task_id)
