"""Gemini CLI backend: the external Gemini CLI A2A server run as a subprocess."""

from __future__ import annotations

import asyncio
import logging
import os

import httpx

from ..config import DeckConfig
from ..descriptors import GEMINI_CLI
from ..discovery import agent_card_url
from ..errors import StartupError
from ..streaming import A2AClient
from .base import BackendAdapter, find_available_port
from .executor import terminate_process

logger = logging.getLogger(__name__)

CARD_POLL_INTERVAL = 0.25


class GeminiAdapter(BackendAdapter):
    """Spawns the Gemini CLI A2A server with ``CODER_AGENT_PORT`` set.

    The server is ready once its agent card answers. Cancellation goes
    through the server's own ``tasks/cancel``.
    """

    def __init__(self, config: DeckConfig | None = None):
        super().__init__(GEMINI_CLI, config)
        self.client: A2AClient | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._output_task: asyncio.Task | None = None

    async def _start(self) -> str:
        host = self.config.host
        port = await find_available_port(self.config.port_for(self.id), host)
        env = {**os.environ, "CODER_AGENT_PORT": str(port)}
        command = list(self.config.gemini_command)

        logger.info(f"Launching Gemini CLI A2A server on port {port}: {' '.join(command)}")
        self._process = await asyncio.create_subprocess_exec(
            *command,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        self._output_task = asyncio.create_task(self._forward_output(self._process))

        base_url = f"http://{host}:{port}"
        await self._wait_for_card(base_url)
        self.client = A2AClient(base_url)
        return base_url

    async def _wait_for_card(self, base_url: str) -> None:
        card_url = agent_card_url(base_url)
        async with httpx.AsyncClient(timeout=self.config.card_timeout) as http:
            while True:
                if self._process is None or self._process.returncode is not None:
                    code = self._process.returncode if self._process is not None else None
                    raise StartupError(f"Gemini CLI A2A server exited with code {code}")
                try:
                    response = await http.get(card_url)
                    if response.status_code == 200:
                        return
                except httpx.HTTPError:
                    pass
                await asyncio.sleep(CARD_POLL_INTERVAL)

    async def _forward_output(self, process: asyncio.subprocess.Process) -> None:
        async for raw_line in process.stdout:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug(f"[gemini] {line}")

    async def _stop(self) -> None:
        if self._process is not None:
            await terminate_process(self._process, self.config.shutdown_timeout)
        if self._output_task is not None:
            self._output_task.cancel()
            try:
                await self._output_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Gemini output reader stopped with error: {e}")
        self._process = None
        self._output_task = None
        self.client = None

    async def _cancel(self, task_id: str) -> None:
        if self.client is not None:
            await self.client.cancel_task(task_id)
