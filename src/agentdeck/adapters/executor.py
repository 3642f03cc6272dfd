"""Executors that run a coding CLI per turn and publish A2A events."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from ..config import DeckConfig
from ..events import (
    Artifact,
    DataPart,
    Message,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
    new_id,
    now_iso,
)

if TYPE_CHECKING:
    from .a2a_server import ExecutionEventBus, RequestContext

logger = logging.getLogger(__name__)

# Claude stream-json lines can carry whole file contents
STDOUT_LIMIT = 16 * 1024 * 1024


class AgentExecutor(ABC):
    """Runs turns for an A2A server."""

    @abstractmethod
    async def execute(self, context: RequestContext, bus: ExecutionEventBus) -> None:
        """Run one turn, publishing its events to ``bus``."""

    @abstractmethod
    async def cancel_task(self, task_id: str, bus: ExecutionEventBus) -> None:
        """Stop ``task_id`` and publish its ``canceled`` status."""


class TaskPublisher:
    """Builds and publishes the A2A events of one task.

    Status updates carry ``{agent_key: {"kind": ...}}`` metadata so clients
    can tell text, thoughts and tool updates apart.
    """

    def __init__(self, bus: ExecutionEventBus, task_id: str, context_id: str, agent_key: str):
        self.bus = bus
        self.task_id = task_id
        self.context_id = context_id
        self.agent_key = agent_key

    def _message(self, parts: list) -> Message:
        return Message(role="agent", parts=parts, context_id=self.context_id, task_id=self.task_id)

    def status(
        self,
        state: str,
        message: Message | None = None,
        final: bool = False,
        kind: str | None = None,
    ) -> None:
        self.bus.publish(
            TaskStatusUpdateEvent(
                task_id=self.task_id,
                context_id=self.context_id,
                status=TaskStatus(state=state, message=message, timestamp=now_iso()),
                final=final,
                metadata={self.agent_key: {"kind": kind}} if kind else None,
            )
        )

    def task_created(self, user_message: Message) -> None:
        self.bus.publish(
            Task(
                id=self.task_id,
                context_id=self.context_id,
                status=TaskStatus(state=TaskState.SUBMITTED.value, timestamp=now_iso()),
                history=[user_message],
            )
        )

    def working(self) -> None:
        self.status(TaskState.WORKING.value, kind="state-change")

    def text(self, text: str, item_id: str | None = None) -> None:
        """Publish agent text; with ``item_id`` the text is the full snapshot of that item."""
        part = TextPart(text, {"itemId": item_id} if item_id else None)
        self.status(TaskState.WORKING.value, self._message([part]), kind="text-content")

    def thought(self, text: str, item_id: str | None = None) -> None:
        data: dict[str, Any] = {"text": text}
        if item_id:
            data["itemId"] = item_id
        self.status(TaskState.WORKING.value, self._message([DataPart(data)]), kind="thought")

    def tool_update(self, data: dict[str, Any]) -> None:
        self.status(TaskState.WORKING.value, self._message([DataPart(data)]), kind="tool-call-update")

    def error_text(self, text: str) -> None:
        part = TextPart(text, {"itemType": "error"})
        self.status(TaskState.WORKING.value, self._message([part]), kind="text-content")

    def tool_output(self, call_id: str, output: str, append: bool, last_chunk: bool) -> None:
        self.bus.publish(
            TaskArtifactUpdateEvent(
                task_id=self.task_id,
                context_id=self.context_id,
                artifact=Artifact(artifact_id=f"tool-{call_id}-output", parts=[TextPart(output)]),
                append=append,
                last_chunk=last_chunk,
            )
        )

    def complete(self) -> None:
        self.status(TaskState.COMPLETED.value, final=True, kind="state-change")
        self.bus.finished()

    def fail(self, error: str) -> None:
        message = self._message([TextPart(f"Error: {error}", {"itemType": "error"})])
        self.status(TaskState.FAILED.value, message, final=True, kind="state-change")
        self.bus.finished()

    def canceled(self) -> None:
        message = self._message([TextPart("Task canceled.")])
        self.status(TaskState.CANCELED.value, message, final=True, kind="state-change")
        self.bus.finished()


async def terminate_process(process: asyncio.subprocess.Process, timeout: float = 5.0) -> None:
    """Terminate ``process``, killing it if it does not exit within ``timeout``."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing it")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


class TurnHandler:
    """Translates the JSONL events of one CLI run into A2A events."""

    def __init__(self, publisher: TaskPublisher):
        self.publisher = publisher
        self.session_id: str | None = None
        self.failure: str | None = None

    def handle(self, event: dict[str, Any]) -> None:
        raise NotImplementedError


@dataclass
class _Run:
    task_id: str
    context_id: str
    publisher: TaskPublisher
    process: asyncio.subprocess.Process | None = None
    cancelled: bool = False


class SubprocessExecutor(AgentExecutor):
    """Runs a coding CLI as a subprocess per turn.

    Subclasses provide the command line and a :class:`TurnHandler` for the
    CLI's JSONL output. The backend session id reported by the CLI is kept
    per context so later turns resume the same conversation.
    """

    agent_key: ClassVar[str] = ""
    cli_name: ClassVar[str] = ""

    def __init__(self, config: DeckConfig | None = None):
        self.config = config or DeckConfig()
        self.sessions: dict[str, str] = {}
        self._runs_by_task: dict[str, _Run] = {}
        self._runs_by_context: dict[str, _Run] = {}

    @abstractmethod
    def build_command(self, prompt: str, session_id: str | None) -> list[str]:
        """Return the argv for one turn."""

    def stdin_payload(self, prompt: str, session_id: str | None) -> bytes | None:
        """Bytes to write to the CLI's stdin, or None to leave stdin closed."""
        return None

    @abstractmethod
    def create_handler(self, publisher: TaskPublisher) -> TurnHandler:
        """Return a fresh handler for one turn."""

    async def execute(self, context: RequestContext, bus: ExecutionEventBus) -> None:
        publisher = TaskPublisher(bus, context.task_id, context.context_id, self.agent_key)
        publisher.task_created(context.user_message)

        prompt = context.text
        if not prompt:
            publisher.fail("No text content")
            return

        previous = self._runs_by_context.get(context.context_id)
        if previous is not None:
            logger.info(f"Superseding task {previous.task_id} on context {context.context_id}")
            await self._stop_run(previous)
            previous.publisher.canceled()

        publisher.working()
        run = _Run(task_id=context.task_id, context_id=context.context_id, publisher=publisher)
        self._runs_by_task[run.task_id] = run
        self._runs_by_context[run.context_id] = run
        try:
            await self._run_cli(run, context, publisher)
        finally:
            self._runs_by_task.pop(run.task_id, None)
            if self._runs_by_context.get(run.context_id) is run:
                del self._runs_by_context[run.context_id]

    async def _run_cli(self, run: _Run, context: RequestContext, publisher: TaskPublisher) -> None:
        session_id = self.sessions.get(context.context_id)
        command = self.build_command(context.text, session_id)
        payload = self.stdin_payload(context.text, session_id)
        cwd = context.project_path or os.getcwd()
        handler = self.create_handler(publisher)

        logger.info(f"Running {self.cli_name} for task {run.task_id} in {cwd} (resume={session_id is not None})")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE if payload is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STDOUT_LIMIT,
            )
        except OSError as e:
            publisher.fail(f"Failed to start {self.cli_name}: {e}")
            return
        run.process = process

        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            if payload is not None:
                try:
                    await self.send_stdin(process, payload)
                except (BrokenPipeError, ConnectionResetError) as e:
                    logger.warning(f"{self.cli_name} closed stdin for task {run.task_id}: {e}")
                    publisher.fail(f"Failed to send the prompt to {self.cli_name}: {e}")
                    return

            async for raw_line in process.stdout:
                if run.cancelled:
                    break
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping non-JSON output line: {line[:200]}")
                    continue
                if isinstance(event, dict):
                    handler.handle(event)
                if handler.failure:
                    break

            if run.cancelled or handler.failure:
                await terminate_process(process, self.config.shutdown_timeout)
            returncode = await process.wait()
            stderr = await stderr_task
        finally:
            if process.returncode is None:
                await terminate_process(process, self.config.shutdown_timeout)
            if not stderr_task.done():
                stderr_task.cancel()

        if handler.session_id:
            self.sessions[context.context_id] = handler.session_id

        if run.cancelled:
            return
        if handler.failure:
            publisher.fail(handler.failure)
            return
        if returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-1000:]
            publisher.fail(tail or f"{self.cli_name} exited with code {returncode}")
            return

        logger.info(f"Task {run.task_id} completed")
        publisher.complete()

    async def send_stdin(self, process: asyncio.subprocess.Process, payload: bytes) -> None:
        process.stdin.write(payload)
        await process.stdin.drain()
        process.stdin.close()

    async def _stop_run(self, run: _Run) -> None:
        run.cancelled = True
        if run.process is not None:
            await terminate_process(run.process, self.config.shutdown_timeout)

    async def cancel_task(self, task_id: str, bus: ExecutionEventBus) -> None:
        run = self._runs_by_task.get(task_id)
        context_id = run.context_id if run is not None else new_id()
        if run is not None:
            logger.info(f"Cancelling task {task_id}")
            await self._stop_run(run)
        TaskPublisher(bus, task_id, context_id, self.agent_key).canceled()
