"""In-process A2A server: agent card plus JSON-RPC ``message/stream``.

The embedded adapters mount this app under uvicorn. Every turn runs an
executor that publishes A2A events to an :class:`ExecutionEventBus`; the
``message/stream`` response forwards them to the client as SSE frames.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ..discovery import AGENT_CARD_PATH
from ..errors import A2AProtocolError
from ..events import (
    Message,
    RawEvent,
    Task,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
    new_id,
    now_iso,
)
from .executor import AgentExecutor

logger = logging.getLogger(__name__)

JSONRPC_PATH = "/a2a/jsonrpc"
PROTOCOL_VERSION = "0.3.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TASK_NOT_FOUND = -32001
TASK_NOT_CANCELABLE = -32002


def build_agent_card(
    *,
    name: str,
    description: str,
    base_url: str,
    organization: str,
    organization_url: str,
    skills: list[dict],
    version: str = "0.1.0",
) -> dict:
    """Build an A2A agent card served at ``/.well-known/agent-card.json``."""
    rpc_url = base_url.rstrip("/") + JSONRPC_PATH
    return {
        "name": name,
        "description": description,
        "protocolVersion": PROTOCOL_VERSION,
        "version": version,
        "url": rpc_url,
        "preferredTransport": "JSONRPC",
        "provider": {"organization": organization, "url": organization_url},
        "capabilities": {
            "streaming": True,
            "pushNotifications": False,
            "stateTransitionHistory": True,
        },
        "defaultInputModes": ["text"],
        "defaultOutputModes": ["text"],
        "additionalInterfaces": [{"url": rpc_url, "transport": "JSONRPC"}],
        "skills": skills,
    }


_END = object()


class ExecutionEventBus:
    """Ordered event queue of one running task.

    Events published after :meth:`finished` are ignored.
    """

    def __init__(self, on_publish: Callable[[RawEvent], None] | None = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = False
        self._on_publish = on_publish

    @property
    def is_finished(self) -> bool:
        return self._finished

    def publish(self, event: RawEvent) -> None:
        if self._finished:
            logger.debug(f"Ignoring {type(event).__name__} published after finish")
            return
        if self._on_publish is not None:
            self._on_publish(event)
        self._queue.put_nowait(event)

    def finished(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(_END)

    async def events(self) -> AsyncIterator[RawEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item


@dataclass
class RequestContext:
    """Everything an executor needs to run one turn."""

    task_id: str
    context_id: str
    user_message: Message

    @property
    def text(self) -> str:
        return self.user_message.text().strip()

    @property
    def project_path(self) -> str | None:
        metadata = self.user_message.metadata or {}
        path = metadata.get("projectPath")
        return path if isinstance(path, str) and path else None


def _rpc_result(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _rpc_error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class A2ARequestHandler:
    """Runs executors per task and keeps an in-memory task store."""

    def __init__(self, executor: AgentExecutor):
        self.executor = executor
        self.tasks: dict[str, Task] = {}
        self._running: dict[str, tuple[ExecutionEventBus, asyncio.Task]] = {}
        self._background: set[asyncio.Task] = set()

    def _record(self, event: RawEvent) -> None:
        if isinstance(event, Task):
            self.tasks[event.id] = event
        elif isinstance(event, TaskStatusUpdateEvent):
            task = self.tasks.get(event.task_id)
            if task is not None:
                task.status = event.status

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    async def _execute(self, context: RequestContext, bus: ExecutionEventBus) -> None:
        try:
            await self.executor.execute(context, bus)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Executor failed for task {context.task_id}: {type(e).__name__}: {e}", exc_info=True)
            bus.publish(
                TaskStatusUpdateEvent(
                    task_id=context.task_id,
                    context_id=context.context_id,
                    status=TaskStatus(
                        state=TaskState.FAILED.value,
                        message=Message(
                            role="agent",
                            parts=[TextPart(f"Error: {e}", {"itemType": "error"})],
                            context_id=context.context_id,
                            task_id=context.task_id,
                        ),
                        timestamp=now_iso(),
                    ),
                    final=True,
                )
            )
        finally:
            bus.finished()
            self._running.pop(context.task_id, None)

    def start_task(self, params: dict) -> tuple[str, ExecutionEventBus]:
        """Start executing the message in ``params``.

        Raises:
            A2AProtocolError: If the params carry no usable message
        """
        raw_message = params.get("message")
        if not isinstance(raw_message, dict) or not isinstance(raw_message.get("parts"), list):
            raise A2AProtocolError(INVALID_PARAMS, "params.message with parts is required")

        message = Message.from_dict(raw_message)
        task_id = new_id()
        context_id = message.context_id or new_id()
        message.context_id = context_id
        message.task_id = task_id

        bus = ExecutionEventBus(on_publish=self._record)
        context = RequestContext(task_id=task_id, context_id=context_id, user_message=message)
        run = asyncio.get_running_loop().create_task(self._execute(context, bus))
        self._running[task_id] = (bus, run)
        logger.info(f"Started task {task_id} on context {context_id}")
        return task_id, bus

    async def stream(self, request_id: Any, task_id: str, bus: ExecutionEventBus) -> AsyncIterator[str]:
        completed = False
        try:
            async for event in bus.events():
                yield f"data: {json.dumps(_rpc_result(request_id, event.to_dict()))}\n\n"
            completed = True
        finally:
            if not completed and self.is_running(task_id):
                # The client went away mid-turn
                logger.info(f"Stream of task {task_id} closed early, cancelling")
                self._spawn(self.executor.cancel_task(task_id, bus))

    async def cancel_task(self, task_id: str) -> dict:
        """Cancel a running task and return its snapshot.

        Raises:
            A2AProtocolError: TaskNotFound or TaskNotCancelable
        """
        task = self.tasks.get(task_id)
        running = self._running.get(task_id)
        if task is None and running is None:
            raise A2AProtocolError(TASK_NOT_FOUND, f"Task not found: {task_id}")
        if running is None or (task is not None and task.status.is_terminal):
            raise A2AProtocolError(TASK_NOT_CANCELABLE, f"Task cannot be canceled: {task_id}")

        bus, _ = running
        await self.executor.cancel_task(task_id, bus)
        task = self.tasks.get(task_id)
        if task is None:
            raise A2AProtocolError(TASK_NOT_FOUND, f"Task not found: {task_id}")
        if not task.status.is_terminal:
            task.status = TaskStatus(state=TaskState.CANCELED.value, timestamp=now_iso())
        return task.to_dict()

    def get_task(self, task_id: str) -> dict:
        task = self.tasks.get(task_id)
        if task is None:
            raise A2AProtocolError(TASK_NOT_FOUND, f"Task not found: {task_id}")
        return task.to_dict()

    async def shutdown(self) -> None:
        """Cancel every running task."""
        for task_id, (bus, run) in list(self._running.items()):
            try:
                await self.executor.cancel_task(task_id, bus)
            except Exception as e:
                logger.warning(f"Cancel of task {task_id} during shutdown failed: {e}")
            run.cancel()
        self._running.clear()


def create_a2a_app(card: dict, handler: A2ARequestHandler) -> FastAPI:
    """Create the FastAPI app serving one agent."""
    app = FastAPI(title=card.get("name", "A2A agent"), docs_url=None, redoc_url=None)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )

    @app.get(AGENT_CARD_PATH)
    async def agent_card():
        return card

    @app.post(JSONRPC_PATH)
    async def jsonrpc(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(_rpc_error(None, PARSE_ERROR, "Parse error"))

        if not isinstance(body, dict) or not isinstance(body.get("method"), str):
            return JSONResponse(_rpc_error(None, INVALID_REQUEST, "Invalid request"))

        request_id = body.get("id")
        method = body["method"]
        params = body.get("params") or {}
        if not isinstance(params, dict):
            return JSONResponse(_rpc_error(request_id, INVALID_PARAMS, "params must be an object"))

        logger.debug(f"JSON-RPC {method} (id={request_id})")
        try:
            if method == "message/stream":
                task_id, bus = handler.start_task(params)
                return StreamingResponse(
                    handler.stream(request_id, task_id, bus),
                    media_type="text/event-stream",
                    headers={"Cache-Control": "no-cache"},
                )
            if method == "tasks/cancel":
                return JSONResponse(_rpc_result(request_id, await handler.cancel_task(_task_id(params))))
            if method == "tasks/get":
                return JSONResponse(_rpc_result(request_id, handler.get_task(_task_id(params))))
        except A2AProtocolError as e:
            return JSONResponse(_rpc_error(request_id, e.code, e.message))

        return JSONResponse(_rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}"))

    return app


def _task_id(params: dict) -> str:
    task_id = params.get("id")
    if not isinstance(task_id, str) or not task_id:
        raise A2AProtocolError(INVALID_PARAMS, "params.id is required")
    return task_id
