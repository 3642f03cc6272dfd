"""A2A JSON-RPC client with SSE streaming of turn events."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any, AsyncIterator

import httpx

from .discovery import agent_card_url
from .errors import A2AProtocolError, StreamTransportError
from .events import RawEvent, Task, TaskStatusUpdateEvent, parse_event

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = -32001
TASK_NOT_CANCELABLE = -32002

DEFAULT_TIMEOUT = httpx.Timeout(30.0, read=None)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Reassemble SSE ``data:`` payloads from a line iterator.

    Data lines are joined with newlines until a blank line ends the event.
    Comments and other fields are ignored.
    """
    data_lines: list[str] = []
    async for line in lines:
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
    if data_lines:
        yield "\n".join(data_lines)


def _protocol_error(error: Any) -> A2AProtocolError:
    if not isinstance(error, dict):
        return A2AProtocolError(-32603, str(error))
    return A2AProtocolError(
        int(error.get("code", -32603)),
        str(error.get("message", "Unknown error")),
        error.get("data"),
    )


class StreamingTurn:
    """Events of one turn, in arrival order.

    Single pass: iterating a second time raises ``RuntimeError``. The
    iteration ends after a final status update or when the server closes
    the stream.
    """

    def __init__(self, client: A2AClient, context_id: str, request: dict):
        self.client = client
        self.context_id = context_id
        self.task_id: str | None = None
        self.done = False
        self._request = request
        self._cancelled = asyncio.Event()
        self._events: AsyncIterator[RawEvent] | None = None
        self._remote_cancel: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __aiter__(self) -> StreamingTurn:
        if self._events is not None:
            raise RuntimeError("StreamingTurn can only be iterated once")
        self._events = self._iterate()
        return self

    async def __anext__(self) -> RawEvent:
        if self._events is None:
            self.__aiter__()
        return await self._events.__anext__()

    async def aclose(self) -> None:
        """Close the underlying HTTP stream if it is still open."""
        if self._events is not None:
            await self._events.aclose()
        self._finish()

    def cancel(self) -> asyncio.Task | None:
        """Stop at the next event and ask the backend to cancel the task.

        The remote cancel is advisory; its failures are logged only.
        Returns the scheduled remote cancel, if any.
        """
        if self._cancelled.is_set():
            return self._remote_cancel
        self._cancelled.set()
        if self.task_id and not self.done:
            self._remote_cancel = asyncio.get_running_loop().create_task(
                self.client.cancel_task(self.task_id)
            )
            self._remote_cancel.add_done_callback(_log_cancel_failure)
        return self._remote_cancel

    def _finish(self) -> None:
        self.done = True
        self.client._release(self)

    async def _iterate(self) -> AsyncIterator[RawEvent]:
        try:
            async with self.client._session() as http:
                endpoint = await self.client.endpoint(http)
                logger.info(f"Streaming turn on context {self.context_id} via {endpoint}")
                async with http.stream(
                    "POST",
                    endpoint,
                    json=self._request,
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if response.status_code != 200:
                        body = await response.aread()
                        raise StreamTransportError(
                            f"Stream request failed ({response.status_code}): {body.decode(errors='replace')}"
                        )
                    async for payload in iter_sse_data(response.aiter_lines()):
                        event = self._parse_frame(payload)
                        if event is None:
                            continue
                        if isinstance(event, Task):
                            self.task_id = event.id
                        elif isinstance(event, TaskStatusUpdateEvent) and event.task_id:
                            self.task_id = self.task_id or event.task_id
                        yield event
                        if isinstance(event, TaskStatusUpdateEvent) and event.final:
                            break
                        if self._cancelled.is_set():
                            break
        except httpx.HTTPError as e:
            raise StreamTransportError(f"Stream transport failed: {type(e).__name__}: {e}") from e
        finally:
            self._finish()

    def _parse_frame(self, payload: str) -> RawEvent | None:
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping malformed stream frame: {e}")
            return None
        if not isinstance(frame, dict):
            logger.debug("Dropping non-object stream frame")
            return None
        if frame.get("error") is not None:
            raise _protocol_error(frame["error"])
        event = parse_event(frame.get("result"))
        if event is None:
            logger.debug("Dropping unrecognised stream payload")
        return event


def _log_cancel_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Remote cancel failed: {type(error).__name__}: {error}")


class A2AClient:
    """JSON-RPC client for one A2A server.

    The JSON-RPC endpoint is taken from the ``url`` of the agent card unless
    ``rpc_url`` is given.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        rpc_url: str | None = None,
        timeout: httpx.Timeout | float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._active_turns: dict[str, StreamingTurn] = {}
        self._card: dict | None = None

    def _session(self) -> contextlib.AbstractAsyncContextManager[httpx.AsyncClient]:
        if self._http_client is not None:
            return contextlib.nullcontext(self._http_client)
        return httpx.AsyncClient(timeout=self._timeout)

    async def get_agent_card(self) -> dict:
        """Fetch the agent card of the server.

        Raises:
            StreamTransportError: If the card cannot be fetched
        """
        async with self._session() as http:
            return await self._fetch_card(http)

    async def _fetch_card(self, http: httpx.AsyncClient) -> dict:
        try:
            response = await http.get(agent_card_url(self.base_url))
            response.raise_for_status()
            card = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StreamTransportError(f"Could not fetch agent card: {e}") from e
        if not isinstance(card, dict):
            raise StreamTransportError("Agent card is not a JSON object")
        self._card = card
        return card

    async def endpoint(self, http: httpx.AsyncClient) -> str:
        if self._rpc_url is None:
            card = self._card or await self._fetch_card(http)
            url = card.get("url")
            self._rpc_url = url if isinstance(url, str) and url else self.base_url
        return self._rpc_url

    async def call(self, method: str, params: dict) -> Any:
        """Make one JSON-RPC call and return its result.

        Raises:
            A2AProtocolError: If the server returns a JSON-RPC error
            StreamTransportError: If the request fails at the HTTP level
        """
        request = {"jsonrpc": "2.0", "id": str(uuid.uuid4()), "method": method, "params": params}
        try:
            async with self._session() as http:
                response = await http.post(await self.endpoint(http), json=request)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StreamTransportError(f"{method} failed: {e}") from e
        if isinstance(body, dict) and body.get("error") is not None:
            raise _protocol_error(body["error"])
        return body.get("result") if isinstance(body, dict) else None

    async def cancel_task(self, task_id: str) -> dict | None:
        """Ask the server to cancel ``task_id``.

        Unknown and already finished tasks are not errors.
        """
        try:
            return await self.call("tasks/cancel", {"id": task_id})
        except A2AProtocolError as e:
            if e.code in (TASK_NOT_FOUND, TASK_NOT_CANCELABLE):
                logger.debug(f"Cancel of task {task_id} ignored: {e.message}")
                return None
            raise

    def stream_message(
        self, context_id: str, text: str, metadata: dict | None = None
    ) -> StreamingTurn:
        """Start a turn; the request is sent when iteration begins.

        An unfinished turn on the same context is cancelled first.
        """
        previous = self._active_turns.get(context_id)
        if previous is not None and not previous.done:
            logger.info(f"Cancelling unfinished turn on context {context_id}")
            previous.cancel()

        message: dict[str, Any] = {
            "kind": "message",
            "messageId": str(uuid.uuid4()),
            "role": "user",
            "contextId": context_id,
            "parts": [{"kind": "text", "text": text}],
        }
        if metadata:
            message["metadata"] = metadata
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "message/stream",
            "params": {"message": message},
        }
        turn = StreamingTurn(self, context_id, request)
        self._active_turns[context_id] = turn
        return turn

    def active_turn(self, context_id: str) -> StreamingTurn | None:
        return self._active_turns.get(context_id)

    def _release(self, turn: StreamingTurn) -> None:
        if self._active_turns.get(turn.context_id) is turn:
            del self._active_turns[turn.context_id]

