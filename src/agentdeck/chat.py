"""Chat session: one slot talking to one agent, turn by turn."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator

from .accumulator import TurnAccumulator, TurnState
from .blocks import ChatMessage
from .descriptors import BackendKind
from .errors import A2AProtocolError, AgentDeckError, StreamTransportError
from .normalizers import CommonNormalizer, create_normalizer
from .streaming import StreamingTurn

if TYPE_CHECKING:
    from .runtime import AgentRuntime

logger = logging.getLogger(__name__)


class ChatSession:
    """Sends user messages and folds the streamed reply into chat messages.

    The backend kind is resolved once per conversation. Each turn gets a
    fresh normalizer because backends restart their item and call ids on
    every run.
    """

    def __init__(self, runtime: AgentRuntime, agent_id: str, slot_id: str, project_path: str | None = None):
        self.runtime = runtime
        self.agent_id = agent_id
        self.slot_id = slot_id
        self.project_path = project_path
        self.messages: list[ChatMessage] = []
        self._kind: BackendKind | None = None
        self._turn: StreamingTurn | None = None
        self.last_state: TurnState | None = None

    @property
    def is_busy(self) -> bool:
        return self._turn is not None

    async def _new_normalizer(self) -> CommonNormalizer:
        if self._kind is None:
            self._kind = await self.runtime.resolve_kind(self.agent_id)
        normalizer = create_normalizer(self._kind)
        logger.debug(f"Using {type(normalizer).__name__} for '{self.agent_id}'")
        return normalizer

    async def send(self, text: str) -> AsyncIterator[ChatMessage]:
        """Send ``text`` and yield snapshots of the assistant reply.

        The last snapshot is never streaming. Failures (connect errors,
        transport errors) end the reply with one error block instead of
        raising.
        """
        self.messages.append(ChatMessage(role="user", content=text))
        accumulator = TurnAccumulator()
        self.messages.append(accumulator.message)
        index = len(self.messages) - 1
        yield accumulator.message

        try:
            await self.runtime.connect_agent(self.agent_id)
            normalizer = await self._new_normalizer()
            client = self.runtime.client_for(self.agent_id)
        except AgentDeckError as e:
            logger.error(f"Could not reach '{self.agent_id}': {e}")
            accumulator.fail(str(e))
            self.messages[index] = accumulator.message
            self.last_state = accumulator.state
            yield accumulator.message
            return

        context_id = self.runtime.context_id(self.slot_id, self.project_path)
        project_path = self.runtime.sessions.project_path_for(context_id)
        metadata = {"projectPath": project_path} if project_path else None

        turn = client.stream_message(context_id, text, metadata)
        self._turn = turn
        logger.info(f"Turn started on '{self.agent_id}' (context {context_id})")
        try:
            async for event in turn:
                state = accumulator.state
                changed = accumulator.apply(normalizer.normalize(event))
                accumulator.observe(event)
                if changed or accumulator.state != state:
                    self.messages[index] = accumulator.message
                    yield accumulator.message
            if turn.cancelled:
                accumulator.cancel()
            else:
                accumulator.complete()
        except (StreamTransportError, A2AProtocolError) as e:
            logger.warning(f"Turn on '{self.agent_id}' failed: {e}")
            accumulator.fail(str(e))
        finally:
            await turn.aclose()
            if self._turn is turn:
                self._turn = None

        logger.info(f"Turn on '{self.agent_id}' finished: {accumulator.state.value}")
        self.last_state = accumulator.state
        self.messages[index] = accumulator.message
        yield accumulator.message

    async def cancel(self) -> None:
        """Cancel the running turn, if any."""
        turn = self._turn
        if turn is None:
            return
        logger.info(f"Cancelling turn on '{self.agent_id}' (task {turn.task_id})")
        turn.cancel()

    async def clear(self) -> None:
        """Drop the messages, the resolved backend kind and the slot's context."""
        await self.cancel()
        self.messages.clear()
        self._kind = None
        self.runtime.clear_context(self.slot_id)
