"""Process-wide runtime: adapters, sessions and backend discovery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from .adapters import BackendAdapter, create_default_adapters
from .adapters.base import AgentStatusUpdate, StatusListener
from .config import DeckConfig
from .descriptors import AgentDescriptor, BackendKind
from .discovery import BackendResolver
from .errors import AgentDeckError, AgentNotFoundError
from .sessions import SessionRegistry
from .streaming import A2AClient

if TYPE_CHECKING:
    from .chat import ChatSession

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], A2AClient]


class AgentRuntime:
    """Explicit context object shared by the CLI, the web bridge and chat sessions.

    Build one per process with :meth:`create_default`.
    """

    def __init__(
        self,
        config: DeckConfig | None = None,
        adapters: dict[str, BackendAdapter] | None = None,
        sessions: SessionRegistry | None = None,
        resolver: BackendResolver | None = None,
        client_factory: ClientFactory | None = None,
    ):
        """Initialize the runtime.

        Args:
            config: Settings (default: built-in defaults)
            adapters: Adapters keyed by agent id (default: one per known agent)
            sessions: Slot/context registry
            resolver: Backend kind resolver
            client_factory: Builds the A2A client for a server base URL
        """
        self.config = config or DeckConfig()
        self.adapters = adapters if adapters is not None else create_default_adapters(self.config)
        self.sessions = sessions or SessionRegistry()
        self.resolver = resolver or BackendResolver(timeout=self.config.card_timeout)
        self._client_factory = client_factory or A2AClient
        self._clients: dict[str, A2AClient] = {}

    @classmethod
    def create_default(cls, config: DeckConfig | None = None) -> AgentRuntime:
        return cls(config=config or DeckConfig.from_env())

    def list_agents(self) -> list[AgentDescriptor]:
        return [adapter.descriptor for adapter in self.adapters.values()]

    def get_adapter(self, agent_id: str) -> BackendAdapter:
        """Return the adapter of ``agent_id``.

        Raises:
            AgentNotFoundError: If no adapter is registered under that id
        """
        adapter = self.adapters.get(agent_id)
        if adapter is None:
            raise AgentNotFoundError(agent_id)
        return adapter

    async def connect_agent(self, agent_id: str) -> None:
        await self.get_adapter(agent_id).connect()

    async def disconnect_agent(self, agent_id: str) -> None:
        adapter = self.get_adapter(agent_id)
        address = adapter.address
        await adapter.disconnect()
        if address:
            self.resolver.forget(address)
        self._clients.pop(agent_id, None)

    def is_agent_connected(self, agent_id: str) -> bool:
        return self.get_adapter(agent_id).is_connected()

    def server_url(self, agent_id: str) -> str | None:
        return self.get_adapter(agent_id).get_address()

    def status(self, agent_id: str) -> AgentStatusUpdate:
        adapter = self.get_adapter(agent_id)
        connection = adapter.connection
        return AgentStatusUpdate(agent_id, connection.state, connection.error, connection.address)

    def context_id(self, slot_id: str, project_path: str | None = None) -> str:
        """Return the context id of a slot, recording its project path when given."""
        context_id = self.sessions.context_for(slot_id)
        if project_path:
            self.sessions.set_project_path(context_id, project_path)
        return context_id

    def client_for(self, agent_id: str) -> A2AClient:
        """Return the A2A client for a connected agent.

        Raises:
            AgentDeckError: If the agent has no address (not connected)
        """
        address = self.server_url(agent_id)
        if address is None:
            raise AgentDeckError(f"Agent is not connected: {agent_id}")
        client = self._clients.get(agent_id)
        if client is None or client.base_url != address.rstrip("/"):
            client = self._client_factory(address)
            self._clients[agent_id] = client
        return client

    async def resolve_kind(self, agent_id: str) -> BackendKind:
        address = self.server_url(agent_id)
        if address is None:
            return BackendKind.UNKNOWN
        resolved = await self.resolver.resolve(address)
        return resolved.kind

    async def cancel_turn(self, agent_id: str, task_id: str) -> None:
        await self.get_adapter(agent_id).cancel_turn(task_id)

    def clear_context(self, slot_id: str) -> None:
        self.sessions.clear(slot_id)

    async def disconnect_all(self) -> None:
        """Disconnect every adapter; failures are logged, never raised."""
        for agent_id in list(self.adapters):
            try:
                await self.disconnect_agent(agent_id)
            except Exception as e:
                logger.error(f"Failed to disconnect '{agent_id}': {type(e).__name__}: {e}", exc_info=True)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Listen to status updates of every adapter; returns an unsubscribe function."""
        removers = [adapter.on_status(listener) for adapter in self.adapters.values()]

        def remove() -> None:
            for remover in removers:
                remover()

        return remove

    def open_chat(self, agent_id: str, slot_id: str, project_path: str | None = None) -> ChatSession:
        from .chat import ChatSession

        self.get_adapter(agent_id)
        return ChatSession(self, agent_id, slot_id, project_path=project_path)
