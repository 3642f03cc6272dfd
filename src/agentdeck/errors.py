"""Exceptions raised by the adapter and streaming layers."""

from __future__ import annotations


class AgentDeckError(Exception):
    """Base class for agentdeck errors."""


class AgentNotFoundError(AgentDeckError):
    """Raised when an agent id has no registered adapter."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class StartupError(AgentDeckError):
    """Raised when an adapter cannot bring up its serving surface."""


class StartupTimeoutError(StartupError):
    """Raised when adapter startup exceeds the configured timeout."""


class StreamTransportError(AgentDeckError):
    """Raised when the event stream of a turn fails at the transport level."""


class A2AProtocolError(AgentDeckError):
    """A JSON-RPC error returned by an A2A server."""

    def __init__(self, code: int, message: str, data: object | None = None):
        super().__init__(f"A2A error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data
