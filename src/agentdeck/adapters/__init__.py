"""Backend adapters: one per supported coding agent."""

from __future__ import annotations

from ..config import DeckConfig
from .base import (
    AgentStatusUpdate,
    BackendAdapter,
    Connection,
    ConnectionState,
    find_available_port,
    reserve_port,
)
from .claude_code import ClaudeCodeAdapter
from .codex import CodexAdapter
from .embedded import EmbeddedServerAdapter
from .gemini import GeminiAdapter


def create_default_adapters(config: DeckConfig | None = None) -> dict[str, BackendAdapter]:
    """Create one adapter per known agent, keyed by agent id."""
    config = config or DeckConfig()
    adapters: list[BackendAdapter] = [
        ClaudeCodeAdapter(config),
        CodexAdapter(config),
        GeminiAdapter(config),
    ]
    return {adapter.id: adapter for adapter in adapters}


__all__ = [
    "AgentStatusUpdate",
    "BackendAdapter",
    "ClaudeCodeAdapter",
    "CodexAdapter",
    "Connection",
    "ConnectionState",
    "EmbeddedServerAdapter",
    "GeminiAdapter",
    "create_default_adapters",
    "find_available_port",
    "reserve_port",
]
