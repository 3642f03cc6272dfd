"""agentdeck: one chat surface for several local coding agents."""

from .accumulator import TurnAccumulator, TurnState, apply_blocks
from .blocks import ChatMessage, MessageBlock
from .chat import ChatSession
from .config import DeckConfig
from .descriptors import AGENTS, AgentDescriptor, BackendKind
from .errors import (
    A2AProtocolError,
    AgentDeckError,
    AgentNotFoundError,
    StartupError,
    StartupTimeoutError,
    StreamTransportError,
)
from .normalizers import create_normalizer
from .runtime import AgentRuntime
from .sessions import SessionRegistry
from .streaming import A2AClient

__all__ = [
    "A2AClient",
    "A2AProtocolError",
    "AGENTS",
    "AgentDeckError",
    "AgentDescriptor",
    "AgentNotFoundError",
    "AgentRuntime",
    "BackendKind",
    "ChatMessage",
    "ChatSession",
    "DeckConfig",
    "MessageBlock",
    "SessionRegistry",
    "StartupError",
    "StartupTimeoutError",
    "StreamTransportError",
    "TurnAccumulator",
    "TurnState",
    "apply_blocks",
    "create_normalizer",
]
