"""Static descriptors for the supported coding-agent backends.

Each descriptor declares what a backend can do so a UI can gate actions
without asking the backend at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackendKind(str, Enum):
    """Closed set of backend families; selects the event normalizer."""

    GEMINI = "gemini-cli"
    CODEX = "codex"
    CLAUDE = "claude-code"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AgentCapabilities:
    """Capabilities advertised for an agent."""

    streaming: bool = True
    push_notifications: bool = False
    state_transition_history: bool = True
    tools: tuple[str, ...] | None = None

    def to_dict(self) -> dict:
        """Serialize to the camelCase shape used in agent cards."""
        data = {
            "streaming": self.streaming,
            "pushNotifications": self.push_notifications,
            "stateTransitionHistory": self.state_transition_history,
        }
        if self.tools is not None:
            data["tools"] = list(self.tools)
        return data


@dataclass(frozen=True)
class AgentDescriptor:
    """Immutable identity and capability set of one backend."""

    id: str
    name: str
    description: str
    kind: BackendKind
    capabilities: AgentCapabilities

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
            "capabilities": self.capabilities.to_dict(),
        }


CLAUDE_CODE = AgentDescriptor(
    id="claude-code",
    name="Claude Code",
    description="Anthropic's CLI coding assistant",
    kind=BackendKind.CLAUDE,
    capabilities=AgentCapabilities(
        tools=("Read", "Write", "Edit", "Bash", "Glob", "Grep", "WebSearch", "WebFetch", "Task"),
    ),
)

CODEX = AgentDescriptor(
    id="codex",
    name="Codex",
    description="OpenAI's code generation agent",
    kind=BackendKind.CODEX,
    capabilities=AgentCapabilities(),
)

GEMINI_CLI = AgentDescriptor(
    id="gemini-cli",
    name="Gemini CLI",
    description="Google's terminal AI agent",
    kind=BackendKind.GEMINI,
    capabilities=AgentCapabilities(),
)

# Registry of all known agents, keyed by id
AGENTS: dict[str, AgentDescriptor] = {
    descriptor.id: descriptor for descriptor in (CLAUDE_CODE, CODEX, GEMINI_CLI)
}
