"""Canonical block types shared by the normalizers, the accumulator and renderers."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from .events import Artifact

BlockType = Literal[
    "text",
    "reasoning",
    "tool_call",
    "file_change",
    "command_execution",
    "web_search",
    "todo_list",
    "error",
    "artifact",
]

TEXT_BLOCK_TYPES: tuple[str, ...] = (
    "text",
    "reasoning",
    "tool_call",
    "file_change",
    "command_execution",
    "web_search",
    "todo_list",
    "error",
)

# Block types that get a visible block even when their first delta is empty
STRUCTURED_BLOCK_TYPES = frozenset(
    {"tool_call", "file_change", "command_execution", "web_search", "todo_list", "error"}
)


@dataclass(frozen=True)
class TextBlock:
    """A text-like normalized block.

    ``text`` is always a delta: the new characters only. Consumers append it.
    """

    block_type: str
    text: str = ""
    metadata: dict[str, Any] | None = None
    append_to_command: bool = False


@dataclass(frozen=True)
class ArtifactBlock:
    """An artifact update passed through from the backend."""

    artifact: Artifact
    append: bool = False
    block_type: str = "artifact"


NormalizedBlock = Union[TextBlock, ArtifactBlock]


def new_block_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class MessageBlock:
    """Renderer-facing accumulated state of one block."""

    type: str
    content: str = ""
    is_streaming: bool = False
    metadata: dict[str, Any] | None = None
    id: str = field(default_factory=new_block_id)

    @property
    def call_id(self) -> str | None:
        if not self.metadata:
            return None
        return self.metadata.get("callId")

    def to_dict(self) -> dict:
        metadata = dict(self.metadata) if self.metadata else None
        if metadata and isinstance(metadata.get("artifact"), Artifact):
            metadata["artifact"] = metadata["artifact"].to_dict()
        return {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "isStreaming": self.is_streaming,
            "metadata": metadata,
        }


@dataclass(frozen=True)
class ChatMessage:
    """One chat message as handed to a renderer."""

    role: Literal["user", "assistant"]
    content: str = ""
    blocks: tuple[MessageBlock, ...] = ()
    is_streaming: bool = False
    id: str = field(default_factory=new_block_id)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "blocks": [block.to_dict() for block in self.blocks],
            "timestamp": self.timestamp,
            "isStreaming": self.is_streaming,
        }
