"""Backend-agnostic event normalization.

:class:`CommonNormalizer` handles any A2A stream by looking only at the
``itemType`` hint carried in part metadata or data payloads. The backend
specific normalizers build on it and fall back to it for anything they do
not recognise.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..blocks import ArtifactBlock, NormalizedBlock, TextBlock
from ..descriptors import BackendKind
from ..events import (
    DataPart,
    Message,
    Part,
    RawEvent,
    TaskArtifactUpdateEvent,
    TaskStatusUpdateEvent,
    TextPart,
)

logger = logging.getLogger(__name__)

# itemType -> (block type, append to command)
_ITEM_TYPE_BLOCKS: dict[str, tuple[str, bool]] = {
    "reasoning": ("reasoning", False),
    "tool_call": ("tool_call", False),
    "mcp_tool_call": ("tool_call", False),
    "mcp_tool_result": ("tool_call", False),
    "mcp_tool_error": ("tool_call", False),
    "file_change": ("file_change", False),
    "command_execution": ("command_execution", False),
    "command_output": ("command_execution", True),
    "command_status": ("command_execution", True),
    "web_search": ("web_search", False),
    "todo_list": ("todo_list", False),
    "error": ("error", False),
}


def map_item_type(item_type: Any) -> tuple[str, bool]:
    """Map an ``itemType`` hint to ``(block_type, append_to_command)``."""
    if not isinstance(item_type, str):
        return "text", False
    return _ITEM_TYPE_BLOCKS.get(item_type, ("text", False))


def normalize_part(part: Part) -> TextBlock | None:
    """Normalize one message part using only its ``itemType`` hint.

    Text parts keep their text and metadata. Data parts use their ``text``
    field when it is a string. Otherwise a payload that maps to ``text`` is
    shown as a JSON dump, and a structured block starts empty.
    File parts produce nothing.
    """
    if isinstance(part, TextPart):
        item_type = part.metadata.get("itemType") if part.metadata else None
        block_type, append = map_item_type(item_type)
        return TextBlock(
            block_type=block_type,
            text=part.text or "",
            metadata=part.metadata,
            append_to_command=append,
        )

    if isinstance(part, DataPart):
        data = part.data
        block_type, append = map_item_type(data.get("itemType"))
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else None
        if isinstance(data.get("text"), str):
            text = data["text"]
        elif block_type == "text":
            text = json.dumps(data, indent=2)
        else:
            text = ""
        return TextBlock(block_type=block_type, text=text, metadata=metadata, append_to_command=append)

    return None


def normalize_parts(parts: list[Part]) -> list[NormalizedBlock]:
    blocks = [normalize_part(part) for part in parts]
    return [block for block in blocks if block is not None]


class CommonNormalizer:
    """Normalizer used for unknown backends and as the shared fallback."""

    kind = BackendKind.UNKNOWN

    def on_status_update(self, event: TaskStatusUpdateEvent) -> list[NormalizedBlock]:
        message = event.status.message
        if message is None:
            return []
        return normalize_parts(message.parts)

    def on_artifact_update(self, event: TaskArtifactUpdateEvent) -> list[NormalizedBlock]:
        return [ArtifactBlock(artifact=event.artifact, append=event.append)]

    def on_message(self, event: Message) -> list[NormalizedBlock]:
        return normalize_parts(event.parts)

    def normalize(self, event: RawEvent) -> list[NormalizedBlock]:
        """Convert one raw event into zero or more normalized blocks.

        Never raises: a failure is logged and yields no blocks.
        """
        try:
            if isinstance(event, TaskStatusUpdateEvent):
                return self.on_status_update(event)
            if isinstance(event, TaskArtifactUpdateEvent):
                return self.on_artifact_update(event)
            if isinstance(event, Message):
                return self.on_message(event)
            return []
        except Exception as e:
            logger.error(f"Failed to normalize {type(event).__name__}: {type(e).__name__}: {e}", exc_info=True)
            return []
