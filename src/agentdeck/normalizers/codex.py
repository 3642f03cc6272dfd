"""Normalizer for the embedded Codex server (``codexAgent`` metadata)."""

from __future__ import annotations

from typing import Any

from ..blocks import TextBlock
from ..descriptors import BackendKind
from .base import BackendNormalizer

_ITEM_BLOCK_TYPES = frozenset({"command_execution", "file_change", "web_search", "todo_list"})


def classify_codex_tool(tool_name: str) -> str:
    """Codex names tools after their item type; anything else is a generic tool call."""
    name = tool_name.lower()
    return name if name in _ITEM_BLOCK_TYPES else "tool_call"


class CodexNormalizer(BackendNormalizer):
    kind = BackendKind.CODEX
    agent_key = "codexAgent"
    correlates_tool_artifacts = True

    def classify_tool(self, tool_name: str) -> str:
        return classify_codex_tool(tool_name)

    def thought_block(self, data: dict[str, Any]) -> TextBlock | None:
        text = self.snapshot_text(data)
        if not text:
            return None
        return TextBlock(block_type="reasoning", text=text)
