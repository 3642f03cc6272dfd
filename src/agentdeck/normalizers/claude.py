"""Normalizer for the embedded Claude Code server (``claudeAgent`` metadata)."""

from __future__ import annotations

from typing import Any

from ..blocks import TextBlock
from ..descriptors import BackendKind
from .base import BackendNormalizer

_COMMAND_TOOLS = frozenset({"bash", "shell", "command"})
_FILE_TOOLS = frozenset({"write", "edit", "multiedit", "notebookedit", "replace", "apply_patch"})


def classify_claude_tool(tool_name: str) -> str:
    name = tool_name.lower()
    if name in _COMMAND_TOOLS:
        return "command_execution"
    if "search" in name or "web" in name:
        return "web_search"
    if name in _FILE_TOOLS:
        return "file_change"
    if "todo" in name:
        return "todo_list"
    return "tool_call"


class ClaudeNormalizer(BackendNormalizer):
    kind = BackendKind.CLAUDE
    agent_key = "claudeAgent"

    def classify_tool(self, tool_name: str) -> str:
        return classify_claude_tool(tool_name)

    def thought_block(self, data: dict[str, Any]) -> TextBlock | None:
        text = self.snapshot_text(data)
        if not text:
            return None
        return TextBlock(block_type="reasoning", text=text)
