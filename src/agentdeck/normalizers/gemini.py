"""Normalizer for the Gemini CLI A2A server (``coderAgent`` metadata)."""

from __future__ import annotations

from typing import Any

from ..blocks import TextBlock
from ..descriptors import BackendKind
from .base import BackendNormalizer

_COMMAND_TOOLS = frozenset({"bash", "shell", "exec", "command", "run", "run_shell_command"})
_FILE_TOOLS = frozenset({"write", "edit", "replace", "create_file", "apply_patch", "write_file"})


def classify_gemini_tool(tool_name: str) -> str:
    name = tool_name.lower()
    if name in _COMMAND_TOOLS:
        return "command_execution"
    if "search" in name:
        return "web_search"
    if "todo" in name:
        return "todo_list"
    if name in _FILE_TOOLS:
        return "file_change"
    return "tool_call"


class GeminiNormalizer(BackendNormalizer):
    kind = BackendKind.GEMINI
    agent_key = "coderAgent"
    correlates_tool_artifacts = True

    def classify_tool(self, tool_name: str) -> str:
        return classify_gemini_tool(tool_name)

    def thought_block(self, data: dict[str, Any]) -> TextBlock | None:
        pieces = [data.get("subject"), data.get("description")]
        text = "\n".join(piece for piece in pieces if isinstance(piece, str) and piece)
        if not text:
            return None
        return TextBlock(block_type="reasoning", text=text)
