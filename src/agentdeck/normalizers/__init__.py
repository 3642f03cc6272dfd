"""Per-backend conversion of raw A2A events into normalized blocks."""

from __future__ import annotations

from ..descriptors import BackendKind
from .base import BackendNormalizer, DeltaTracker, ToolCallInfo
from .claude import ClaudeNormalizer, classify_claude_tool
from .codex import CodexNormalizer, classify_codex_tool
from .common import CommonNormalizer, normalize_part
from .gemini import GeminiNormalizer, classify_gemini_tool

_NORMALIZERS: dict[BackendKind, type[CommonNormalizer]] = {
    BackendKind.GEMINI: GeminiNormalizer,
    BackendKind.CODEX: CodexNormalizer,
    BackendKind.CLAUDE: ClaudeNormalizer,
}


def create_normalizer(kind: BackendKind | str) -> CommonNormalizer:
    """Create a fresh normalizer for one conversation with a ``kind`` backend."""
    try:
        kind = BackendKind(kind)
    except ValueError:
        kind = BackendKind.UNKNOWN
    return _NORMALIZERS.get(kind, CommonNormalizer)()


__all__ = [
    "BackendNormalizer",
    "ClaudeNormalizer",
    "CodexNormalizer",
    "CommonNormalizer",
    "DeltaTracker",
    "GeminiNormalizer",
    "ToolCallInfo",
    "classify_claude_tool",
    "classify_codex_tool",
    "classify_gemini_tool",
    "create_normalizer",
    "normalize_part",
]
