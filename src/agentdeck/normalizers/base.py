"""Shared machinery for the backend-specific normalizers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, ClassVar

from ..blocks import NormalizedBlock, TextBlock
from ..events import DataPart, Part, TaskArtifactUpdateEvent, TaskStatusUpdateEvent, TextPart
from .common import CommonNormalizer, normalize_part

logger = logging.getLogger(__name__)

TOOL_OUTPUT_ARTIFACT = re.compile(r"^tool-(.+)-output$")

TOOL_EVENT_KINDS = frozenset({"tool-call-update", "tool-call-confirmation"})


@dataclass(frozen=True)
class ToolCallInfo:
    """What the first event of a tool call said about it."""

    tool_name: str
    block_type: str


class DeltaTracker:
    """Turns cumulative text snapshots into deltas, per item key."""

    def __init__(self):
        self._lengths: dict[str, int] = {}

    def delta(self, key: str, cumulative: str) -> str:
        """Return the part of ``cumulative`` not emitted yet for ``key``.

        A snapshot that is not longer than what was already emitted yields
        an empty string.
        """
        previous = self._lengths.get(key, 0)
        if len(cumulative) <= previous:
            return ""
        self._lengths[key] = len(cumulative)
        return cumulative[previous:]

    def clear(self) -> None:
        self._lengths.clear()


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class BackendNormalizer(CommonNormalizer):
    """Normalizer for a backend that tags status updates with an agent key.

    Subclasses set ``agent_key`` (the metadata key holding ``{"kind": ...}``)
    and implement :meth:`classify_tool` and :meth:`thought_block`.
    """

    agent_key: ClassVar[str] = ""
    correlates_tool_artifacts: ClassVar[bool] = False

    def __init__(self):
        self.tool_calls: dict[str, ToolCallInfo] = {}
        self.deltas = DeltaTracker()

    def classify_tool(self, tool_name: str) -> str:
        raise NotImplementedError

    def thought_block(self, data: dict[str, Any]) -> TextBlock | None:
        raise NotImplementedError

    def event_kind(self, event: TaskStatusUpdateEvent) -> str | None:
        agent = (event.metadata or {}).get(self.agent_key)
        if not isinstance(agent, dict):
            return None
        return _string(agent.get("kind"))

    def on_status_update(self, event: TaskStatusUpdateEvent) -> list[NormalizedBlock]:
        message = event.status.message
        if message is None:
            return []

        kind = self.event_kind(event)
        blocks: list[NormalizedBlock] = []
        for part in message.parts:
            block = self.normalize_backend_part(part, kind)
            if block is not None:
                blocks.append(block)
        return blocks

    def normalize_backend_part(self, part: Part, kind: str | None) -> TextBlock | None:
        if isinstance(part, DataPart):
            if kind in TOOL_EVENT_KINDS:
                return self.tool_block(part.data)
            if kind == "thought":
                block = self.thought_block(part.data)
                if block is not None:
                    return block

        if isinstance(part, TextPart) and part.metadata and _string(part.metadata.get("itemId")):
            block = normalize_part(part)
            text = self.deltas.delta(part.metadata["itemId"], part.text)
            return replace(block, text=text) if text else None

        return normalize_part(part)

    def snapshot_text(self, data: dict[str, Any]) -> str | None:
        """Delta of a ``{"text", "itemId"}`` payload, or its full text without an id."""
        text = _string(data.get("text")) or _string(data.get("description"))
        if text is None:
            return None
        item_id = _string(data.get("itemId"))
        return self.deltas.delta(item_id, text) if item_id else text

    def tool_block(self, data: dict[str, Any]) -> TextBlock | None:
        """Build the block for a tool-call update.

        The first event for a call id records its name and block type; later
        events reuse that record instead of classifying again.
        """
        request = data.get("request") if isinstance(data.get("request"), dict) else {}
        call_id = _string(request.get("callId"))
        known = self.tool_calls.get(call_id) if call_id else None

        if known is not None:
            tool_name, block_type = known.tool_name, known.block_type
        else:
            tool_name = _string(request.get("name")) or "tool"
            block_type = self.classify_tool(tool_name)
            if call_id:
                self.tool_calls[call_id] = ToolCallInfo(tool_name, block_type)

        status = _string(data.get("status"))
        tool_input = data.get("input")
        if tool_input is None:
            tool_input = data.get("arguments", request.get("args"))

        if block_type == "command_execution":
            command = _string(data.get("command"))
            if command is None and isinstance(tool_input, dict):
                command = _string(tool_input.get("command"))
            output = data.get("output")
            return TextBlock(
                block_type=block_type,
                text=output if isinstance(output, str) else "",
                metadata={
                    "command": command or tool_name,
                    "status": status,
                    "exitCode": data.get("exitCode"),
                    "callId": call_id,
                },
                append_to_command=known is not None,
            )

        if block_type == "file_change":
            return TextBlock(block_type, "", {"changes": data.get("changes"), "status": status, "callId": call_id})
        if block_type == "web_search":
            return TextBlock(block_type, "", {"query": data.get("query"), "status": status, "callId": call_id})
        if block_type == "todo_list":
            return TextBlock(block_type, "", {"items": data.get("items"), "status": status, "callId": call_id})

        server, tool = _string(data.get("server")), _string(data.get("tool"))
        output = data.get("output", data.get("result"))
        return TextBlock(
            block_type="tool_call",
            text=f"{tool_name} ({status})" if status else tool_name,
            metadata={
                "toolName": f"{server}/{tool}" if server and tool else tool_name,
                "status": status,
                "callId": call_id,
                "input": tool_input,
                "output": output,
                "error": data.get("error"),
                "server": server,
                "tool": tool,
                "arguments": data.get("arguments"),
                "result": data.get("result"),
                "elapsedSeconds": data.get("elapsedSeconds"),
            },
        )

    def on_artifact_update(self, event: TaskArtifactUpdateEvent) -> list[NormalizedBlock]:
        if self.correlates_tool_artifacts:
            block = self.tool_output_block(event)
            if block is not None:
                return [block] if block.text else []
        return super().on_artifact_update(event)

    def tool_output_block(self, event: TaskArtifactUpdateEvent) -> TextBlock | None:
        """Route ``tool-<callId>-output`` artifacts of known calls to their block.

        Returns None when the artifact is not the output of a known call.
        """
        match = TOOL_OUTPUT_ARTIFACT.match(event.artifact.artifact_id)
        text = "".join(part.text for part in event.artifact.parts if isinstance(part, TextPart))
        if match is None or not text:
            return None

        call_id = match.group(1)
        info = self.tool_calls.get(call_id)
        if info is None:
            return None

        # Non-append artifacts carry the whole output so far
        if not event.append:
            text = self.deltas.delta(f"{call_id}:output", text)

        if info.block_type == "command_execution":
            return TextBlock(
                block_type="command_execution",
                text=text,
                metadata={"command": info.tool_name, "callId": call_id},
                append_to_command=True,
            )
        return TextBlock(
            block_type="tool_call",
            text=text,
            metadata={"toolName": info.tool_name, "callId": call_id},
        )
