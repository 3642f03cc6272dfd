"""Fold normalized blocks into the ordered block list of one assistant message.

The fold is order dependent: the same blocks applied in a different order
can produce a different (and wrong) list, so callers must apply blocks in
exactly the order the normalizer produced them.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from .blocks import (
    STRUCTURED_BLOCK_TYPES,
    ArtifactBlock,
    ChatMessage,
    MessageBlock,
    NormalizedBlock,
    TextBlock,
)
from .events import Artifact, RawEvent, Task, TaskStatusUpdateEvent

logger = logging.getLogger(__name__)

TERMINAL_TOOL_STATUSES = frozenset({"completed", "failed", "succeeded", "success", "error"})

# Metadata keys kept on a rendered block, per block type
_METADATA_KEYS: dict[str, tuple[str, ...]] = {
    "command_execution": ("callId", "command", "status", "exitCode"),
    "web_search": ("callId", "query", "status"),
    "todo_list": ("callId", "items", "status"),
    "file_change": ("callId", "changes", "status"),
    "error": ("callId", "status"),
    "tool_call": (
        "callId",
        "toolName",
        "status",
        "input",
        "output",
        "error",
        "server",
        "tool",
        "arguments",
        "result",
        "elapsedSeconds",
    ),
}


def is_terminal_status(status: Any) -> bool:
    """Return True for a tool status that ends the tool call."""
    return isinstance(status, str) and status.lower() in TERMINAL_TOOL_STATUSES


def _call_id(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    call_id = metadata.get("callId")
    return call_id if isinstance(call_id, str) and call_id else None


def _pick_metadata(block_type: str, metadata: dict[str, Any] | None) -> dict[str, Any]:
    if not metadata:
        return {}
    keys = _METADATA_KEYS.get(block_type, ())
    picked = {key: metadata[key] for key in keys if metadata.get(key) is not None}
    if block_type == "command_execution" and "command" not in picked and metadata.get("toolName"):
        picked["command"] = metadata["toolName"]
    return picked


def _find_last(blocks: Sequence[MessageBlock], predicate: Callable[[MessageBlock], bool]) -> int | None:
    for index in range(len(blocks) - 1, -1, -1):
        if predicate(blocks[index]):
            return index
    return None


def _artifact_of(block: MessageBlock) -> Artifact | None:
    if not block.metadata:
        return None
    artifact = block.metadata.get("artifact")
    return artifact if isinstance(artifact, Artifact) else None


def _apply_artifact(block: ArtifactBlock, blocks: list[MessageBlock]) -> None:
    artifact_id = block.artifact.artifact_id
    index = _find_last(
        blocks,
        lambda candidate: candidate.type == "artifact"
        and (_artifact_of(candidate) or Artifact("")).artifact_id == artifact_id,
    )

    if block.append and index is not None:
        existing = blocks[index]
        existing_artifact = _artifact_of(existing)
        parts = [*existing_artifact.parts, *block.artifact.parts] if existing_artifact else list(block.artifact.parts)
        name = block.artifact.name or (existing_artifact.name if existing_artifact else None)
        blocks[index] = replace(
            existing,
            metadata={**(existing.metadata or {}), "artifact": Artifact(artifact_id, parts, name)},
        )
        return

    blocks.append(
        MessageBlock(
            type="artifact",
            is_streaming=False,
            metadata={
                "artifact": Artifact(artifact_id, list(block.artifact.parts), block.artifact.name)
            },
        )
    )


def _apply_command_output(block: TextBlock, blocks: list[MessageBlock]) -> bool:
    call_id = _call_id(block.metadata)
    index = None
    if call_id:
        index = _find_last(
            blocks,
            lambda candidate: candidate.type == "command_execution" and candidate.call_id == call_id,
        )
    if index is None and blocks and blocks[-1].type == "command_execution":
        index = len(blocks) - 1
    if index is None:
        return False

    existing = blocks[index]
    metadata = dict(existing.metadata or {})
    incoming = block.metadata or {}
    if incoming.get("status") is not None:
        metadata["status"] = incoming["status"]
    if incoming.get("exitCode") is not None:
        metadata["exitCode"] = incoming["exitCode"]
    if call_id and "callId" not in metadata:
        metadata["callId"] = call_id
    if "command" not in metadata and incoming.get("command"):
        metadata["command"] = incoming["command"]

    blocks[index] = replace(
        existing,
        content=existing.content + block.text,
        metadata=metadata or None,
        is_streaming=existing.is_streaming and not is_terminal_status(metadata.get("status")),
    )
    return True


def _apply_correlated(block: TextBlock, blocks: list[MessageBlock]) -> bool:
    call_id = _call_id(block.metadata)
    if call_id is None or block.block_type not in STRUCTURED_BLOCK_TYPES:
        return False
    index = _find_last(
        blocks,
        lambda candidate: candidate.type == block.block_type and candidate.call_id == call_id,
    )
    if index is None:
        return False

    existing = blocks[index]
    incoming = _pick_metadata(block.block_type, block.metadata)
    metadata = {**(existing.metadata or {}), **incoming}
    content = existing.content

    if block.block_type == "tool_call":
        if "status" in incoming:
            # Status updates restate the summary line
            if block.text:
                content = block.text
        elif block.text:
            previous = (existing.metadata or {}).get("output")
            metadata["output"] = (previous if isinstance(previous, str) else "") + block.text
    else:
        content += block.text

    blocks[index] = replace(
        existing,
        content=content,
        metadata=metadata or None,
        is_streaming=existing.is_streaming and not is_terminal_status(metadata.get("status")),
    )
    return True


def _apply_text(block: TextBlock, blocks: list[MessageBlock]) -> None:
    last = blocks[-1] if blocks else None
    block_type = block.block_type

    if (
        last is not None
        and last.type == block_type
        and last.is_streaming
        and _call_id(block.metadata) is None
    ):
        metadata = last.metadata
        if block_type in STRUCTURED_BLOCK_TYPES:
            merged = {**(last.metadata or {}), **_pick_metadata(block_type, block.metadata)}
            metadata = merged or None
        blocks[-1] = replace(last, content=last.content + block.text, metadata=metadata)
        return

    if not block.text and block_type not in STRUCTURED_BLOCK_TYPES:
        return

    if last is not None and last.is_streaming:
        blocks[-1] = replace(last, is_streaming=False)

    metadata = _pick_metadata(block_type, block.metadata)
    blocks.append(
        MessageBlock(
            type=block_type,
            content=block.text,
            is_streaming=not is_terminal_status(metadata.get("status")),
            metadata=metadata or None,
        )
    )


def apply_block(block: NormalizedBlock, blocks: list[MessageBlock]) -> None:
    """Apply one normalized block to ``blocks`` in place.

    Only the list is modified; existing MessageBlock objects are replaced,
    never mutated.
    """
    if isinstance(block, ArtifactBlock):
        _apply_artifact(block, blocks)
        return

    if block.append_to_command and _apply_command_output(block, blocks):
        return
    if _apply_correlated(block, blocks):
        return
    _apply_text(block, blocks)


def apply_blocks(blocks: Iterable[NormalizedBlock], into: Sequence[MessageBlock]) -> list[MessageBlock]:
    """Fold normalized blocks into a message block list.

    Args:
        blocks: Normalized blocks, in arrival order
        into: Current message blocks (left untouched)

    Returns:
        New list of message blocks
    """
    result = list(into)
    for block in blocks:
        apply_block(block, result)
    return result


def finalize_blocks(blocks: Sequence[MessageBlock]) -> list[MessageBlock]:
    """Return ``blocks`` with streaming turned off everywhere."""
    return [replace(block, is_streaming=False) if block.is_streaming else block for block in blocks]


class TurnState(str, Enum):
    """Lifecycle of one conversation turn."""

    SUBMITTED = "submitted"
    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_TURN_STATES = frozenset({TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELED})

_STATE_BY_TASK_STATE = {
    "completed": TurnState.COMPLETED,
    "failed": TurnState.FAILED,
    "canceled": TurnState.CANCELED,
}


class TurnAccumulator:
    """Holds the assistant message of one turn and its state machine.

    Submitted -> Working -> {Completed | Failed | Canceled}. Terminal states
    are final: blocks or status events arriving afterwards are ignored.
    """

    def __init__(self, message: ChatMessage | None = None):
        self.message = message or ChatMessage(role="assistant", is_streaming=True)
        self.state = TurnState.SUBMITTED
        self.task_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_TURN_STATES

    def apply(self, blocks: Sequence[NormalizedBlock]) -> bool:
        """Fold ``blocks`` into the message.

        Returns:
            True if the message changed, False if the turn is already over
            or there was nothing to apply
        """
        if self.is_terminal or not blocks:
            return False
        if self.state == TurnState.SUBMITTED:
            self.state = TurnState.WORKING
        new_blocks = apply_blocks(blocks, self.message.blocks)
        self.message = replace(
            self.message,
            blocks=tuple(new_blocks),
            content="".join(block.content for block in new_blocks if block.type == "text"),
        )
        return True

    def observe(self, event: RawEvent) -> None:
        """Track task id and turn state from a raw event."""
        if self.is_terminal:
            return
        if isinstance(event, Task):
            self.task_id = event.id
            if event.status.state != "submitted":
                self.state = TurnState.WORKING
            return
        if isinstance(event, TaskStatusUpdateEvent):
            self.task_id = self.task_id or event.task_id
            terminal = _STATE_BY_TASK_STATE.get(event.status.state)
            if terminal is not None:
                self._finish(terminal)
            else:
                self.state = TurnState.WORKING

    def complete(self) -> None:
        self._finish(TurnState.COMPLETED)

    def cancel(self) -> None:
        self._finish(TurnState.CANCELED)

    def fail(self, error: str | None = None) -> None:
        """Fail the turn, appending one error block when ``error`` is given."""
        if self.is_terminal:
            return
        if error:
            self.apply([TextBlock(block_type="error", text=error)])
        self._finish(TurnState.FAILED)

    def _finish(self, state: TurnState) -> None:
        if self.is_terminal:
            return
        self.state = state
        self.message = replace(
            self.message,
            blocks=tuple(finalize_blocks(self.message.blocks)),
            is_streaming=False,
        )
        logger.debug(f"Turn {self.task_id or '?'} finished with state {state.value}")
