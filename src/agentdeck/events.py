"""A2A wire types exchanged between the streaming client and the backends.

These mirror the JSON objects carried in ``message/stream`` responses:
task-created records, status updates, artifact updates and plain messages.
Parsing is tolerant: :func:`parse_event` returns ``None`` for payloads it
cannot interpret instead of raising, so one bad frame never sinks a stream.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union


class TaskState(str, Enum):
    """Lifecycle states of an A2A task."""

    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({TaskState.COMPLETED.value, TaskState.FAILED.value, TaskState.CANCELED.value})


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class TextPart:
    text: str
    metadata: dict[str, Any] | None = None
    kind: ClassVar[str] = "text"

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"kind": self.kind, "text": self.text}
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass
class DataPart:
    data: dict[str, Any]
    metadata: dict[str, Any] | None = None
    kind: ClassVar[str] = "data"

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"kind": self.kind, "data": self.data}
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass
class FilePart:
    file: dict[str, Any]
    metadata: dict[str, Any] | None = None
    kind: ClassVar[str] = "file"

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"kind": self.kind, "file": self.file}
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


Part = Union[TextPart, DataPart, FilePart]


def part_from_dict(data: Any) -> Part | None:
    """Parse one message/artifact part, or return None if it is malformed."""
    if not isinstance(data, dict):
        return None
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else None
    kind = data.get("kind")
    if kind == "text" and isinstance(data.get("text"), str):
        return TextPart(text=data["text"], metadata=metadata)
    if kind == "data" and isinstance(data.get("data"), dict):
        return DataPart(data=data["data"], metadata=metadata)
    if kind == "file" and isinstance(data.get("file"), dict):
        return FilePart(file=data["file"], metadata=metadata)
    return None


def _parts_from_list(items: Any) -> list[Part]:
    if not isinstance(items, list):
        return []
    parts = [part_from_dict(item) for item in items]
    return [part for part in parts if part is not None]


@dataclass
class Message:
    """A message with one or more parts."""

    role: str
    parts: list[Part]
    message_id: str = field(default_factory=new_id)
    context_id: str | None = None
    task_id: str | None = None
    metadata: dict[str, Any] | None = None
    kind: ClassVar[str] = "message"

    def text(self) -> str:
        """Join the text parts of the message with newlines."""
        return "\n".join(part.text for part in self.parts if isinstance(part, TextPart))

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "kind": self.kind,
            "messageId": self.message_id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
        }
        if self.context_id is not None:
            data["contextId"] = self.context_id
        if self.task_id is not None:
            data["taskId"] = self.task_id
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        metadata = data.get("metadata")
        return cls(
            role=str(data.get("role", "agent")),
            parts=_parts_from_list(data.get("parts")),
            message_id=str(data.get("messageId") or new_id()),
            context_id=data.get("contextId"),
            task_id=data.get("taskId"),
            metadata=metadata if isinstance(metadata, dict) else None,
        )


@dataclass
class TaskStatus:
    state: str
    message: Message | None = None
    timestamp: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"state": self.state}
        if self.message is not None:
            data["message"] = self.message.to_dict()
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TaskStatus:
        message = data.get("message")
        return cls(
            state=str(data["state"]),
            message=Message.from_dict(message) if isinstance(message, dict) else None,
            timestamp=data.get("timestamp"),
        )


@dataclass
class Artifact:
    artifact_id: str
    parts: list[Part] = field(default_factory=list)
    name: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "artifactId": self.artifact_id,
            "parts": [part.to_dict() for part in self.parts],
        }
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Artifact:
        return cls(
            artifact_id=str(data["artifactId"]),
            parts=_parts_from_list(data.get("parts")),
            name=data.get("name"),
        )


@dataclass
class Task:
    """Task-created record; the first event of a turn."""

    id: str
    context_id: str
    status: TaskStatus
    history: list[Message] = field(default_factory=list)
    kind: ClassVar[str] = "task"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.id,
            "contextId": self.context_id,
            "status": self.status.to_dict(),
            "history": [message.to_dict() for message in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Task:
        history = data.get("history") if isinstance(data.get("history"), list) else []
        return cls(
            id=str(data["id"]),
            context_id=str(data.get("contextId", "")),
            status=TaskStatus.from_dict(data["status"]),
            history=[Message.from_dict(item) for item in history if isinstance(item, dict)],
        )


@dataclass
class TaskStatusUpdateEvent:
    task_id: str
    context_id: str
    status: TaskStatus
    final: bool = False
    metadata: dict[str, Any] | None = None
    kind: ClassVar[str] = "status-update"

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "kind": self.kind,
            "taskId": self.task_id,
            "contextId": self.context_id,
            "status": self.status.to_dict(),
            "final": self.final,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TaskStatusUpdateEvent:
        metadata = data.get("metadata")
        return cls(
            task_id=str(data.get("taskId", "")),
            context_id=str(data.get("contextId", "")),
            status=TaskStatus.from_dict(data["status"]),
            final=bool(data.get("final", False)),
            metadata=metadata if isinstance(metadata, dict) else None,
        )


@dataclass
class TaskArtifactUpdateEvent:
    task_id: str
    context_id: str
    artifact: Artifact
    append: bool = False
    last_chunk: bool = False
    kind: ClassVar[str] = "artifact-update"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "taskId": self.task_id,
            "contextId": self.context_id,
            "artifact": self.artifact.to_dict(),
            "append": self.append,
            "lastChunk": self.last_chunk,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TaskArtifactUpdateEvent:
        return cls(
            task_id=str(data.get("taskId", "")),
            context_id=str(data.get("contextId", "")),
            artifact=Artifact.from_dict(data["artifact"]),
            append=bool(data.get("append", False)),
            last_chunk=bool(data.get("lastChunk", False)),
        )


RawEvent = Union[Task, TaskStatusUpdateEvent, TaskArtifactUpdateEvent, Message]

_EVENT_TYPES = {
    Task.kind: Task,
    TaskStatusUpdateEvent.kind: TaskStatusUpdateEvent,
    TaskArtifactUpdateEvent.kind: TaskArtifactUpdateEvent,
    Message.kind: Message,
}


def parse_event(payload: Any) -> RawEvent | None:
    """Parse a streamed result object into a RawEvent.

    Args:
        payload: Decoded JSON object from one stream frame

    Returns:
        The parsed event, or None when the payload is not a recognised event
    """
    if not isinstance(payload, dict):
        return None
    event_cls = _EVENT_TYPES.get(payload.get("kind"))
    if event_cls is None:
        return None
    try:
        return event_cls.from_dict(payload)
    except (KeyError, TypeError, ValueError, AttributeError):
        return None
