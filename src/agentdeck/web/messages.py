"""WebSocket message protocol definitions.

This module defines the message types and formats for WebSocket communication
between a chat front end and the bridge.
"""

from __future__ import annotations
from typing import Any, Literal
from dataclasses import asdict, dataclass


# Client → Server message types
@dataclass
class UserMessage:
    """User sends a chat message."""

    type: Literal["user_message"] = "user_message"
    content: str = ""
    project_path: str | None = None


@dataclass
class CancelMessage:
    """User cancels the running turn."""

    type: Literal["cancel"] = "cancel"


@dataclass
class ClearHistoryMessage:
    """User requests to clear chat history and start a new context."""

    type: Literal["clear_history"] = "clear_history"


# Server → Client message types
@dataclass
class MessageUpdate:
    """Snapshot of the assistant message while it streams."""

    type: Literal["message_update"] = "message_update"
    message: dict[str, Any] | None = None


@dataclass
class MessageComplete:
    """Final snapshot of the assistant message."""

    type: Literal["message_complete"] = "message_complete"
    message: dict[str, Any] | None = None
    state: str = "completed"


@dataclass
class ErrorMessage:
    """Error occurred."""

    type: Literal["error"] = "error"
    message: str = ""
    recoverable: bool = True


@dataclass
class InfoMessage:
    """System info (agent status, history cleared, etc.)."""

    type: Literal["info"] = "info"
    message: str | None = None
    agent: dict[str, Any] | None = None


def to_payload(message: Any) -> dict[str, Any]:
    """Serialize a protocol dataclass, dropping unset optional fields."""
    return {key: value for key, value in asdict(message).items() if value is not None}


def parse_client_message(data: dict[str, Any]) -> UserMessage | CancelMessage | ClearHistoryMessage | None:
    """Return the client message ``data`` encodes, or None for an unknown type."""
    message_type = data.get("type")
    if message_type == "user_message":
        return UserMessage(content=str(data.get("content") or ""), project_path=data.get("project_path"))
    if message_type == "cancel":
        return CancelMessage()
    if message_type == "clear_history":
        return ClearHistoryMessage()
    return None
