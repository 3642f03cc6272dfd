"""Claude Code backend: ``claude -p --output-format stream-json`` behind an A2A server."""

from __future__ import annotations

import logging
from typing import Any

from ..config import DeckConfig
from ..descriptors import CLAUDE_CODE
from .a2a_server import build_agent_card
from .embedded import EmbeddedServerAdapter
from .executor import SubprocessExecutor, TaskPublisher, TurnHandler

logger = logging.getLogger(__name__)

CLAUDE_SKILLS = [
    {
        "id": "code_generation",
        "name": "Code Generation",
        "description": "Generate, modify, and explain code using Claude",
        "tags": ["code", "development", "programming"],
    },
    {
        "id": "file_operations",
        "name": "File Operations",
        "description": "Read, write, and edit files",
        "tags": ["files", "edit", "read", "write"],
    },
    {
        "id": "shell_commands",
        "name": "Shell Commands",
        "description": "Execute shell commands for development tasks",
        "tags": ["bash", "shell", "terminal"],
    },
]


def _result_text(content: Any) -> str:
    """Flatten a tool_result content field into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = [
            item.get("text", "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(piece for piece in pieces if piece)
    return ""


def tool_details(name: str, tool_input: Any) -> dict[str, Any]:
    """Extra tool-update fields derived from a tool's input."""
    if not isinstance(tool_input, dict):
        return {}
    lowered = name.lower()
    if lowered == "bash" and isinstance(tool_input.get("command"), str):
        return {"command": tool_input["command"]}
    if lowered in ("write", "edit", "multiedit", "notebookedit"):
        path = tool_input.get("file_path") or tool_input.get("notebook_path")
        if isinstance(path, str):
            return {"changes": [{"path": path, "kind": "add" if lowered == "write" else "update"}]}
    if lowered in ("websearch", "webfetch"):
        query = tool_input.get("query") or tool_input.get("url")
        if isinstance(query, str):
            return {"query": query}
    if lowered == "todowrite" and isinstance(tool_input.get("todos"), list):
        return {
            "items": [
                {"text": todo.get("content", ""), "completed": todo.get("status") == "completed"}
                for todo in tool_input["todos"]
                if isinstance(todo, dict)
            ]
        }
    return {}


class ClaudeTurnHandler(TurnHandler):
    """Handles ``claude --output-format stream-json`` events.

    Partial text and thinking deltas are accumulated per content block and
    published as cumulative snapshots keyed by ``<kind>:<message id>:<index>``.
    Complete assistant messages only contribute text that was not streamed.
    """

    def __init__(self, publisher: TaskPublisher):
        super().__init__(publisher)
        self._message_id = "message"
        self._snapshots: dict[str, str] = {}
        self._streamed: set[str] = set()
        self._tool_names: dict[str, str] = {}

    def handle(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "system" and event.get("subtype") == "init":
            self.session_id = event.get("session_id") or self.session_id
        elif kind == "stream_event":
            self._stream_event(event.get("event") or {})
        elif kind == "assistant":
            self._assistant(event.get("message") or {})
        elif kind == "user":
            self._tool_results(event.get("message") or {})
        elif kind == "tool_progress":
            self._tool_progress(event)
        elif kind == "auth_status" and event.get("error"):
            self.failure = f"Authentication error: {event['error']}"
        elif kind == "result":
            self._result(event)

    def _stream_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "message_start":
            message_id = (event.get("message") or {}).get("id")
            if message_id:
                self._message_id = message_id
            return
        if event_type != "content_block_delta":
            return

        delta = event.get("delta") or {}
        index = event.get("index", 0)
        self._streamed.add(self._message_id)
        if delta.get("type") == "text_delta" and delta.get("text"):
            key = f"text:{self._message_id}:{index}"
            self.publisher.text(self._extend(key, delta["text"]), item_id=key)
        elif delta.get("type") == "thinking_delta" and delta.get("thinking"):
            key = f"thinking:{self._message_id}:{index}"
            self.publisher.thought(self._extend(key, delta["thinking"]), item_id=key)

    def _extend(self, key: str, text: str) -> str:
        snapshot = self._snapshots.get(key, "") + text
        self._snapshots[key] = snapshot
        return snapshot

    def _assistant(self, message: dict[str, Any]) -> None:
        message_id = message.get("id")
        streamed = message_id in self._streamed
        content = message.get("content") if isinstance(message.get("content"), list) else []

        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "tool_use":
                call_id = block.get("id") or ""
                name = block.get("name") or "tool"
                self._tool_names[call_id] = name
                self.publisher.tool_update(
                    {
                        "request": {"callId": call_id, "name": name},
                        "status": "requested",
                        "input": block.get("input"),
                        **tool_details(name, block.get("input")),
                    }
                )
            elif streamed:
                continue
            elif block_type == "text" and block.get("text"):
                self.publisher.text(block["text"])
            elif block_type == "thinking" and block.get("thinking"):
                self.publisher.thought(block["thinking"])

    def _tool_results(self, message: dict[str, Any]) -> None:
        content = message.get("content") if isinstance(message.get("content"), list) else []
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            call_id = block.get("tool_use_id") or ""
            output = _result_text(block.get("content"))
            failed = bool(block.get("is_error"))
            data: dict[str, Any] = {
                "request": {"callId": call_id, "name": self._tool_names.get(call_id, "tool")},
                "status": "failed" if failed else "completed",
                "output": output,
            }
            if failed:
                data["error"] = output
            self.publisher.tool_update(data)

    def _tool_progress(self, event: dict[str, Any]) -> None:
        call_id = event.get("tool_use_id") or ""
        name = event.get("tool_name") or self._tool_names.get(call_id, "tool")
        self._tool_names[call_id] = name
        self.publisher.tool_update(
            {
                "request": {"callId": call_id, "name": name},
                "status": "in_progress",
                "elapsedSeconds": event.get("elapsed_time_seconds"),
            }
        )

    def _result(self, event: dict[str, Any]) -> None:
        self.session_id = event.get("session_id") or self.session_id
        subtype = event.get("subtype") or ""
        if subtype.startswith("error") or event.get("is_error"):
            errors = event.get("errors") if isinstance(event.get("errors"), list) else []
            self.failure = "\n".join(str(error) for error in errors) or event.get("result") or subtype or "Claude Code failed"


class ClaudeCodeExecutor(SubprocessExecutor):
    agent_key = "claudeAgent"
    cli_name = "claude"

    def build_command(self, prompt: str, session_id: str | None) -> list[str]:
        command = [
            self.config.claude_cli,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--include-partial-messages",
            "--permission-mode",
            "bypassPermissions",
            "--allowedTools",
            ",".join(self.config.claude_allowed_tools),
        ]
        if self.config.claude_model:
            command += ["--model", self.config.claude_model]
        if session_id:
            command += ["--resume", session_id]
        return command

    def create_handler(self, publisher: TaskPublisher) -> ClaudeTurnHandler:
        return ClaudeTurnHandler(publisher)


class ClaudeCodeAdapter(EmbeddedServerAdapter):
    def __init__(self, config: DeckConfig | None = None):
        super().__init__(CLAUDE_CODE, config)

    @property
    def cli_binary(self) -> str:
        return self.config.claude_cli

    def create_executor(self) -> ClaudeCodeExecutor:
        return ClaudeCodeExecutor(self.config)

    def agent_card(self, base_url: str) -> dict:
        return build_agent_card(
            name="Claude Code",
            description="Anthropic's coding agent running the Claude Code CLI",
            base_url=base_url,
            organization="Anthropic",
            organization_url="https://anthropic.com",
            skills=CLAUDE_SKILLS,
        )
