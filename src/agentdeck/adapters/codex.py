"""Codex backend: ``codex exec --json`` behind an A2A server."""

from __future__ import annotations

import json
import logging
from typing import Any

from ..config import DeckConfig
from ..descriptors import CODEX
from .a2a_server import build_agent_card
from .embedded import EmbeddedServerAdapter
from .executor import SubprocessExecutor, TaskPublisher, TurnHandler

logger = logging.getLogger(__name__)

CODEX_SKILLS = [
    {
        "id": "code_generation",
        "name": "Code Generation",
        "description": "Generate, modify, and explain code using Codex",
        "tags": ["code", "development", "programming"],
    },
    {
        "id": "shell_commands",
        "name": "Shell Commands",
        "description": "Execute shell commands for development tasks",
        "tags": ["bash", "shell", "terminal"],
    },
]

_ITEM_EVENTS = frozenset({"item.started", "item.updated", "item.completed"})


def stringify_output(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2)
    except (TypeError, ValueError):
        return str(value)


class CodexTurnHandler(TurnHandler):
    """Handles ``codex exec --json`` events.

    Item text and command output are cumulative in Codex events and are
    published unchanged (with the item id), so clients compute the deltas.
    """

    def __init__(self, publisher: TaskPublisher):
        super().__init__(publisher)
        self._started: set[str] = set()
        self._completed: set[str] = set()

    def handle(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "thread.started":
            self.session_id = event.get("thread_id") or self.session_id
        elif kind in _ITEM_EVENTS:
            item = event.get("item")
            if isinstance(item, dict) and item.get("id"):
                self._item(item, completed=kind == "item.completed")
        elif kind == "turn.failed":
            error = event.get("error") if isinstance(event.get("error"), dict) else {}
            self.failure = error.get("message") or "Turn failed"
        elif kind == "error":
            self.failure = event.get("message") or "Unknown error"

    def _item(self, item: dict[str, Any], completed: bool) -> None:
        item_id = item["id"]
        item_type = item.get("type") or item.get("item_type")

        if item_type == "agent_message":
            if item.get("text"):
                self.publisher.text(item["text"], item_id=item_id)
        elif item_type == "reasoning":
            if item.get("text"):
                self.publisher.thought(item["text"], item_id=item_id)
        elif item_type == "command_execution":
            self._command(item_id, item, completed)
        elif item_type == "file_change":
            if completed:
                self._tool(item_id, "file_change", status=item.get("status"), changes=item.get("changes"))
        elif item_type == "mcp_tool_call":
            self._mcp_tool_call(item_id, item, completed)
        elif item_type == "web_search":
            self._tool(item_id, "web_search", status="completed", query=item.get("query"))
        elif item_type == "todo_list":
            self._tool(item_id, "todo_list", status="updated", items=item.get("items"))
        elif item_type == "error":
            self.publisher.error_text(f"Error: {item.get('message', 'Unknown error')}")
        else:
            logger.debug(f"Ignoring Codex item type {item_type!r}")

    def _tool(self, item_id: str, name: str, **fields: Any) -> None:
        self.publisher.tool_update({"request": {"callId": item_id, "name": name}, **fields})

    def _command(self, item_id: str, item: dict[str, Any], completed: bool) -> None:
        if item_id not in self._started:
            self._started.add(item_id)
            self._tool(item_id, "command_execution", status=item.get("status"), command=item.get("command"))

        output = item.get("aggregated_output")
        if output:
            self.publisher.tool_output(item_id, output, append=False, last_chunk=completed)

        if completed and item_id not in self._completed:
            self._completed.add(item_id)
            self._tool(
                item_id,
                "command_execution",
                status=item.get("status"),
                command=item.get("command"),
                exitCode=item.get("exit_code"),
            )

    def _mcp_tool_call(self, item_id: str, item: dict[str, Any], completed: bool) -> None:
        if item_id not in self._started:
            self._started.add(item_id)
            self._tool(
                item_id,
                "mcp_tool_call",
                status=item.get("status"),
                server=item.get("server"),
                tool=item.get("tool"),
                arguments=item.get("arguments"),
            )

        if not completed or item_id in self._completed:
            return
        self._completed.add(item_id)
        if item.get("error"):
            self._tool(item_id, "mcp_tool_call", status="failed", error=item["error"])
        elif item.get("result") is not None:
            self.publisher.tool_output(item_id, stringify_output(item["result"]), append=False, last_chunk=True)
            self._tool(item_id, "mcp_tool_call", status="completed", result=item["result"])
        else:
            self._tool(item_id, "mcp_tool_call", status=item.get("status") or "completed")


class CodexExecutor(SubprocessExecutor):
    agent_key = "codexAgent"
    cli_name = "codex"

    def build_command(self, prompt: str, session_id: str | None) -> list[str]:
        options = ["--json", "--skip-git-repo-check", "-c", 'approval_policy="never"']
        if self.config.codex_model:
            options += ["-m", self.config.codex_model]
        if session_id:
            # Resumed turns read the prompt from stdin
            return [self.config.codex_cli, "exec", "resume", session_id, *options, "-"]
        return [self.config.codex_cli, "exec", *options, prompt]

    def stdin_payload(self, prompt: str, session_id: str | None) -> bytes | None:
        if session_id:
            return prompt.encode("utf-8") + b"\n"
        return None

    def create_handler(self, publisher: TaskPublisher) -> CodexTurnHandler:
        return CodexTurnHandler(publisher)


class CodexAdapter(EmbeddedServerAdapter):
    def __init__(self, config: DeckConfig | None = None):
        super().__init__(CODEX, config)

    @property
    def cli_binary(self) -> str:
        return self.config.codex_cli

    def create_executor(self) -> CodexExecutor:
        return CodexExecutor(self.config)

    def agent_card(self, base_url: str) -> dict:
        return build_agent_card(
            name="Codex",
            description="OpenAI's coding agent running the Codex CLI",
            base_url=base_url,
            organization="OpenAI",
            organization_url="https://openai.com",
            skills=CODEX_SKILLS,
        )
