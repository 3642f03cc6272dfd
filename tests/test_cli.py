"""Tests for the CLI."""

import io
from dataclasses import replace
from unittest.mock import patch

import pytest

from agentdeck.blocks import ChatMessage, MessageBlock
from agentdeck.cli import HELP_TEXT, BlockPrinter, _describe_block, _list_agents, app
from agentdeck.config import DeckConfig
from agentdeck.events import Artifact
from agentdeck.runtime import AgentRuntime

from fakes import make_runtime


def test_list_agents(capsys):
    _list_agents(AgentRuntime(config=DeckConfig()))

    out = capsys.readouterr().out
    lines = out.strip().splitlines()
    assert [line.split()[0] for line in lines] == ["claude-code", "codex", "gemini-cli"]
    assert "OpenAI's code generation agent" in out


def test_agents_command(capsys):
    app(["agents", "--log-level", "ERROR"])

    assert "gemini-cli" in capsys.readouterr().out


def test_describe_blocks():
    command = MessageBlock("command_execution", "a.txt\n", metadata={"command": "ls", "exitCode": 0})
    files = MessageBlock("file_change", metadata={"changes": [{"path": "app.py", "kind": "add"}]})
    todo = MessageBlock(
        "todo_list",
        metadata={"items": [{"text": "write tests", "completed": True}, {"text": "ship", "completed": False}]},
    )

    assert _describe_block(command) == "$ ls\na.txt\n(exit 0)"
    assert _describe_block(files) == "[files]\n  add: app.py"
    assert _describe_block(MessageBlock("web_search", metadata={"query": "a2a protocol"})) == "[search] a2a protocol"
    assert _describe_block(todo) == "[todo]\n  [x] write tests\n  [ ] ship"
    assert _describe_block(MessageBlock("error", "connection reset")) == "Error: connection reset"
    assert _describe_block(MessageBlock("error", "Error: boom")) == "Error: boom"
    artifact = MessageBlock("artifact", metadata={"artifact": Artifact("report-1", name="Report")})
    assert _describe_block(artifact) == "[artifact] Report"
    assert _describe_block(MessageBlock("tool_call", "read_file (success)")) == "[tool] read_file (success)"


def test_block_printer_streams_text_and_prints_tools_once():
    out = io.StringIO()
    printer = BlockPrinter(out)
    text = MessageBlock("text", "Hel", is_streaming=True)
    command = MessageBlock("command_execution", "a.txt\n", metadata={"command": "ls", "exitCode": 0})

    printer.update(ChatMessage(role="assistant", blocks=(text,), is_streaming=True))
    printer.update(ChatMessage(role="assistant", blocks=(replace(text, content="Hello"),), is_streaming=True))
    final = ChatMessage(role="assistant", blocks=(replace(text, content="Hello", is_streaming=False), command))
    printer.update(final)

    assert out.getvalue() == "Hello\n$ ls\na.txt\n(exit 0)\n\n"


def test_block_printer_marks_reasoning():
    out = io.StringIO()
    printer = BlockPrinter(out)

    printer.update(
        ChatMessage(
            role="assistant",
            blocks=(MessageBlock("reasoning", "Checking files"), MessageBlock("text", "Done")),
        )
    )

    assert out.getvalue() == "[thinking] Checking files\nDone\n"


def test_chat_with_unknown_agent_exits():
    with pytest.raises(SystemExit, match="Agent not found: cursor"):
        app(["chat", "cursor"])


def test_chat_session(capsys):
    runtime = make_runtime()
    inputs = iter(["", "list files", "/help", "/clear", "/exit"])

    with patch("agentdeck.cli.AgentRuntime.create_default", return_value=runtime), patch(
        "builtins.input", side_effect=lambda prompt: next(inputs)
    ):
        app(["chat", "codex", "--project", "/work"])

    out = capsys.readouterr().out
    assert "Starting interactive chat with Codex" in out
    assert "Codex: Listing files\n$ ls\na.txt\n(exit 0)\n" in out
    assert HELP_TEXT in out
    assert "History cleared." in out
    assert out.rstrip().endswith("Exiting chat.")
    assert not runtime.is_agent_connected("codex")


def test_chat_ends_on_eof(capsys):
    runtime = make_runtime()

    with patch("agentdeck.cli.AgentRuntime.create_default", return_value=runtime), patch(
        "builtins.input", side_effect=EOFError
    ):
        app(["chat", "codex"])

    assert "Starting interactive chat with Codex" in capsys.readouterr().out


def test_web_command_uses_config_defaults(monkeypatch):
    monkeypatch.setenv("AGENTDECK_WEB_PORT", "9001")

    with patch("agentdeck.web.server.serve") as serve:
        app(["web", "--host", "0.0.0.0"])

    runtime, host, port = serve.call_args.args
    assert isinstance(runtime, AgentRuntime)
    assert (host, port) == ("0.0.0.0", 9001)
    assert serve.call_args.kwargs == {"log_level": "warning"}
