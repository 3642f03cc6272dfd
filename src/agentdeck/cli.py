"""Command line interface for agentdeck."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TextIO

from .blocks import ChatMessage, MessageBlock
from .config import DeckConfig
from .errors import AgentNotFoundError
from .runtime import AgentRuntime

HELP_TEXT = """Commands:
  /clear  start a new conversation
  /help   show this help
  /exit   quit"""

_LIVE_BLOCK_TYPES = frozenset({"text", "reasoning"})


def _describe_block(block: MessageBlock) -> str:
    """One-paragraph rendering of a finished structured block."""
    metadata = block.metadata or {}
    if block.type == "command_execution":
        lines = [f"$ {metadata.get('command') or ''}".rstrip()]
        if block.content:
            lines.append(block.content.rstrip("\n"))
        if metadata.get("exitCode") is not None:
            lines.append(f"(exit {metadata['exitCode']})")
        return "\n".join(lines)
    if block.type == "file_change":
        changes = metadata.get("changes") or []
        paths = [f"  {change.get('kind', 'update')}: {change.get('path')}" for change in changes if isinstance(change, dict)]
        return "\n".join(["[files]", *paths])
    if block.type == "web_search":
        return f"[search] {metadata.get('query') or block.content}"
    if block.type == "todo_list":
        items = metadata.get("items") or []
        lines = ["[todo]"]
        for item in items:
            if isinstance(item, dict):
                mark = "x" if item.get("completed") else " "
                lines.append(f"  [{mark}] {item.get('text', '')}")
        return "\n".join(lines)
    if block.type == "error":
        return block.content if block.content.startswith("Error") else f"Error: {block.content}"
    if block.type == "artifact":
        artifact = metadata.get("artifact")
        name = getattr(artifact, "name", None) or getattr(artifact, "artifact_id", "")
        return f"[artifact] {name}"
    return f"[tool] {block.content}"


class BlockPrinter:
    """Prints a streaming assistant message incrementally.

    Text and reasoning are printed as they grow; structured blocks are
    printed once, when they stop streaming.
    """

    def __init__(self, out: TextIO | None = None):
        self.out = out if out is not None else sys.stdout
        self._printed: dict[str, int] = {}
        self._finished: set[str] = set()
        self._last_type: str | None = None

    def update(self, message: ChatMessage) -> None:
        for block in message.blocks:
            if block.type in _LIVE_BLOCK_TYPES:
                self._print_live(block)
            elif not block.is_streaming or not message.is_streaming:
                self._print_finished(block)
        if not message.is_streaming:
            self.out.write("\n")
            self.out.flush()

    def _switch_to(self, block: MessageBlock) -> None:
        if self._last_type is not None:
            self.out.write("\n")
        if block.type == "reasoning":
            self.out.write("[thinking] ")
        self._last_type = block.type

    def _print_live(self, block: MessageBlock) -> None:
        printed = self._printed.get(block.id)
        if printed is None:
            if not block.content:
                return
            self._switch_to(block)
            printed = 0
        self.out.write(block.content[printed:])
        self.out.flush()
        self._printed[block.id] = len(block.content)

    def _print_finished(self, block: MessageBlock) -> None:
        if block.id in self._finished:
            return
        self._finished.add(block.id)
        self._switch_to(block)
        self.out.write(_describe_block(block) + "\n")
        self._last_type = None
        self.out.flush()


async def _chat(runtime: AgentRuntime, agent_id: str, slot_id: str, project_path: str | None) -> None:
    chat = runtime.open_chat(agent_id, slot_id, project_path=project_path)
    name = runtime.get_adapter(agent_id).descriptor.name
    print(f"Starting interactive chat with {name}. Type '/help' for commands.\n")

    try:
        while True:
            try:
                user_message = (await asyncio.to_thread(input, "You: ")).strip()
            except EOFError:
                print()
                break

            if not user_message:
                continue
            if user_message.lower() in {"/exit", "/quit"}:
                print("Exiting chat.")
                break
            if user_message.lower() == "/help":
                print(HELP_TEXT)
                continue
            if user_message.lower() == "/clear":
                await chat.clear()
                print("History cleared.\n")
                continue

            printer = BlockPrinter()
            print(f"{name}: ", end="", flush=True)
            async for message in chat.send(user_message):
                printer.update(message)
    finally:
        await runtime.disconnect_all()


def _list_agents(runtime: AgentRuntime) -> None:
    for descriptor in runtime.list_agents():
        print(f"{descriptor.id:<12} {descriptor.name:<12} {descriptor.description}")


def app(argv: list[str] | None = None) -> None:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    parser = argparse.ArgumentParser(description="Chat with local coding agents")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("agents", help="List the available agents", parents=[common])

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat with an agent", parents=[common])
    chat_parser.add_argument("agent_id", help="Agent to chat with (see 'agents')")
    chat_parser.add_argument("--project", help="Working directory for the agent")
    chat_parser.add_argument("--slot", default="cli", help="Conversation slot id")

    web_parser = subparsers.add_parser("web", help="Run the web bridge", parents=[common])
    web_parser.add_argument("--host", help="Interface to bind (default from config)")
    web_parser.add_argument("--port", type=int, help="Port to listen on (default from config)")

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    config = DeckConfig.from_env()
    runtime = AgentRuntime.create_default(config)

    if args.command == "agents":
        _list_agents(runtime)
    elif args.command == "chat":
        try:
            runtime.get_adapter(args.agent_id)
        except AgentNotFoundError as exc:
            raise SystemExit(str(exc)) from exc
        try:
            asyncio.run(_chat(runtime, args.agent_id, args.slot, args.project))
        except KeyboardInterrupt:
            print("\nExiting chat.")
    elif args.command == "web":
        from .web.server import serve

        serve(runtime, args.host or config.web_host, args.port or config.web_port, log_level=args.log_level.lower())
    else:  # pragma: no cover - guarded by argparse
        parser.error("Unknown command")


if __name__ == "__main__":  # pragma: no cover
    app()
