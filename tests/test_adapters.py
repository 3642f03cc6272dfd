"""Tests for the adapter lifecycle and port allocation."""

import asyncio
import socket

import httpx
import pytest

from agentdeck.adapters import (
    ClaudeCodeAdapter,
    CodexAdapter,
    ConnectionState,
    GeminiAdapter,
    create_default_adapters,
    find_available_port,
    reserve_port,
)
from agentdeck.adapters.a2a_server import build_agent_card
from agentdeck.adapters.embedded import EmbeddedServerAdapter
from agentdeck.adapters.executor import AgentExecutor, TaskPublisher
from agentdeck.config import DeckConfig
from agentdeck.descriptors import CODEX
from agentdeck.errors import StartupError, StartupTimeoutError
from agentdeck.streaming import A2AClient

from fakes import FakeAdapter


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_reserve_port_skips_taken_ports():
    start = _free_port()

    async def run():
        first = await reserve_port(start, "127.0.0.1")
        second = await reserve_port(start, "127.0.0.1")
        return first, second

    first, second = asyncio.run(run())
    try:
        assert first.getsockname()[1] == start
        assert second.getsockname()[1] > start
    finally:
        first.close()
        second.close()


def test_find_available_port_releases_the_socket():
    start = _free_port()

    port = asyncio.run(find_available_port(start, "127.0.0.1"))

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", port))


def test_connect_is_idempotent_under_concurrency():
    adapter = FakeAdapter(delay=0.05)
    updates = []
    adapter.on_status(updates.append)

    async def run():
        await asyncio.gather(adapter.connect(), adapter.connect(), adapter.connect())
        await adapter.connect()

    asyncio.run(run())

    assert adapter.starts == 1
    assert adapter.is_connected()
    assert adapter.get_address() == "http://fake-agent"
    assert [update.status for update in updates] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert updates[-1].server_url == "http://fake-agent"


def test_startup_failure_cleans_up_and_allows_retry():
    adapter = FakeAdapter(fail=RuntimeError("binary crashed"))

    with pytest.raises(StartupError, match="binary crashed"):
        asyncio.run(adapter.connect())

    assert adapter.connection.state == ConnectionState.ERROR
    assert adapter.connection.error == "binary crashed"
    assert adapter.address is None
    assert adapter.stops == 1

    adapter.fail = None
    asyncio.run(adapter.connect())

    assert adapter.is_connected()
    assert adapter.starts == 2


def test_startup_error_is_not_wrapped():
    error = StartupError("CLI not found")
    adapter = FakeAdapter(fail=error)

    with pytest.raises(StartupError) as excinfo:
        asyncio.run(adapter.connect())

    assert excinfo.value is error


def test_startup_timeout():
    adapter = FakeAdapter(config=DeckConfig(startup_timeout=0.05), delay=5)

    with pytest.raises(StartupTimeoutError):
        asyncio.run(adapter.connect())

    assert adapter.connection.state == ConnectionState.ERROR
    assert adapter.stops == 1


def test_disconnect():
    adapter = FakeAdapter()

    async def run():
        await adapter.disconnect()
        assert adapter.stops == 0
        await adapter.connect()
        await adapter.disconnect()

    asyncio.run(run())

    assert adapter.stops == 1
    assert adapter.connection.state == ConnectionState.DISCONNECTED
    assert adapter.address is None
    assert not adapter.is_connected()


def test_cancel_turn_is_best_effort():
    adapter = FakeAdapter()

    async def failing_cancel(task_id):
        raise RuntimeError("backend gone")

    async def run():
        await adapter.cancel_turn("t0")
        await adapter.connect()
        await adapter.cancel_turn("t1")
        adapter._cancel = failing_cancel
        await adapter.cancel_turn("t2")

    asyncio.run(run())

    assert adapter.cancels == ["t1"]


def test_failing_status_listener_does_not_break_connect():
    adapter = FakeAdapter()
    seen = []

    def broken(update):
        raise ValueError("listener bug")

    adapter.on_status(broken)
    remove = adapter.on_status(seen.append)
    asyncio.run(adapter.connect())
    remove()
    asyncio.run(adapter.disconnect())

    assert [update.status for update in seen] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


def test_create_default_adapters():
    adapters = create_default_adapters(DeckConfig())

    assert list(adapters) == ["claude-code", "codex", "gemini-cli"]
    assert isinstance(adapters["claude-code"], ClaudeCodeAdapter)
    assert isinstance(adapters["codex"], CodexAdapter)
    assert isinstance(adapters["gemini-cli"], GeminiAdapter)
    assert all(adapter.connection.state == ConnectionState.DISCONNECTED for adapter in adapters.values())


def test_embedded_adapter_requires_cli(monkeypatch):
    monkeypatch.setattr("agentdeck.adapters.embedded.shutil.which", lambda name: None)
    adapter = CodexAdapter(DeckConfig(codex_cli="no-such-codex"))

    with pytest.raises(StartupError, match="no-such-codex"):
        asyncio.run(adapter.connect())

    assert adapter.connection.state == ConnectionState.ERROR


def test_gemini_adapter_reports_early_exit():
    adapter = GeminiAdapter(DeckConfig(gemini_command=("false",), startup_timeout=10))

    with pytest.raises(StartupError):
        asyncio.run(adapter.connect())

    assert adapter.connection.state == ConnectionState.ERROR
    assert adapter.client is None


class EchoExecutor(AgentExecutor):
    async def execute(self, context, bus):
        publisher = TaskPublisher(bus, context.task_id, context.context_id, "codexAgent")
        publisher.task_created(context.user_message)
        publisher.working()
        publisher.text(f"echo: {context.text}", item_id="m1")
        publisher.complete()

    async def cancel_task(self, task_id, bus):
        TaskPublisher(bus, task_id, "ctx", "codexAgent").canceled()


class EchoAdapter(EmbeddedServerAdapter):
    def __init__(self, config):
        super().__init__(CODEX, config)

    @property
    def cli_binary(self):
        return "echo-cli"

    def create_executor(self):
        return EchoExecutor()

    def agent_card(self, base_url):
        return build_agent_card(
            name="Echo",
            description="Echoes the prompt",
            base_url=base_url,
            organization="OpenAI",
            organization_url="https://example.com",
            skills=[],
        )


def test_embedded_server_serves_a2a(monkeypatch):
    monkeypatch.setattr("agentdeck.adapters.embedded.shutil.which", lambda name: "/usr/bin/" + name)
    start = _free_port()
    adapter = EchoAdapter(DeckConfig(ports={"codex": start}, shutdown_timeout=1))

    async def run():
        await adapter.connect()
        try:
            async with httpx.AsyncClient(trust_env=False) as http:
                client = A2AClient(adapter.get_address(), http_client=http)
                card = await client.get_agent_card()
                events = [event async for event in client.stream_message("ctx", "hello")]
        finally:
            await adapter.disconnect()
        return card, events

    card, events = asyncio.run(run())

    assert card["name"] == "Echo"
    assert card["url"].endswith("/a2a/jsonrpc")
    assert [event.kind for event in events] == ["task", "status-update", "status-update", "status-update"]
    assert events[2].status.message.text() == "echo: hello"
    assert events[-1].status.state == "completed"
    assert adapter.connection.state == ConnectionState.DISCONNECTED


def test_second_embedded_server_gets_a_higher_port(monkeypatch):
    monkeypatch.setattr("agentdeck.adapters.embedded.shutil.which", lambda name: "/usr/bin/" + name)
    start = _free_port()
    config = DeckConfig(ports={"codex": start}, shutdown_timeout=1)
    first, second = EchoAdapter(config), EchoAdapter(config)

    async def run():
        await first.connect()
        try:
            await second.connect()
            try:
                return first.get_address(), second.get_address()
            finally:
                await second.disconnect()
        finally:
            await first.disconnect()

    first_address, second_address = asyncio.run(run())

    assert httpx.URL(first_address).port == start
    assert httpx.URL(second_address).port > start
