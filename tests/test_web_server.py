"""Tests for the web bridge (REST and WebSocket)."""

import pytest
from fastapi.testclient import TestClient

from agentdeck.web.messages import (
    ErrorMessage,
    InfoMessage,
    MessageComplete,
    UserMessage,
    parse_client_message,
    to_payload,
)
from agentdeck.web.server import create_app

from fakes import AGENT_URL, FakeAdapter, FakeAgentServer, make_runtime


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def runtime(adapter):
    return make_runtime(FakeAgentServer(), adapter=adapter)


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime))


def receive_until_complete(websocket):
    """Collect server messages up to message_complete, skipping status info."""
    received = []
    while True:
        message = websocket.receive_json()
        if message["type"] == "info" and message.get("message") == "status":
            continue
        received.append(message)
        if message["type"] in ("message_complete", "error"):
            return received


# Protocol messages


def test_to_payload_drops_unset_fields():
    assert to_payload(ErrorMessage(message="boom")) == {"type": "error", "message": "boom", "recoverable": True}
    assert to_payload(InfoMessage(message="History cleared")) == {"type": "info", "message": "History cleared"}
    assert to_payload(MessageComplete(message={"id": "m"}, state="failed"))["state"] == "failed"


def test_parse_client_message():
    parsed = parse_client_message({"type": "user_message", "content": "hi", "project_path": "/work"})

    assert parsed == UserMessage(content="hi", project_path="/work")
    assert parse_client_message({"type": "cancel"}).type == "cancel"
    assert parse_client_message({"type": "clear_history"}).type == "clear_history"
    assert parse_client_message({"type": "ping"}) is None


# REST API


def test_list_agents(client):
    response = client.get("/api/agents")

    assert response.status_code == 200
    [agent] = response.json()["agents"]
    assert agent["id"] == "codex"
    assert agent["name"] == "Codex"
    assert agent["status"] == "disconnected"
    assert agent["capabilities"]["streaming"] is True


def test_unknown_agent_is_404(client):
    assert client.get("/api/agents/cursor").status_code == 404
    assert client.post("/api/agents/cursor/connect").status_code == 404
    assert client.get("/api/agents/cursor/status").status_code == 404


def test_connect_status_and_disconnect(client):
    connected = client.post("/api/agents/codex/connect").json()
    status = client.get("/api/agents/codex/status").json()
    agent = client.get("/api/agents/codex").json()
    disconnected = client.post("/api/agents/codex/disconnect").json()

    assert connected == {"success": True, "error": None, "serverUrl": AGENT_URL}
    assert status == {"agentId": "codex", "status": "connected", "error": None, "serverUrl": AGENT_URL}
    assert agent["serverUrl"] == AGENT_URL
    assert disconnected == {"success": True}
    assert client.get("/api/agents/codex/status").json()["status"] == "disconnected"


def test_connect_failure_is_reported():
    runtime = make_runtime(adapter=FakeAdapter(fail=RuntimeError("codex not installed")))
    client = TestClient(create_app(runtime))

    result = client.post("/api/agents/codex/connect").json()

    assert result["success"] is False
    assert "codex not installed" in result["error"]
    assert client.get("/api/agents/codex/status").json()["status"] == "error"


def test_cancel_task(client, adapter):
    client.post("/api/agents/codex/connect")

    response = client.post("/api/agents/codex/tasks/task-7/cancel")

    assert response.json() == {"success": True}
    assert adapter.cancels == ["task-7"]


def test_slot_context(client):
    first = client.get("/api/slots/left/context", params={"project_path": "/work"}).json()
    again = client.get("/api/slots/left/context").json()
    client.delete("/api/slots/left")
    fresh = client.get("/api/slots/left/context").json()

    assert first["slotId"] == "left"
    assert first["projectPath"] == "/work"
    assert again == first
    assert fresh["contextId"] != first["contextId"]
    assert fresh["projectPath"] is None


def test_shutdown_disconnects_agents(runtime):
    with TestClient(create_app(runtime)) as client:
        client.post("/api/agents/codex/connect")
        assert runtime.is_agent_connected("codex")

    assert not runtime.is_agent_connected("codex")


# WebSocket


def test_websocket_turn(client):
    with client.websocket_connect("/ws/chat/codex/slot-1") as websocket:
        hello = websocket.receive_json()
        websocket.send_json({"type": "user_message", "content": "list files", "project_path": "/work"})
        received = receive_until_complete(websocket)

    assert hello["type"] == "info"
    assert hello["message"] == "connected"
    assert hello["agent"]["id"] == "codex"

    updates, complete = received[:-1], received[-1]
    assert updates
    assert all(message["type"] == "message_update" for message in updates)
    assert all(message["message"]["isStreaming"] for message in updates)

    assert complete["type"] == "message_complete"
    assert complete["state"] == "completed"
    final = complete["message"]
    assert final["isStreaming"] is False
    assert [(block["type"], block["content"]) for block in final["blocks"]] == [
        ("text", "Listing files"),
        ("command_execution", "a.txt\n"),
    ]
    assert final["blocks"][1]["metadata"]["exitCode"] == 0


def test_websocket_failed_turn_reports_state():
    runtime = make_runtime(FakeAgentServer(status_code=500))
    client = TestClient(create_app(runtime))

    with client.websocket_connect("/ws/chat/codex/slot-1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "user_message", "content": "hello"})
        complete = receive_until_complete(websocket)[-1]

    assert complete["type"] == "message_complete"
    assert complete["state"] == "failed"
    assert complete["message"]["blocks"][-1]["type"] == "error"


def test_websocket_clear_and_unknown_messages(client, runtime):
    context = runtime.context_id("slot-1")

    with client.websocket_connect("/ws/chat/codex/slot-1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "ping"})
        unknown = websocket.receive_json()
        websocket.send_json({"type": "clear_history"})
        cleared = websocket.receive_json()

    assert unknown == {"type": "error", "message": "Unknown message type: ping", "recoverable": True}
    assert cleared == {"type": "info", "message": "History cleared"}
    assert runtime.context_id("slot-1") != context


def test_websocket_unknown_agent(client):
    with client.websocket_connect("/ws/chat/cursor/slot-1") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "error"
    assert message["recoverable"] is False
    assert "cursor" in message["message"]
