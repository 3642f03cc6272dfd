"""Tests for the event normalizers."""

import json

import pytest

from agentdeck.blocks import ArtifactBlock, TextBlock
from agentdeck.descriptors import BackendKind
from agentdeck.events import (
    Artifact,
    DataPart,
    FilePart,
    Message,
    Task,
    TaskArtifactUpdateEvent,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
)
from agentdeck.normalizers import (
    ClaudeNormalizer,
    CodexNormalizer,
    CommonNormalizer,
    DeltaTracker,
    GeminiNormalizer,
    classify_claude_tool,
    classify_codex_tool,
    classify_gemini_tool,
    create_normalizer,
)


def status_event(parts, kind=None, agent_key=None, state="working"):
    metadata = {agent_key: {"kind": kind}} if agent_key else None
    return TaskStatusUpdateEvent(
        task_id="t1",
        context_id="ctx",
        status=TaskStatus(state=state, message=Message(role="agent", parts=parts)),
        metadata=metadata,
    )


def artifact_event(artifact_id, text, append=False):
    return TaskArtifactUpdateEvent(
        task_id="t1",
        context_id="ctx",
        artifact=Artifact(artifact_id=artifact_id, parts=[TextPart(text)]),
        append=append,
    )


def tool_event(agent_key, call_id, name=None, **fields):
    request = {"callId": call_id}
    if name:
        request["name"] = name
    return status_event([DataPart({"request": request, **fields})], "tool-call-update", agent_key)


# DeltaTracker


def test_delta_tracker_emits_only_new_characters():
    tracker = DeltaTracker()
    snapshots = ["Hel", "Hello", "Hello", "Hello world"]

    deltas = [tracker.delta("item", snapshot) for snapshot in snapshots]

    assert deltas == ["Hel", "lo", "", " world"]
    assert "".join(deltas) == snapshots[-1]


def test_delta_tracker_drops_shorter_snapshots():
    tracker = DeltaTracker()
    tracker.delta("item", "Hello world")

    assert tracker.delta("item", "Hello") == ""
    assert tracker.delta("item", "Hello world!") == "!"


def test_delta_tracker_keys_are_independent():
    tracker = DeltaTracker()
    tracker.delta("a", "aaaa")

    assert tracker.delta("b", "bb") == "bb"
    tracker.clear()
    assert tracker.delta("a", "aa") == "aa"


# Common normalizer


def test_common_text_part_without_hint_is_text():
    blocks = CommonNormalizer().normalize(status_event([TextPart("hello")]))

    assert blocks == [TextBlock(block_type="text", text="hello")]


def test_common_item_type_hints():
    normalizer = CommonNormalizer()
    event = status_event(
        [
            TextPart("thinking", {"itemType": "reasoning"}),
            TextPart("out", {"itemType": "command_output", "callId": "c1"}),
            TextPart("boom", {"itemType": "error"}),
        ]
    )

    blocks = normalizer.normalize(event)

    assert [block.block_type for block in blocks] == ["reasoning", "command_execution", "error"]
    assert blocks[1].append_to_command is True
    assert blocks[1].metadata == {"itemType": "command_output", "callId": "c1"}


def test_common_data_part_text_depends_on_block_type():
    normalizer = CommonNormalizer()
    with_text = DataPart({"itemType": "tool_call", "text": "ran tool", "metadata": {"callId": "c9"}})
    without_text = DataPart({"answer": 42})
    structured = DataPart({"itemType": "command_execution", "metadata": {"command": "ls"}})

    blocks = normalizer.normalize(status_event([with_text, without_text, structured]))

    assert blocks[0] == TextBlock(block_type="tool_call", text="ran tool", metadata={"callId": "c9"})
    assert blocks[1].block_type == "text"
    assert json.loads(blocks[1].text) == {"answer": 42}
    assert blocks[2] == TextBlock(block_type="command_execution", text="", metadata={"command": "ls"})


def test_common_ignores_file_parts_and_tasks():
    normalizer = CommonNormalizer()

    assert normalizer.normalize(status_event([FilePart({"uri": "file:///x"})])) == []
    assert normalizer.normalize(Task(id="t1", context_id="ctx", status=TaskStatus(state="submitted"))) == []


def test_common_passes_artifacts_through():
    event = artifact_event("report", "contents", append=True)

    blocks = CommonNormalizer().normalize(event)

    assert blocks == [ArtifactBlock(artifact=event.artifact, append=True)]


def test_common_status_without_message_yields_nothing():
    event = TaskStatusUpdateEvent(task_id="t1", context_id="ctx", status=TaskStatus(state="working"))

    assert CommonNormalizer().normalize(event) == []


def test_normalize_never_raises(monkeypatch):
    normalizer = CodexNormalizer()

    def explode(event):
        raise KeyError("broken")

    monkeypatch.setattr(normalizer, "on_status_update", explode)

    assert normalizer.normalize(status_event([TextPart("x")])) == []


def test_message_events_are_normalized():
    blocks = CommonNormalizer().normalize(Message(role="agent", parts=[TextPart("plain")]))

    assert blocks == [TextBlock(block_type="text", text="plain")]


# Backend normalizers


def test_codex_text_snapshots_become_deltas():
    normalizer = CodexNormalizer()
    snapshots = ["I will", "I will list", "I will list files."]

    deltas = []
    for snapshot in snapshots:
        event = status_event([TextPart(snapshot, {"itemId": "m1"})], "text-content", "codexAgent")
        deltas.extend(block.text for block in normalizer.normalize(event))

    assert deltas == ["I will", " list", " files."]


def test_non_monotonic_snapshot_emits_nothing():
    normalizer = ClaudeNormalizer()
    first = status_event([TextPart("Hello world", {"itemId": "k"})], "text-content", "claudeAgent")
    shorter = status_event([TextPart("Hello", {"itemId": "k"})], "text-content", "claudeAgent")

    normalizer.normalize(first)

    assert normalizer.normalize(shorter) == []


def test_codex_thought_is_delta_tracked():
    normalizer = CodexNormalizer()
    first = status_event([DataPart({"text": "Plan", "itemId": "r1"})], "thought", "codexAgent")
    second = status_event([DataPart({"text": "Plan: ls", "itemId": "r1"})], "thought", "codexAgent")

    assert normalizer.normalize(first) == [TextBlock(block_type="reasoning", text="Plan")]
    assert normalizer.normalize(second) == [TextBlock(block_type="reasoning", text=": ls")]


def test_gemini_thought_joins_subject_and_description():
    event = status_event(
        [DataPart({"subject": "Planning", "description": "Look at the tests"})], "thought", "coderAgent"
    )

    blocks = GeminiNormalizer().normalize(event)

    assert blocks == [TextBlock(block_type="reasoning", text="Planning\nLook at the tests")]


def test_gemini_tool_call_summary_and_metadata():
    event = tool_event("coderAgent", "c1", "read_file", status="scheduled", input={"path": "a.py"})

    [block] = GeminiNormalizer().normalize(event)

    assert block.block_type == "tool_call"
    assert block.text == "read_file (scheduled)"
    assert block.metadata["toolName"] == "read_file"
    assert block.metadata["callId"] == "c1"
    assert block.metadata["input"] == {"path": "a.py"}


def test_first_tool_event_decides_block_type():
    normalizer = GeminiNormalizer()
    normalizer.normalize(tool_event("coderAgent", "c1", "run_shell_command", status="executing", command="ls"))

    # Later updates may omit the tool name
    [block] = normalizer.normalize(tool_event("coderAgent", "c1", status="success", exitCode=0))

    assert block.block_type == "command_execution"
    assert block.append_to_command is True
    assert block.metadata["command"] == "run_shell_command"
    assert block.metadata["exitCode"] == 0
    assert normalizer.tool_calls["c1"].tool_name == "run_shell_command"


def test_mcp_tool_name_includes_server():
    event = tool_event("codexAgent", "m1", "mcp_tool_call", status="in_progress", server="docs", tool="search_docs")

    [block] = CodexNormalizer().normalize(event)

    assert block.block_type == "tool_call"
    assert block.metadata["toolName"] == "docs/search_docs"


def test_structured_tool_blocks_carry_their_payload():
    normalizer = CodexNormalizer()

    [files] = normalizer.normalize(
        tool_event("codexAgent", "f1", "file_change", status="completed", changes=[{"path": "a.py", "kind": "add"}])
    )
    [search] = normalizer.normalize(tool_event("codexAgent", "w1", "web_search", status="completed", query="a2a"))
    [todo] = normalizer.normalize(tool_event("codexAgent", "t1", "todo_list", items=[{"text": "x", "completed": False}]))

    assert files.block_type == "file_change" and files.metadata["changes"] == [{"path": "a.py", "kind": "add"}]
    assert search.block_type == "web_search" and search.metadata["query"] == "a2a"
    assert todo.block_type == "todo_list" and todo.metadata["items"][0]["text"] == "x"


def test_tool_output_artifact_is_routed_to_known_call():
    normalizer = CodexNormalizer()
    normalizer.normalize(tool_event("codexAgent", "c1", "command_execution", status="in_progress", command="ls"))

    [block] = normalizer.normalize(artifact_event("tool-c1-output", "a.txt\n"))
    again = normalizer.normalize(artifact_event("tool-c1-output", "a.txt\n"))

    assert block == TextBlock(
        block_type="command_execution",
        text="a.txt\n",
        metadata={"command": "command_execution", "callId": "c1"},
        append_to_command=True,
    )
    assert again == []


def test_appended_tool_output_is_not_delta_tracked():
    normalizer = GeminiNormalizer()
    normalizer.normalize(tool_event("coderAgent", "c1", "read_file", status="executing"))

    first = normalizer.normalize(artifact_event("tool-c1-output", "line\n", append=True))
    second = normalizer.normalize(artifact_event("tool-c1-output", "line\n", append=True))

    assert [block.text for block in first + second] == ["line\n", "line\n"]
    assert first[0].block_type == "tool_call"


def test_unknown_call_artifact_passes_through():
    event = artifact_event("tool-zzz-output", "text")

    blocks = GeminiNormalizer().normalize(event)

    assert blocks == [ArtifactBlock(artifact=event.artifact, append=False)]


def test_claude_does_not_correlate_artifacts():
    normalizer = ClaudeNormalizer()
    normalizer.normalize(tool_event("claudeAgent", "c1", "Bash", status="requested", input={"command": "ls"}))

    blocks = normalizer.normalize(artifact_event("tool-c1-output", "a.txt"))

    assert isinstance(blocks[0], ArtifactBlock)


def test_claude_command_uses_input_command():
    event = tool_event("claudeAgent", "c1", "Bash", status="requested", input={"command": "pytest -q"})

    [block] = ClaudeNormalizer().normalize(event)

    assert block.block_type == "command_execution"
    assert block.metadata["command"] == "pytest -q"
    assert block.append_to_command is False


def test_backend_normalizer_falls_back_to_hints_for_untagged_events():
    event = status_event([TextPart("Error: quota", {"itemType": "error"})])

    blocks = GeminiNormalizer().normalize(event)

    assert blocks == [TextBlock(block_type="error", text="Error: quota", metadata={"itemType": "error"})]


@pytest.mark.parametrize(
    "name, expected",
    [
        ("run_shell_command", "command_execution"),
        ("Shell", "command_execution"),
        ("google_web_search", "web_search"),
        ("write_todos", "todo_list"),
        ("write_file", "file_change"),
        ("replace", "file_change"),
        ("read_file", "tool_call"),
    ],
)
def test_classify_gemini_tool(name, expected):
    assert classify_gemini_tool(name) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("command_execution", "command_execution"),
        ("file_change", "file_change"),
        ("web_search", "web_search"),
        ("todo_list", "todo_list"),
        ("mcp_tool_call", "tool_call"),
    ],
)
def test_classify_codex_tool(name, expected):
    assert classify_codex_tool(name) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Bash", "command_execution"),
        ("WebSearch", "web_search"),
        ("WebFetch", "web_search"),
        ("Edit", "file_change"),
        ("MultiEdit", "file_change"),
        ("TodoWrite", "todo_list"),
        ("Read", "tool_call"),
    ],
)
def test_classify_claude_tool(name, expected):
    assert classify_claude_tool(name) == expected


def test_create_normalizer_by_kind():
    assert isinstance(create_normalizer(BackendKind.GEMINI), GeminiNormalizer)
    assert isinstance(create_normalizer("codex"), CodexNormalizer)
    assert isinstance(create_normalizer(BackendKind.CLAUDE), ClaudeNormalizer)
    assert type(create_normalizer(BackendKind.UNKNOWN)) is CommonNormalizer
    assert type(create_normalizer("bogus")) is CommonNormalizer


def test_create_normalizer_returns_fresh_state():
    first = create_normalizer(BackendKind.CODEX)
    first.normalize(tool_event("codexAgent", "c1", "command_execution", status="in_progress"))

    assert create_normalizer(BackendKind.CODEX).tool_calls == {}
