"""Tests for translating Claude Agent SDK messages into backend events."""

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from aish.domain.models.backend_events import BackendEventKind, BackendRequest
from aish.infrastructure.backend.claude_agent_backend import ClaudeAgentBackend
from aish.infrastructure.config.settings import BackendSettings


def convert(message):
    return list(ClaudeAgentBackend(BackendSettings())._convert(message))


class TestConvert:
    def test_init_announces_session(self):
        events = convert(SystemMessage(subtype="init", data={"session_id": "abc"}))

        assert [(e.kind, e.session_id) for e in events] == [(BackendEventKind.SESSION_STARTED, "abc")]

    def test_other_system_messages_ignored(self):
        assert convert(SystemMessage(subtype="compact_boundary", data={})) == []

    def test_assistant_blocks(self):
        message = AssistantMessage(
            content=[
                ThinkingBlock(thinking="hmm", signature="sig"),
                TextBlock(text="Listing files"),
                ToolUseBlock(id="t1", name="Bash", input={"command": "ls"}),
            ],
            model="claude",
        )

        events = convert(message)

        assert [e.kind for e in events] == [BackendEventKind.TEXT, BackendEventKind.TOOL_USE]
        assert events[0].content == "Listing files"
        assert (events[1].tool, events[1].tool_input) == ("Bash", {"command": "ls"})

    def test_tool_results_from_user_message(self):
        message = UserMessage(
            content=[ToolResultBlock(tool_use_id="t1", content=[{"type": "text", "text": "a.py\nb.py"}])]
        )

        events = convert(message)

        assert [(e.kind, e.content) for e in events] == [(BackendEventKind.TOOL_RESULT, "a.py\nb.py")]

    def test_result(self):
        message = ResultMessage(
            subtype="success",
            duration_ms=10,
            duration_api_ms=8,
            is_error=False,
            num_turns=1,
            session_id="abc",
            result="All done",
        )

        (event,) = convert(message)

        assert event.kind == BackendEventKind.RESULT
        assert event.succeeded
        assert (event.content, event.session_id) == ("All done", "abc")

    def test_error_result(self):
        message = ResultMessage(
            subtype="error_max_turns",
            duration_ms=10,
            duration_api_ms=8,
            is_error=True,
            num_turns=3,
            session_id="abc",
        )

        (event,) = convert(message)

        assert not event.succeeded
        assert event.content == ""


class TestQueryOptions:
    def test_new_session_and_resume(self):
        backend = ClaudeAgentBackend(BackendSettings(model="some-model"))

        fresh = backend._query_options(BackendRequest(prompt="p", system_prompt_append="[Shell Context]", cwd="/w"))
        resumed = backend._query_options(BackendRequest(prompt="p", resume_session_id="abc"))

        assert fresh.resume is None
        assert fresh.system_prompt == {"type": "preset", "preset": "claude_code", "append": "[Shell Context]"}
        assert fresh.cwd == "/w"
        assert fresh.max_turns == 3
        assert fresh.model == "some-model"
        assert resumed.resume == "abc"
