"""Tests for administrative commands."""

import asyncio

import pytest

from aish.application.daemon.command_handler import CommandHandler
from aish.application.daemon.schema.events import CommandRequest
from aish.infrastructure.observability.logging import MetricsCollector


@pytest.fixture
def stop_calls():
    return []


@pytest.fixture
def handler(context_manager, session, stop_calls):
    return CommandHandler(context_manager, session, MetricsCollector(), on_stop=lambda: stop_calls.append(True))


async def run(handler, connection, command, args=None):
    await handler.handle(connection, CommandRequest(command=command, args=args))


class TestCommands:
    async def test_status(self, handler, connection, writer, session):
        session.session_id = "abcdef123456"

        await run(handler, connection, "status")

        status, done = writer.frames()
        assert status["type"] == "status"
        assert status["data"]["session_id"] == "abcdef123456"
        assert status["data"]["budget"] == 3100
        assert "metrics" in status["data"]
        assert done == {"type": "done"}

    @pytest.mark.parametrize(
        "command, message",
        [
            ("compact", "Window compacted to topic. Next query starts new session."),
            ("clear", "Window cleared. Memory preserved."),
            ("forget", "All context cleared."),
        ],
    )
    async def test_resetting_commands(self, handler, connection, writer, session, context_manager, command, message):
        session.session_id = "sess-1"
        context_manager.add_turn("q", "a")

        await run(handler, connection, command)

        assert writer.frames() == [{"type": "info", "message": message}, {"type": "done"}]
        assert session.session_id is None
        assert context_manager.window.is_empty()
        assert context_manager.build().needs_new_session is True

    async def test_topic_saves_current_window(self, handler, connection, writer, context_manager):
        context_manager.add_turn("debug flaky pytest fixtures", "use tmp_path")

        await run(handler, connection, "topic", "release")

        assert writer.frames()[0] == {"type": "info", "message": 'Saved "debug-flaky-pytest" | New topic: release'}

    async def test_topic_with_empty_window(self, handler, connection, writer):
        await run(handler, connection, "topic", "release")

        assert writer.frames()[0] == {"type": "info", "message": "New topic: release"}

    @pytest.mark.parametrize("command, error", [("topic", "Topic name required"), ("recall", "Topic name required"), ("remember", "Fact required")])
    @pytest.mark.parametrize("args", [None, "", "   "])
    async def test_missing_argument(self, handler, connection, writer, command, error, args):
        await run(handler, connection, command, args)

        assert writer.frames() == [{"type": "error", "message": error}, {"type": "done"}]

    async def test_recall(self, handler, connection, writer, context_manager, session):
        context_manager.topics.add_manual("deploy", "ship it")
        session.session_id = "sess-1"

        await run(handler, connection, "recall", "Deploy")

        assert writer.frames()[0] == {"type": "info", "message": 'Restored "Deploy": ship it'}
        assert session.session_id is None

    async def test_recall_missing(self, handler, connection, writer, session):
        session.session_id = "sess-1"

        await run(handler, connection, "recall", "nope")

        assert writer.frames()[0] == {"type": "error", "message": 'Topic "nope" not found'}
        assert session.session_id == "sess-1"

    async def test_remember_keeps_session(self, handler, connection, writer, context_manager, session):
        session.session_id = "sess-1"

        await run(handler, connection, "remember", "Always pin dependencies")

        assert writer.frames()[0] == {"type": "info", "message": "Remembered: Always pin dependencies"}
        assert context_manager.memory.facts.conventions == ["Always pin dependencies"]
        assert session.session_id == "sess-1"

    async def test_unknown_command(self, handler, connection, writer):
        await run(handler, connection, "launch")

        assert writer.frames() == [{"type": "error", "message": "Unknown command: launch"}, {"type": "done"}]

    async def test_stop_cancels_query_and_requests_shutdown(self, handler, connection, writer, session, stop_calls):
        session.active_query = asyncio.ensure_future(asyncio.sleep(10))

        await run(handler, connection, "stop")
        await asyncio.sleep(0)

        assert writer.frames() == [{"type": "info", "message": "Daemon stopping..."}, {"type": "done"}]
        assert session.active_query.cancelled()
        assert stop_calls == [True]
