"""End-to-end tests over a real Unix socket with a scripted backend."""

import asyncio
import json
import shutil
import stat
import tempfile
from pathlib import Path

import pytest

from aish.application.daemon.daemon_server import DaemonServer
from aish.domain.exceptions import DaemonAlreadyRunningError
from aish.infrastructure.config.settings import Settings


@pytest.fixture
def short_dir():
    # Unix socket paths are limited to ~100 bytes
    path = Path(tempfile.mkdtemp(prefix="aish-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def daemon_settings(short_dir):
    return Settings(config_dir=short_dir)


@pytest.fixture
async def daemon(daemon_settings, backend):
    server = DaemonServer(daemon_settings, backend)
    serving = asyncio.create_task(server.serve_forever())
    for _ in range(500):
        if daemon_settings.socket_path.exists() or serving.done():
            break
        await asyncio.sleep(0.01)

    yield server

    server.request_stop()
    await asyncio.wait_for(serving, 5)


async def open_client(settings):
    return await asyncio.open_unix_connection(str(settings.socket_path))


async def send(writer, frame):
    payload = frame if isinstance(frame, str) else json.dumps(frame)
    writer.write(payload.encode("utf-8") + b"\n")
    await writer.drain()


async def read_until_done(reader):
    frames = []
    while True:
        line = await asyncio.wait_for(reader.readline(), 5)
        if not line:
            return frames
        frame = json.loads(line)
        frames.append(frame)
        if frame["type"] == "done":
            return frames


async def exchange(settings, frame):
    reader, writer = await open_client(settings)
    try:
        await send(writer, frame)
        return await read_until_done(reader)
    finally:
        writer.close()
        await writer.wait_closed()


def query_frame(message="hello"):
    return {"type": "query", "message": message, "cwd": "/repo"}


class TestDaemonSocket:
    async def test_socket_is_private(self, daemon, daemon_settings):
        mode = stat.S_IMODE(daemon_settings.socket_path.stat().st_mode)

        assert mode == 0o600

    async def test_ping(self, daemon, daemon_settings):
        assert await exchange(daemon_settings, {"type": "ping"}) == [
            {"type": "info", "message": "pong"},
            {"type": "done"},
        ]

    async def test_malformed_frame_keeps_connection_usable(self, daemon, daemon_settings):
        reader, writer = await open_client(daemon_settings)
        try:
            await send(writer, "{broken")
            assert await read_until_done(reader) == [
                {"type": "error", "message": "Invalid message format"},
                {"type": "done"},
            ]

            await send(writer, {"type": "ping"})
            assert (await read_until_done(reader))[0] == {"type": "info", "message": "pong"}
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_query_then_status(self, daemon, daemon_settings):
        frames = await exchange(daemon_settings, query_frame())
        assert frames == [{"type": "text", "content": "Hello from the backend."}, {"type": "done"}]

        status = (await exchange(daemon_settings, {"type": "command", "command": "status"}))[0]
        assert status["data"]["window_turns"] == 1
        assert status["data"]["session_id"] == "sess-1"
        assert status["data"]["metrics"]["latency.query"]["count"] == 1

    async def test_disconnect_cancels_query(self, daemon, daemon_settings, backend):
        backend.gate = asyncio.Event()
        reader, writer = await open_client(daemon_settings)
        await send(writer, query_frame())
        while not backend.requests:
            await asyncio.sleep(0.01)

        writer.close()
        await writer.wait_closed()
        for _ in range(500):
            if not daemon.session.query_in_progress:
                break
            await asyncio.sleep(0.01)

        assert daemon.session.query_in_progress is False
        assert daemon.context_manager.window.is_empty()
        assert daemon.metrics.get_metrics_summary()["query.cancelled"] == 1

    async def test_busy_while_other_client_queries(self, daemon, daemon_settings, backend):
        backend.gate = asyncio.Event()
        reader, writer = await open_client(daemon_settings)
        await send(writer, query_frame("first"))
        while not backend.requests:
            await asyncio.sleep(0.01)

        busy = await exchange(daemon_settings, query_frame("second"))
        assert busy == [
            {"type": "error", "message": "Another query is in progress. Please wait."},
            {"type": "done"},
        ]

        backend.gate.set()
        frames = await read_until_done(reader)
        assert frames[-1] == {"type": "done"}
        writer.close()
        await writer.wait_closed()

    async def test_commands_do_not_wait_for_query(self, daemon, daemon_settings, backend):
        backend.gate = asyncio.Event()
        reader, writer = await open_client(daemon_settings)
        await send(writer, query_frame())
        while not backend.requests:
            await asyncio.sleep(0.01)

        frames = await exchange(daemon_settings, {"type": "command", "command": "remember", "args": "Always lint"})
        assert frames[0] == {"type": "info", "message": "Remembered: Always lint"}

        backend.gate.set()
        await read_until_done(reader)
        writer.close()
        await writer.wait_closed()

    async def test_second_instance_refused(self, daemon, daemon_settings, backend):
        other = DaemonServer(daemon_settings, backend)

        with pytest.raises(DaemonAlreadyRunningError):
            await other.start()

    async def test_stop_shuts_down_and_cleans_up(self, daemon_settings, backend):
        server = DaemonServer(daemon_settings, backend)
        serving = asyncio.create_task(server.serve_forever())
        while not daemon_settings.socket_path.exists():
            await asyncio.sleep(0.01)

        frames = await exchange(daemon_settings, {"type": "command", "command": "stop"})
        await asyncio.wait_for(serving, 5)

        assert frames == [{"type": "info", "message": "Daemon stopping..."}, {"type": "done"}]
        assert not daemon_settings.socket_path.exists()
        assert not daemon_settings.pid_path.exists()
