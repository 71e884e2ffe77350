"""Shared fixtures: isolated config dir, in-memory socket writer, scripted backend."""

from typing import List, Optional
import asyncio
import json

import pytest

from aish.application.daemon.connection_manager import ClientConnection
from aish.domain.context.context_manager import ContextManager
from aish.domain.models.backend_events import BackendEvent, BackendEventKind, BackendRequest
from aish.domain.orchestration.core.session_context import SessionContext
from aish.infrastructure.config.settings import Settings


class FakeWriter:
    """Collects bytes written to a client socket"""

    def __init__(self):
        self.buffer = bytearray()
        self._closing = False

    def write(self, data: bytes):
        if self._closing:
            raise ConnectionResetError("peer closed")
        self.buffer.extend(data)

    async def drain(self):
        pass

    def is_closing(self) -> bool:
        return self._closing

    def close(self):
        self._closing = True

    async def wait_closed(self):
        pass

    def frames(self) -> List[dict]:
        return [json.loads(line) for line in self.buffer.decode("utf-8").splitlines() if line.strip()]


class FakeBackend:
    """Scripted stand-in for the generative backend.

    Each ``stream`` call answers with ``reply`` unless ``events`` is set.
    When ``gate`` is set the stream parks until the gate opens.
    """

    def __init__(self, reply: str = "Hello from the backend.", session_id: str = "sess-1"):
        self.reply = reply
        self.session_id = session_id
        self.events: Optional[List] = None
        self.gate: Optional[asyncio.Event] = None
        self.requests: List[BackendRequest] = []
        self.completion = ""
        self.complete_calls: List[dict] = []

    def _default_events(self) -> List[BackendEvent]:
        return [
            BackendEvent(kind=BackendEventKind.SESSION_STARTED, session_id=self.session_id),
            BackendEvent(kind=BackendEventKind.TEXT, content=self.reply),
            BackendEvent(
                kind=BackendEventKind.RESULT,
                content=self.reply,
                subtype="success",
                session_id=self.session_id,
            ),
        ]

    async def stream(self, request: BackendRequest):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        for event in self.events if self.events is not None else self._default_events():
            if isinstance(event, Exception):
                raise event
            yield event

    async def complete(self, prompt: str, system_prompt: str, model: Optional[str] = None) -> str:
        self.complete_calls.append({"prompt": prompt, "system_prompt": system_prompt, "model": model})
        if isinstance(self.completion, Exception):
            raise self.completion
        return self.completion


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(config_dir=tmp_path / "config")


@pytest.fixture
def context_manager(settings) -> ContextManager:
    return ContextManager(settings)


@pytest.fixture
def session() -> SessionContext:
    return SessionContext()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def writer() -> FakeWriter:
    return FakeWriter()


@pytest.fixture
def connection(writer) -> ClientConnection:
    return ClientConnection(writer)


@pytest.fixture
def make_connection():
    """Factory for extra client connections with their own writers"""

    def _make():
        fake = FakeWriter()
        return ClientConnection(fake), fake

    return _make
