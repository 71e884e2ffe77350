import json
import structlog

from aish.application.daemon.connection_manager import ClientConnection
from aish.application.daemon.schema.events import TextEvent, ToolResultEvent, ToolUseEvent
from aish.domain.exceptions import BackendError
from aish.domain.models.backend_events import BackendEvent, BackendEventKind
from aish.domain.orchestration.core.session_context import SessionContext

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Relays one query's backend events to its client as protocol frames.

    Accumulates the assistant text that will be recorded as the turn, and
    captures the remote session id when the backend announces it.
    """

    def __init__(self, connection: ClientConnection, session: SessionContext):
        self.connection = connection
        self.session = session
        self.assistant_text = ""

    async def handle_event(self, event: BackendEvent):
        """Dispatch a single backend event"""

        if event.kind == BackendEventKind.SESSION_STARTED:
            self._handle_session_started(event)
        elif event.kind == BackendEventKind.TEXT:
            await self._handle_text(event.content)
        elif event.kind == BackendEventKind.TOOL_USE:
            await self._handle_tool_use(event)
        elif event.kind == BackendEventKind.TOOL_RESULT:
            await self.connection.send_event(ToolResultEvent(output=event.content))
        elif event.kind == BackendEventKind.RESULT:
            await self._handle_result(event)

    def _handle_session_started(self, event: BackendEvent):
        if event.session_id:
            self.session.session_id = event.session_id
            logger.debug("Remote session started", session_id=event.session_id)

    async def _handle_text(self, content: str):
        if not content:
            return
        self.assistant_text += content
        await self.connection.send_event(TextEvent(content=content))

    async def _handle_tool_use(self, event: BackendEvent):
        await self.connection.send_event(
            ToolUseEvent(
                tool=event.tool or "unknown",
                input=json.dumps(event.tool_input, indent=2, ensure_ascii=False)
            )
        )

    async def _handle_result(self, event: BackendEvent):
        """Reconcile the terminal result with what was already streamed"""

        if event.session_id:
            self.session.session_id = event.session_id

        if not event.succeeded:
            detail = f" - {', '.join(event.errors)}" if event.errors else ""
            raise BackendError(f"Query ended: {event.subtype or 'error'}{detail}")

        if event.content and event.content != self.assistant_text:
            await self._handle_text(event.content)
