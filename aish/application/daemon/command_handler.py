from typing import Callable, Optional
import structlog

from .connection_manager import ClientConnection
from .schema.events import CommandName, CommandRequest, StatusEvent
from aish.domain.context.context_manager import ContextManager
from aish.domain.orchestration.core.session_context import SessionContext
from aish.infrastructure.observability.logging import MetricsCollector, context_logger

logger = structlog.get_logger(__name__)


class CommandHandler:
    """Executes administrative commands against the context.

    Commands are synchronous, file-backed and fast, so they run inline on
    the connection that sent them and never wait for an in-flight query.
    """

    def __init__(
        self,
        context_manager: ContextManager,
        session: SessionContext,
        metrics: MetricsCollector,
        on_stop: Optional[Callable[[], None]] = None,
    ):
        self.context_manager = context_manager
        self.session = session
        self.metrics = metrics
        self.on_stop = on_stop

    async def handle(self, connection: ClientConnection, request: CommandRequest):
        """Run one command and terminate the response with ``done``"""

        command = request.command
        args = request.args if request.args and request.args.strip() else None
        logger.info("Command received", command=command, has_args=args is not None)

        if command == CommandName.STOP:
            await self._handle_stop(connection)
            return

        if command == CommandName.STATUS:
            await self._handle_status(connection)
        elif command == CommandName.COMPACT:
            self.context_manager.compact()
            self._reset_session("compact")
            await connection.send_info("Window compacted to topic. Next query starts new session.")
        elif command == CommandName.CLEAR:
            self.context_manager.clear_window()
            self._reset_session("clear")
            await connection.send_info("Window cleared. Memory preserved.")
        elif command == CommandName.FORGET:
            self.context_manager.clear_all()
            self._reset_session("forget")
            await connection.send_info("All context cleared.")
        elif command == CommandName.TOPIC:
            await self._handle_topic(connection, args)
        elif command == CommandName.RECALL:
            await self._handle_recall(connection, args)
        elif command == CommandName.REMEMBER:
            await self._handle_remember(connection, args)
        else:
            await connection.send_error(f"Unknown command: {command}")

        await connection.send_done()

    def _reset_session(self, reason: str):
        dropped = self.session.reset_session()
        context_logger.log_session_reset(reason, dropped)

    async def _handle_status(self, connection: ClientConnection):
        status = self.context_manager.get_status()
        status.session_id = self.session.session_id
        status.metrics = self.metrics.get_metrics_summary()
        await connection.send_event(StatusEvent(data=status.model_dump(mode="json")))

    async def _handle_topic(self, connection: ClientConnection, name: Optional[str]):
        if not name:
            await connection.send_error("Topic name required")
            return

        saved = self.context_manager.switch_topic(name)
        self._reset_session("topic")
        if saved:
            await connection.send_info(f'Saved "{saved}" | New topic: {name}')
        else:
            await connection.send_info(f"New topic: {name}")

    async def _handle_recall(self, connection: ClientConnection, name: Optional[str]):
        if not name:
            await connection.send_error("Topic name required")
            return

        summary = self.context_manager.recall_topic(name)
        if summary is None:
            await connection.send_error(f'Topic "{name}" not found')
            return

        self._reset_session("recall")
        await connection.send_info(f'Restored "{name}": {summary}')

    async def _handle_remember(self, connection: ClientConnection, fact: Optional[str]):
        if not fact:
            await connection.send_error("Fact required")
            return

        section = self.context_manager.memory.remember(fact)
        context_logger.log_context_update("memory", "remember", {"section": section})
        await connection.send_info(f"Remembered: {fact}")

    async def _handle_stop(self, connection: ClientConnection):
        await connection.send_info("Daemon stopping...")
        await connection.send_done()
        if self.session.cancel_active_query():
            logger.info("Cancelled in-flight query for shutdown")
        if self.on_stop is not None:
            self.on_stop()
