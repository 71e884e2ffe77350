from typing import Optional, Set
import argparse
import asyncio
import os
import signal
import sys
import structlog

from .command_handler import CommandHandler
from .connection_manager import ClientConnection, ConnectionManager
from .schema.events import CommandRequest, PingRequest, QueryRequest, parse_request
from aish.domain.context.context_manager import ContextManager
from aish.domain.exceptions import DaemonAlreadyRunningError, ProtocolError
from aish.domain.orchestration.backend import GenerativeBackend
from aish.domain.orchestration.core.query_serializer import QuerySerializer
from aish.domain.orchestration.core.session_context import SessionContext
from aish.domain.orchestration.subagent.memory_extractor import MemoryExtractionAgent
from aish.infrastructure.config.settings import Settings
from aish.infrastructure.observability.logging import MetricsCollector, setup_logging
from aish.infrastructure.process import pid_file

logger = structlog.get_logger(__name__)

# Frames carry whole command outputs; allow long lines
STREAM_LIMIT = 16 * 1024 * 1024


class DaemonServer:
    """Unix-socket daemon serving newline-delimited JSON frames"""

    def __init__(self, settings: Settings, backend: GenerativeBackend):
        self.settings = settings
        self.metrics = MetricsCollector()
        self.session = SessionContext()
        self.connection_manager = ConnectionManager()
        self.context_manager = ContextManager(settings)
        self.query_serializer = QuerySerializer(
            context_manager=self.context_manager,
            backend=backend,
            session=self.session,
            metrics=self.metrics,
            extractor=MemoryExtractionAgent(backend, settings.backend.extraction_model),
            idle_timeout=settings.query_idle_timeout,
        )
        self.command_handler = CommandHandler(
            context_manager=self.context_manager,
            session=self.session,
            metrics=self.metrics,
            on_stop=self.request_stop,
        )
        self._server: Optional[asyncio.AbstractServer] = None
        self._stop_event = asyncio.Event()

    async def start(self):
        """Claim the PID file and bind the socket"""

        self.settings.ensure_config_dir()
        socket_path = self.settings.socket_path
        pid_file.acquire(socket_path, self.settings.pid_path)

        try:
            self._server = await asyncio.start_unix_server(
                self.handle_connection, path=str(socket_path), limit=STREAM_LIMIT
            )
        except OSError:
            pid_file.release(socket_path, self.settings.pid_path)
            raise

        try:
            os.chmod(socket_path, 0o600)
        except OSError as e:
            logger.warning("Could not restrict socket permissions", error=str(e))

        logger.info("Daemon listening", socket=str(socket_path), pid=os.getpid())

    async def serve_forever(self):
        """Run until ``stop`` or a termination signal"""

        await self.start()

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass

        try:
            await self._stop_event.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.shutdown()

    def request_stop(self):
        self._stop_event.set()

    async def shutdown(self):
        """Cancel work, close sockets and remove the socket and PID files"""

        logger.info("Daemon shutting down")
        self.session.cancel_active_query()
        for task in list(self.session.background_tasks):
            task.cancel()

        if self._server is not None:
            self._server.close()
        await self.connection_manager.close_all()
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

        pid_file.release(self.settings.socket_path, self.settings.pid_path)

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Read frames until the client goes away; disconnect cancels its query"""

        connection = await self.connection_manager.connect(writer)
        query_tasks: Set[asyncio.Task] = set()

        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    # Line exceeded STREAM_LIMIT; the stream cannot be resynced
                    await connection.send_error("Message too large")
                    await connection.send_done()
                    break

                if not line:
                    break
                if not line.strip():
                    continue

                task = await self.handle_frame(connection, line)
                if task is not None:
                    query_tasks.add(task)
                    task.add_done_callback(query_tasks.discard)

        except ConnectionError as e:
            logger.debug("Client connection error", connection_id=connection.connection_id, error=str(e))

        finally:
            connection.mark_closed()
            for task in list(query_tasks):
                if not task.done():
                    logger.info("Client disconnected, cancelling query", connection_id=connection.connection_id)
                    task.cancel()
            await self.connection_manager.disconnect(connection)

    async def handle_frame(self, connection: ClientConnection, line: bytes) -> Optional[asyncio.Task]:
        """Dispatch one inbound frame; returns the query task if one started"""

        try:
            request = parse_request(line)
        except ProtocolError as e:
            logger.warning("Rejected malformed frame", connection_id=connection.connection_id)
            await connection.send_error(str(e))
            await connection.send_done()
            return None

        if isinstance(request, PingRequest):
            await connection.send_info("pong")
            await connection.send_done()
            return None

        if isinstance(request, QueryRequest):
            return await self.query_serializer.submit(connection, request)

        if isinstance(request, CommandRequest):
            try:
                await self.command_handler.handle(connection, request)
            except Exception as e:
                logger.error("Command failed", command=request.command, error=str(e))
                await connection.send_error(f"Command failed: {e}")
                await connection.send_done()
        return None


def _parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="aishd", description="aish context daemon")
    parser.add_argument(
        "--foreground",
        action="store_true",
        help="log to stdout instead of daemon.log",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = _parse_args(argv)
    settings = Settings.from_env()
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=None if args.foreground else settings.log_path,
    )

    # The backend SDK refuses to start inside another agent session
    os.environ.pop("CLAUDECODE", None)

    from aish.infrastructure.backend.claude_agent_backend import ClaudeAgentBackend

    server = DaemonServer(settings, ClaudeAgentBackend(settings.backend))
    try:
        asyncio.run(server.serve_forever())
    except DaemonAlreadyRunningError as e:
        logger.error(str(e), pid=e.pid)
        print(str(e), file=sys.stderr)
        return 1
    except OSError as e:
        logger.error("Cannot start daemon", socket=str(settings.socket_path), error=str(e))
        print(f"Cannot start daemon: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
