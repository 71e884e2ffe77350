from typing import AsyncIterator, Optional
import asyncio
from contextlib import aclosing
import time
import uuid
import structlog

from aish.application.daemon.connection_manager import ClientConnection
from aish.application.daemon.schema.events import QueryRequest
from aish.domain.context.context_manager import ContextManager
from aish.domain.exceptions import QueryInProgressError, QueryTimeoutError
from aish.domain.models.backend_events import BackendEvent, BackendRequest
from aish.domain.models.context_state import ContextResult
from aish.domain.orchestration.backend import GenerativeBackend
from aish.domain.orchestration.core.session_context import SessionContext
from aish.domain.orchestration.subagent.memory_extractor import MemoryExtractionAgent
from aish.domain.streaming.streaming_handler import StreamingHandler
from aish.infrastructure.observability.logging import MetricsCollector, context_logger

logger = structlog.get_logger(__name__)

CANCELLED_MESSAGE = "Query cancelled."


class QuerySerializer:
    """Admits at most one backend query at a time.

    A query that arrives while another is in flight is rejected at once
    with a busy error; nothing is queued. Accepted queries run as their
    own task so the daemon can cancel them when the client disconnects.
    Turns are committed only after the backend stream completes
    successfully, so the window always reflects completion order.
    """

    def __init__(
        self,
        context_manager: ContextManager,
        backend: GenerativeBackend,
        session: SessionContext,
        metrics: Optional[MetricsCollector] = None,
        extractor: Optional[MemoryExtractionAgent] = None,
        idle_timeout: Optional[float] = None,
    ):
        self.context_manager = context_manager
        self.backend = backend
        self.session = session
        self.metrics = metrics or MetricsCollector()
        self.extractor = extractor
        self.idle_timeout = idle_timeout or None

    async def submit(self, connection: ClientConnection, request: QueryRequest) -> Optional[asyncio.Task]:
        """Start a query task, or reject it as busy and return None"""

        # No await between the check and the claim
        if self.session.query_in_progress:
            self.metrics.increment_counter("query.busy")
            await connection.send_error(str(QueryInProgressError()))
            await connection.send_done()
            return None

        task = asyncio.create_task(self._run(connection, request))
        self.session.active_query = task
        task.add_done_callback(self._release)
        return task

    def _release(self, task: asyncio.Task):
        if self.session.active_query is task:
            self.session.active_query = None

    async def _run(self, connection: ClientConnection, request: QueryRequest):
        """Build context, stream the backend response, commit the turn"""

        structlog.contextvars.bind_contextvars(query_id=uuid.uuid4().hex[:8])
        started = time.monotonic()
        logger.info("Query started", cwd=request.cwd, message_chars=len(request.message))

        ctx = None
        handler = StreamingHandler(connection, self.session)

        try:
            ctx = self.context_manager.build(request.cwd)
            backend_request = self._prepare_request(request, ctx)

            async with aclosing(self._iter_with_idle_timeout(self.backend.stream(backend_request))) as events:
                async for event in events:
                    await handler.handle_event(event)

            self.context_manager.add_turn(request.message, handler.assistant_text)
            self.metrics.record_latency("query", (time.monotonic() - started) * 1000)
            logger.info("Query completed", turn_count=self.context_manager.turn_count)

            if self.context_manager.should_extract_memory():
                self._schedule_extraction(handler.assistant_text)

        except asyncio.CancelledError:
            self.metrics.increment_counter("query.cancelled")
            logger.info("Query cancelled")
            self._restore_invalidation(ctx)
            await connection.send_info(CANCELLED_MESSAGE)
            raise

        except Exception as e:
            self.metrics.increment_counter("query.failed")
            logger.warning("Query failed", error=str(e), error_type=type(e).__name__)
            self._restore_invalidation(ctx)
            await connection.send_error(str(e) or type(e).__name__)

        finally:
            self._release(asyncio.current_task())
            await connection.send_done()

    def _prepare_request(self, request: QueryRequest, ctx: ContextResult) -> BackendRequest:
        if ctx.needs_new_session:
            dropped = self.session.reset_session()
            context_logger.log_session_reset("context_invalidated", dropped)

        # Command output rides along with this prompt only; it never enters the window
        system_prompt = ctx.system_prompt
        if request.command_context:
            system_prompt += f"\n\n[Recent Command Output]\n{request.command_context}"

        return BackendRequest(
            prompt=request.message,
            system_prompt_append=system_prompt,
            cwd=request.cwd,
            resume_session_id=self.session.session_id,
        )

    def _restore_invalidation(self, ctx: Optional[ContextResult]):
        """Re-arm the dirty flag when an invalidating query never reached a remote session"""

        if ctx is not None and ctx.needs_new_session and self.session.session_id is None:
            self.context_manager.force_new_session()
            logger.debug("Session invalidation carried to the next query")

    async def _iter_with_idle_timeout(self, events: AsyncIterator[BackendEvent]) -> AsyncIterator[BackendEvent]:
        # Each step runs in the calling task so the backend can hold cancel scopes across yields
        iterator = events.__aiter__()
        try:
            while True:
                try:
                    async with asyncio.timeout(self.idle_timeout):
                        event = await iterator.__anext__()
                except StopAsyncIteration:
                    return
                except TimeoutError:
                    raise QueryTimeoutError(
                        f"Backend idle for {self.idle_timeout:g}s, query aborted"
                    ) from None
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _schedule_extraction(self, assistant_text: str):
        if self.extractor is None:
            return

        running = self.session.extraction_task
        if running is not None and not running.done():
            self.metrics.increment_counter("extraction.skipped")
            logger.debug("Extraction already running, skipping")
            return

        task = asyncio.create_task(self._extract_memory(assistant_text))
        self.session.extraction_task = task
        self.session.track(task)

    async def _extract_memory(self, assistant_text: str):
        """Best-effort fact extraction; failures are logged and dropped"""

        try:
            facts = await self.extractor.process(assistant_text)
            if facts is None:
                return

            self.context_manager.memory.merge_extracted(
                project=facts.project,
                conventions=facts.conventions,
                decisions=facts.decisions,
            )
            context_logger.log_context_update(
                "memory",
                "merge_extracted",
                {
                    "project": len(facts.project),
                    "conventions": len(facts.conventions),
                    "decisions": len(facts.decisions),
                },
            )

        except Exception as e:
            self.metrics.increment_counter("extraction.failed")
            logger.debug("Memory extraction failed", error=str(e), error_type=type(e).__name__)
