from typing import Optional, Set
import asyncio


class SessionContext:
    """Per-process daemon state shared by the query path and commands.

    One instance per daemon, passed by reference. It models a single
    conversation: one remote session id and at most one query in flight.
    """

    def __init__(self):
        self.session_id: Optional[str] = None
        self.active_query: Optional[asyncio.Task] = None
        self.extraction_task: Optional[asyncio.Task] = None
        self.background_tasks: Set[asyncio.Task] = set()

    @property
    def query_in_progress(self) -> bool:
        return self.active_query is not None

    def reset_session(self) -> Optional[str]:
        """Forget the remote session id; returns the one dropped"""
        dropped, self.session_id = self.session_id, None
        return dropped

    def track(self, task: asyncio.Task):
        """Keep a strong reference to a fire-and-forget task until it finishes"""
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    def cancel_active_query(self) -> bool:
        if self.active_query is not None and not self.active_query.done():
            self.active_query.cancel()
            return True
        return False
