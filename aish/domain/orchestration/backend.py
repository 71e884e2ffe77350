from typing import AsyncIterator, Optional, Protocol

from aish.domain.models.backend_events import BackendEvent, BackendRequest


class GenerativeBackend(Protocol):
    """Session-oriented remote generative backend.

    ``stream`` either resumes ``request.resume_session_id`` or starts a new
    remote session, and yields normalized events until a terminal
    ``RESULT`` event. Raising from the iterator is a transient failure.
    """

    def stream(self, request: BackendRequest) -> AsyncIterator[BackendEvent]:
        ...

    async def complete(self, prompt: str, system_prompt: str, model: Optional[str] = None) -> str:
        """One-shot, tool-less completion returning the full text"""
        ...
