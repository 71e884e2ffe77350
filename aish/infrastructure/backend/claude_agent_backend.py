"""
Generative backend built on the Claude Agent SDK.

Each query is a separate ``query()`` call. Conversation continuity across
calls comes from resuming the remote session id the SDK reports; when the
context layer invalidates the session the daemon passes ``None`` and the
SDK starts a fresh one.
"""

from typing import Any, AsyncIterator, Iterator, List, Optional
import json
import structlog

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)

from aish.domain.exceptions import BackendError
from aish.domain.models.backend_events import BackendEvent, BackendEventKind, BackendRequest
from aish.infrastructure.config.settings import BackendSettings

logger = structlog.get_logger(__name__)

# Tool output is shown as a one-line acknowledgement client side
TOOL_RESULT_PREVIEW = 500


class ClaudeAgentBackend:
    """Streams Claude Agent SDK messages as normalized backend events"""

    def __init__(self, settings: BackendSettings):
        self.settings = settings

    def _query_options(self, request: BackendRequest) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt={
                "type": "preset",
                "preset": "claude_code",
                "append": request.system_prompt_append,
            },
            resume=request.resume_session_id,
            allowed_tools=list(self.settings.allowed_tools),
            permission_mode=self.settings.permission_mode,
            max_turns=self.settings.max_turns,
            cwd=request.cwd,
            model=self.settings.model,
        )

    async def stream(self, request: BackendRequest) -> AsyncIterator[BackendEvent]:
        options = self._query_options(request)
        logger.debug(
            "Backend query",
            resume=request.resume_session_id is not None,
            prompt_chars=len(request.prompt),
            append_chars=len(request.system_prompt_append),
        )

        try:
            async for message in query(prompt=request.prompt, options=options):
                for event in self._convert(message):
                    yield event
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(str(e) or type(e).__name__) from e

    def _convert(self, message: Any) -> Iterator[BackendEvent]:
        if isinstance(message, SystemMessage):
            if message.subtype == "init":
                session_id = (message.data or {}).get("session_id")
                yield BackendEvent(kind=BackendEventKind.SESSION_STARTED, session_id=session_id)

        elif isinstance(message, AssistantMessage):
            for block in message.content:
                if isinstance(block, TextBlock):
                    yield BackendEvent(kind=BackendEventKind.TEXT, content=block.text)
                elif isinstance(block, ToolUseBlock):
                    yield BackendEvent(
                        kind=BackendEventKind.TOOL_USE,
                        tool=block.name,
                        tool_input=block.input or {},
                    )
                # Thinking blocks are never relayed

        elif isinstance(message, UserMessage):
            if isinstance(message.content, list):
                for block in message.content:
                    if isinstance(block, ToolResultBlock):
                        yield BackendEvent(
                            kind=BackendEventKind.TOOL_RESULT,
                            content=_stringify_tool_output(block.content)[:TOOL_RESULT_PREVIEW],
                        )

        elif isinstance(message, ResultMessage):
            errors: List[str] = [str(err) for err in (getattr(message, "errors", None) or [])]
            yield BackendEvent(
                kind=BackendEventKind.RESULT,
                content=message.result or "",
                session_id=message.session_id,
                subtype=message.subtype,
                is_error=message.is_error,
                errors=errors,
            )

    async def complete(self, prompt: str, system_prompt: str, model: Optional[str] = None) -> str:
        """Single-turn, tool-less completion used for memory extraction"""

        options = ClaudeAgentOptions(
            system_prompt=system_prompt,
            model=model or self.settings.model,
            max_turns=1,
            allowed_tools=[],
            permission_mode=self.settings.permission_mode,
        )

        parts: List[str] = []
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            parts.append(block.text)
        except Exception as e:
            raise BackendError(str(e) or type(e).__name__) from e

        return "".join(parts)


def _stringify_tool_output(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [item.get("text", "") for item in content if isinstance(item, dict) and item.get("type") == "text"]
        if texts:
            return "\n".join(texts)
    return json.dumps(content, ensure_ascii=False, default=str)
