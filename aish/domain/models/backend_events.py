from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class BackendEventKind(str, Enum):
    """Normalized events emitted by a generative backend stream"""
    SESSION_STARTED = "session_started"
    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    RESULT = "result"


class BackendEvent(BaseModel):
    """One event from a streamed backend response"""
    kind: BackendEventKind
    content: str = ""
    tool: Optional[str] = None
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    # Terminal result fields
    subtype: Optional[str] = None
    is_error: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.kind == BackendEventKind.RESULT and not self.is_error and self.subtype == "success"


class BackendRequest(BaseModel):
    """A single query to the backend"""
    prompt: str
    system_prompt_append: str = ""
    cwd: Optional[str] = None
    resume_session_id: Optional[str] = Field(
        None, description="Continue this remote session; None starts a new one"
    )
