from typing import Dict, Any, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum


class TurnRole(str, Enum):
    """Conversation turn roles"""
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One message in the conversation window"""
    role: TurnRole
    content: str
    created_at: datetime = Field(default_factory=datetime.now)
    cost: int = Field(0, ge=0, description="Estimated cost units of content")


class Topic(BaseModel):
    """Named summary of a finished stretch of conversation"""
    name: str
    summary: str
    created_at: datetime = Field(default_factory=datetime.now)
    cost: int = Field(0, ge=0, description="Estimated cost units of summary")


class TopicFile(BaseModel):
    """On-disk envelope for topics.json"""
    estimator_version: Optional[int] = None
    topics: List[Topic] = Field(default_factory=list)


class MemoryFacts(BaseModel):
    """Durable facts persisted to memory.json"""
    model_config = ConfigDict(populate_by_name=True)

    project: Dict[str, str] = Field(default_factory=dict)
    conventions: List[str] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)
    recent: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recent", "recentWork"),
    )

    def is_empty(self) -> bool:
        return not (self.project or self.conventions or self.decisions or self.recent)


class ShellState(BaseModel):
    """Ambient shell state written by the shell integration hook"""
    model_config = ConfigDict(populate_by_name=True)

    cwd: str
    recent_commands: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("last_commands", "lastCommands", "recent_commands"),
    )
    last_exit_code: int = Field(
        0,
        validation_alias=AliasChoices("last_exit_code", "lastExitCode"),
    )
    last_output_preview: str = Field(
        "",
        validation_alias=AliasChoices("last_output_preview", "lastOutputPreview"),
    )


class ContextBudget(BaseModel):
    """Static per-layer cost budget"""
    total: int = 3100
    memory_share: int = 200
    topics_share: int = 300
    window_share: int = 2500
    shell_share: int = 100


class ContextResult(BaseModel):
    """Output of one context build"""
    system_prompt: str
    needs_new_session: bool = False


class ContextStatus(BaseModel):
    """Per-layer cost report for the status command"""
    session_id: Optional[str] = None
    window_turns: int = 0
    topic_count: int = 0
    memory_tokens: int = 0
    topic_tokens: int = 0
    window_tokens: int = 0
    shell_tokens: int = 0
    framing_tokens: int = 0
    total_tokens: int = 0
    budget: int = 0
    metrics: Dict[str, Any] = Field(default_factory=dict)
