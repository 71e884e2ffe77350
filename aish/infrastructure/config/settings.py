"""
Runtime configuration for the aish daemon and client.

Values come from environment variables with fixed defaults; there is no
config file. Build one ``Settings`` at startup and pass it down.
"""

from typing import List, Optional
from pathlib import Path
import os

from pydantic import BaseModel, Field

from aish.domain.models.context_state import ContextBudget

MAX_TOPICS = 10
RECENT_CAPACITY = 10
MEMORY_EXTRACT_INTERVAL = 5
SHELL_RECENT_COMMANDS = 5
SHELL_OUTPUT_PREVIEW = 200
RECENT_SUMMARY_PAIRS = 3


def _default_config_dir() -> Path:
    env_dir = os.getenv("CLAUDE_SHELL_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "claude-shell"


class BackendSettings(BaseModel):
    """Options passed to the generative backend"""
    allowed_tools: List[str] = Field(
        default_factory=lambda: ["Read", "Edit", "Bash", "Glob", "Grep", "Write"]
    )
    permission_mode: str = "bypassPermissions"
    max_turns: int = 3
    model: Optional[str] = None
    extraction_model: str = "claude-haiku-4-5"


class Settings(BaseModel):
    """Complete daemon configuration"""
    config_dir: Path = Field(default_factory=_default_config_dir)
    budget: ContextBudget = Field(default_factory=ContextBudget)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    query_idle_timeout: float = 300.0
    log_level: str = "INFO"
    log_format: str = "console"

    @property
    def socket_path(self) -> Path:
        return self.config_dir / "daemon.sock"

    @property
    def pid_path(self) -> Path:
        return self.config_dir / "daemon.pid"

    @property
    def memory_path(self) -> Path:
        return self.config_dir / "memory.json"

    @property
    def topics_path(self) -> Path:
        return self.config_dir / "topics.json"

    @property
    def shell_state_path(self) -> Path:
        return self.config_dir / "shell-state.json"

    @property
    def log_path(self) -> Path:
        return self.config_dir / "daemon.log"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from AISH_* environment variables"""
        settings = cls()

        window_budget = os.getenv("AISH_WINDOW_BUDGET")
        if window_budget:
            settings.budget.window_share = int(window_budget)

        idle_timeout = os.getenv("AISH_QUERY_IDLE_TIMEOUT")
        if idle_timeout is not None:
            settings.query_idle_timeout = float(idle_timeout)

        extraction_model = os.getenv("AISH_EXTRACTION_MODEL")
        if extraction_model:
            settings.backend.extraction_model = extraction_model

        model = os.getenv("AISH_MODEL")
        if model:
            settings.backend.model = model

        settings.log_level = os.getenv("AISH_LOG_LEVEL", settings.log_level)
        settings.log_format = os.getenv("AISH_LOG_FORMAT", settings.log_format)
        return settings

    def ensure_config_dir(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
