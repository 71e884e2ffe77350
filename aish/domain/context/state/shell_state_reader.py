from typing import Any, Optional
from pathlib import Path
import os

from aish.domain.context.token_estimator import estimate_tokens
from aish.domain.models.context_state import ShellState
from aish.infrastructure.config.settings import SHELL_OUTPUT_PREVIEW, SHELL_RECENT_COMMANDS
from aish.infrastructure.persistence.json_store import load_model_or_default


class ShellStateReader:
    """L3: read-only view of the state file written by the shell hook"""

    def __init__(self, path: Path):
        self.path = path

    def _default(self) -> ShellState:
        return ShellState(cwd=os.getcwd())

    def _prepare(self, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        # Missing or null fields fall back to their defaults
        data = {k: v for k, v in raw.items() if v is not None}
        if not data.get("cwd"):
            data["cwd"] = os.getcwd()
        return data

    def read(self) -> ShellState:
        return load_model_or_default(self.path, ShellState, self._default, prepare=self._prepare)

    def build_prompt(self, override_cwd: Optional[str] = None) -> str:
        """Render cwd, recent commands, a failing exit code and output preview"""

        state = self.read()
        cwd = override_cwd if override_cwd is not None else state.cwd
        parts = [f"cwd: {cwd}"]

        if state.recent_commands:
            parts.append("recent: " + " | ".join(state.recent_commands[-SHELL_RECENT_COMMANDS:]))
        if state.last_exit_code != 0:
            parts.append(f"last exit: {state.last_exit_code}")
        if state.last_output_preview:
            parts.append(f"output: {state.last_output_preview[:SHELL_OUTPUT_PREVIEW]}")

        return "\n".join(parts)

    def estimate_tokens(self, override_cwd: Optional[str] = None) -> int:
        return estimate_tokens(self.build_prompt(override_cwd))
