from typing import Dict, List, Optional
from pathlib import Path
import structlog

from aish.domain.context.token_estimator import estimate_tokens
from aish.domain.models.context_state import MemoryFacts
from aish.infrastructure.config.settings import RECENT_CAPACITY
from aish.infrastructure.persistence.json_store import load_model_or_default, write_model_atomic

logger = structlog.get_logger(__name__)

EMPTY_MEMORY = "(empty)"

_CONVENTION_KEYWORDS = ("convention", "rule", "always", "never")
_DECISION_KEYWORDS = ("decided", "decision", "chose")


class MemoryStore:
    """L0: durable project facts, conventions, decisions and recent work"""

    def __init__(self, path: Path, recent_capacity: int = RECENT_CAPACITY):
        self.path = path
        self.recent_capacity = recent_capacity
        self.facts = load_model_or_default(path, MemoryFacts, MemoryFacts)

    def _save(self):
        write_model_atomic(self.path, self.facts)

    def remember(self, fact: str) -> str:
        """Classify and store one fact; returns the section it landed in"""

        lower = fact.lower()
        if any(k in lower for k in _CONVENTION_KEYWORDS):
            section = "conventions"
            _append_unique(self.facts.conventions, fact)
        elif any(k in lower for k in _DECISION_KEYWORDS):
            section = "decisions"
            _append_unique(self.facts.decisions, fact)
        else:
            section = "recent"
            self.facts.recent.append(fact)
            self._trim_recent()

        self._save()
        logger.debug("Fact remembered", section=section)
        return section

    def set_project(self, key: str, value: str):
        """Set a single project attribute"""

        self.facts.project[key] = value
        self._save()

    def merge_extracted(
        self,
        project: Optional[Dict[str, str]] = None,
        conventions: Optional[List[str]] = None,
        decisions: Optional[List[str]] = None,
        recent: Optional[List[str]] = None,
    ):
        """Merge a batch of facts; project keys are last-write-wins"""

        if project:
            self.facts.project.update(project)
        for c in conventions or []:
            _append_unique(self.facts.conventions, c)
        for d in decisions or []:
            _append_unique(self.facts.decisions, d)
        if recent:
            self.facts.recent.extend(recent)
            self._trim_recent()

        self._save()

    def clear(self):
        self.facts = MemoryFacts()
        self._save()

    def _trim_recent(self):
        overflow = len(self.facts.recent) - self.recent_capacity
        if overflow > 0:
            del self.facts.recent[:overflow]

    def build_prompt(self) -> str:
        """Render non-empty sections, or the ``(empty)`` sentinel"""

        parts = []
        if self.facts.project:
            parts.append(", ".join(f"{k}: {v}" for k, v in self.facts.project.items()))
        if self.facts.conventions:
            parts.append("Conventions: " + "; ".join(self.facts.conventions))
        if self.facts.decisions:
            parts.append("Decisions: " + "; ".join(self.facts.decisions))
        if self.facts.recent:
            parts.append("Recent: " + "; ".join(self.facts.recent[-3:]))

        return "\n".join(parts) if parts else EMPTY_MEMORY

    def estimate_tokens(self) -> int:
        prompt = self.build_prompt()
        if prompt == EMPTY_MEMORY:
            return 0
        return estimate_tokens(prompt)


def _append_unique(items: List[str], value: str):
    if value not in items:
        items.append(value)
