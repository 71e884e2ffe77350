"""
Background fact extraction.

Every few turns the latest assistant response is sent to a small model
that returns JSON facts; whatever survives validation is merged into the
memory store. The pass is best-effort enrichment: callers swallow its
failures.
"""

from typing import Any, Dict, List, Optional
import json
import re

from pydantic import BaseModel, Field, field_validator
import structlog

from aish.domain.orchestration.backend import GenerativeBackend
from aish.domain.orchestration.subagent.base_subagent import BaseSubAgent

logger = structlog.get_logger(__name__)

EXTRACT_SYSTEM_PROMPT = """You are a memory extraction agent. From the given AI assistant response, extract facts worth remembering for future conversations.

Return ONLY valid JSON (no markdown, no explanation):
{
  "project": { "key": "value" },
  "conventions": ["convention string"],
  "decisions": ["decision string"]
}

Rules:
- project: tech stack, frameworks, languages, project description (max 3)
- conventions: coding rules, naming conventions, style guidelines (max 2)
- decisions: architectural or design choices made (max 2)
- Skip negated statements ("don't use X", "not recommended")
- Skip content inside code blocks
- If nothing worth remembering, return {}
- Keep values concise (under 100 chars each)"""

MIN_INPUT_CHARS = 50
MAX_INPUT_CHARS = 4000
MAX_VALUE_CHARS = 100
MAX_PROJECT_ENTRIES = 3
MAX_LIST_ENTRIES = 2

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _short_strings(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    kept = [v for v in value if isinstance(v, str) and len(v) <= MAX_VALUE_CHARS]
    return kept[:limit]


class ExtractedFacts(BaseModel):
    """Validated, size-limited extraction output"""
    project: Dict[str, str] = Field(default_factory=dict)
    conventions: List[str] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)

    @field_validator("project", mode="before")
    @classmethod
    def _limit_project(cls, value: Any) -> Dict[str, str]:
        if not isinstance(value, dict):
            return {}
        kept: Dict[str, str] = {}
        for key, item in value.items():
            if len(kept) >= MAX_PROJECT_ENTRIES:
                break
            if isinstance(item, str) and len(item) <= MAX_VALUE_CHARS:
                kept[str(key)] = item
        return kept

    @field_validator("conventions", "decisions", mode="before")
    @classmethod
    def _limit_lists(cls, value: Any) -> List[str]:
        return _short_strings(value, MAX_LIST_ENTRIES)

    def is_empty(self) -> bool:
        return not (self.project or self.conventions or self.decisions)


def parse_extraction(response_text: str) -> Optional[ExtractedFacts]:
    """Parse raw model output; raises ValueError on malformed JSON"""

    if not response_text.strip():
        return None

    match = _FENCE.search(response_text)
    payload = (match.group(1) if match else response_text).strip()
    parsed = json.loads(payload)
    if not isinstance(parsed, dict):
        return None

    facts = ExtractedFacts.model_validate(parsed)
    return None if facts.is_empty() else facts


class MemoryExtractionAgent(BaseSubAgent):
    """Extracts durable facts from an assistant response"""

    def __init__(self, backend: GenerativeBackend, model: Optional[str] = None):
        super().__init__(
            name="memory_extractor",
            description="Extract project facts, conventions and decisions"
        )
        self.backend = backend
        self.model = model

    def accepts(self, input_text: str) -> bool:
        return len(input_text) >= MIN_INPUT_CHARS

    async def process(self, input_text: str) -> Optional[ExtractedFacts]:
        """Run one extraction call; returns None when nothing qualifies"""

        if not self.accepts(input_text):
            return None

        self.update_activity()
        response_text = await self.backend.complete(
            input_text[:MAX_INPUT_CHARS],
            system_prompt=EXTRACT_SYSTEM_PROMPT,
            model=self.model,
        )
        facts = parse_extraction(response_text)

        logger.debug("Extraction finished", found=facts is not None)
        return facts
