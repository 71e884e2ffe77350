from typing import Any, List, Optional, Sequence
from pathlib import Path
import re
import time
import structlog

from aish.domain.context.token_estimator import ESTIMATOR_VERSION, estimate_tokens
from aish.domain.models.context_state import Topic, TopicFile, Turn, TurnRole
from aish.infrastructure.config.settings import MAX_TOPICS
from aish.infrastructure.persistence.json_store import load_model_or_default, write_model_atomic

logger = structlog.get_logger(__name__)

NO_TOPICS = "(no previous topics)"
SUMMARY_SEPARATOR = " | "

_NAME_STRIP = re.compile(r"[^a-zA-Z가-힣0-9\s]")


def _prepare_topic_file(raw: Any) -> Any:
    # Legacy layout: a bare list of topics with no estimator version
    if isinstance(raw, list):
        return {"estimator_version": None, "topics": raw}
    return raw


class TopicStore:
    """L1: bounded FIFO of named conversation summaries"""

    def __init__(self, path: Path, capacity: int = MAX_TOPICS):
        self.path = path
        self.capacity = capacity
        self.topics: List[Topic] = []

        # Prompt cache, invalidated by any mutation
        self._version = 0
        self._cached_prompt: Optional[str] = None
        self._cached_version = -1

        self._load()

    def _load(self):
        stored = load_model_or_default(self.path, TopicFile, TopicFile, prepare=_prepare_topic_file)
        self.topics = stored.topics

        if stored.estimator_version != ESTIMATOR_VERSION and self.topics:
            migrated = False
            for topic in self.topics:
                fresh = estimate_tokens(topic.summary)
                if topic.cost != fresh:
                    topic.cost = fresh
                    migrated = True
            if migrated:
                logger.info("Re-estimated topic costs", count=len(self.topics))
                self._save()

    def _save(self):
        write_model_atomic(self.path, TopicFile(estimator_version=ESTIMATOR_VERSION, topics=self.topics))
        self._version += 1

    def get_all(self) -> List[Topic]:
        return list(self.topics)

    def get(self, name: str) -> Optional[Topic]:
        """Case-insensitive lookup"""

        idx = self._index_of(name)
        return self.topics[idx] if idx >= 0 else None

    def add_from_turns(self, turns: Sequence[Turn], name: Optional[str] = None) -> Topic:
        """Summarize user/assistant pairs into a new topic"""

        fragments = []
        for i in range(0, len(turns) - 1, 2):
            user, assistant = turns[i], turns[i + 1]
            q = user.content[:60].replace("\n", " ")
            a = assistant.content[:80].replace("\n", " ")
            fragments.append(f"Q: {q}... → A: {a}...")

        return self._upsert(name or self._generate_name(turns), SUMMARY_SEPARATOR.join(fragments))

    def add_manual(self, name: str, summary: str) -> Topic:
        """Insert or replace a topic by case-insensitive name"""

        return self._upsert(name, summary)

    def _upsert(self, name: str, summary: str) -> Topic:
        topic = Topic(name=name, summary=summary, cost=estimate_tokens(summary))
        idx = self._index_of(name)
        if idx >= 0:
            self.topics[idx] = topic
        else:
            self.topics.append(topic)
        self._evict_overflow()
        self._save()
        return topic

    def remove(self, name: str) -> bool:
        idx = self._index_of(name)
        if idx < 0:
            return False
        del self.topics[idx]
        self._save()
        return True

    def clear(self):
        self.topics = []
        self._save()

    def count(self) -> int:
        return len(self.topics)

    def build_prompt(self) -> str:
        """Render all topics as timestamped bullets, or ``NO_TOPICS``"""

        if not self.topics:
            return NO_TOPICS

        if self._cached_prompt is not None and self._cached_version == self._version:
            return self._cached_prompt

        self._cached_prompt = "\n".join(
            f"- {t.name}: {t.summary} ({t.created_at.strftime('%H:%M')})" for t in self.topics
        )
        self._cached_version = self._version
        return self._cached_prompt

    def estimate_tokens(self) -> int:
        """Cost of the rendered topics section, framing included"""

        if not self.topics:
            return 0
        return estimate_tokens(self.build_prompt())

    def _index_of(self, name: str) -> int:
        lowered = name.lower()
        for i, topic in enumerate(self.topics):
            if topic.name.lower() == lowered:
                return i
        return -1

    def _evict_overflow(self):
        # Strict insertion-order FIFO
        while len(self.topics) > self.capacity:
            evicted = self.topics.pop(0)
            logger.debug("Topic evicted", name=evicted.name)

    @staticmethod
    def _generate_name(turns: Sequence[Turn]) -> str:
        first_user = next((t for t in turns if t.role == TurnRole.USER), None)
        if first_user is not None:
            words = [w for w in _NAME_STRIP.sub("", first_user.content).split() if len(w) > 2]
            if words:
                return "-".join(words[:3])
        return f"topic-{int(time.time() * 1000)}"
