from typing import List, Optional
import time
import structlog

from aish.domain.models.context_state import ContextBudget, ContextResult, ContextStatus, Topic, TurnRole
from aish.domain.context.memory.fact_memory_store import EMPTY_MEMORY, MemoryStore
from aish.domain.context.memory.topic_store import NO_TOPICS, TopicStore
from aish.domain.context.memory.conversation_window import ConversationWindow
from aish.domain.context.state.shell_state_reader import ShellStateReader
from aish.infrastructure.config.settings import MEMORY_EXTRACT_INTERVAL, Settings
from aish.infrastructure.observability.logging import context_logger

logger = structlog.get_logger(__name__)

# Approximate cost of a "[Header]\n" line and a "\n\n" join
_HEADER_COST = 4
_JOIN_COST = 1


class ContextManager:
    """Assembles the bounded prompt fragment from the four context layers.

    Owns the memory store (L0), topic store (L1) and conversation window
    (L2); borrows the shell-state reader (L3). Also owns the dirty flag:
    any operation that makes the remote session's history stale sets it,
    and the next ``build()`` reports ``needs_new_session`` and carries a
    summary of the recent conversation to compensate.
    """

    def __init__(
        self,
        settings: Settings,
        shell: Optional[ShellStateReader] = None,
        extract_interval: int = MEMORY_EXTRACT_INTERVAL,
    ):
        self.budget: ContextBudget = settings.budget
        self.memory = MemoryStore(settings.memory_path)
        self.topics = TopicStore(settings.topics_path)
        self.window = ConversationWindow(settings.budget.window_share)
        self.shell = shell or ShellStateReader(settings.shell_state_path)
        self.extract_interval = extract_interval
        self.turn_count = 0
        self.dirty = False

    def build(self, override_cwd: Optional[str] = None) -> ContextResult:
        """Trim the window, then compose the prompt for the next query"""

        evicted = self.window.trim_if_needed()
        if evicted:
            topic = self.topics.add_from_turns(evicted)
            self.dirty = True
            context_logger.log_context_update(
                "window", "evict", {"pairs": len(evicted) // 2, "topic": topic.name}
            )

        needs_new_session = self.dirty
        system_prompt = self._build_system_prompt(override_cwd, needs_new_session)

        # Cleared only after composing so this prompt carries the summary
        self.dirty = False

        return ContextResult(system_prompt=system_prompt, needs_new_session=needs_new_session)

    def _build_system_prompt(self, override_cwd: Optional[str], include_summary: bool) -> str:
        sections: List[str] = []

        memory_prompt = self.memory.build_prompt()
        if memory_prompt != EMPTY_MEMORY:
            sections.append(f"[Memory]\n{memory_prompt}")

        topic_prompt = self.topics.build_prompt()
        if topic_prompt != NO_TOPICS:
            sections.append(f"[Previous Topics]\n{topic_prompt}")

        shell_prompt = self.shell.build_prompt(override_cwd)
        if shell_prompt:
            sections.append(f"[Shell Context]\n{shell_prompt}")

        if include_summary and not self.window.is_empty():
            recent = self.window.get_recent_summary()
            if recent:
                sections.append(f"[Recent Conversation Summary]\n{recent}")

        return "\n\n".join(sections)

    def add_turn(self, user_message: str, assistant_response: str):
        """Record one completed exchange"""

        self.window.add_turn(TurnRole.USER, user_message)
        self.window.add_turn(TurnRole.ASSISTANT, assistant_response)
        self.turn_count += 1

    def should_extract_memory(self) -> bool:
        return self.turn_count > 0 and self.turn_count % self.extract_interval == 0

    def force_new_session(self):
        self.dirty = True

    def compact(self) -> Optional[Topic]:
        """Fold the whole window into one time-named topic"""

        topic = None
        turns = self.window.get_turns()
        if turns:
            topic = self.topics.add_from_turns(turns, f"compact-{int(time.time() * 1000)}")
            self.window.clear()
            context_logger.log_context_update("window", "compact", {"topic": topic.name})
        self.dirty = True
        return topic

    def clear_window(self):
        self.window.clear()
        self.dirty = True
        context_logger.log_context_update("window", "clear")

    def clear_all(self):
        self.window.clear()
        self.topics.clear()
        self.memory.clear()
        self.dirty = True
        context_logger.log_context_update("all", "clear")

    def switch_topic(self, name: str) -> Optional[str]:
        """Save the current window as a topic and start fresh.

        Returns the saved topic's name, or None if the window was empty.
        """

        saved = None
        turns = self.window.get_turns()
        if turns:
            saved = self.topics.add_from_turns(turns).name
            self.window.clear()

        self.dirty = True
        context_logger.log_context_update("topics", "switch", {"saved": saved, "next": name})
        return saved

    def recall_topic(self, name: str) -> Optional[str]:
        """Look up a topic summary and force a new session.

        The summary is returned to the caller only; it is not injected into
        the window.
        """

        topic = self.topics.get(name)
        if topic is None:
            return None

        self.dirty = True
        context_logger.log_context_update("topics", "recall", {"name": topic.name})
        return topic.summary

    def get_status(self) -> ContextStatus:
        """Per-layer cost estimate; may drift from the next real build"""

        memory_tokens = self.memory.estimate_tokens()
        topic_tokens = self.topics.estimate_tokens()
        window_tokens = self.window.estimate_tokens()
        shell_tokens = self.shell.estimate_tokens()
        framing_tokens = self._estimate_framing_overhead()

        return ContextStatus(
            window_turns=self.window.count(),
            topic_count=self.topics.count(),
            memory_tokens=memory_tokens,
            topic_tokens=topic_tokens,
            window_tokens=window_tokens,
            shell_tokens=shell_tokens,
            framing_tokens=framing_tokens,
            total_tokens=memory_tokens + topic_tokens + window_tokens + shell_tokens + framing_tokens,
            budget=self.budget.total,
        )

    def _estimate_framing_overhead(self) -> int:
        sections = 1  # shell context is always rendered
        if self.memory.build_prompt() != EMPTY_MEMORY:
            sections += 1
        if self.topics.count() > 0:
            sections += 1
        if self.dirty and self.window.count() > 0:
            sections += 1
        return sections * _HEADER_COST + max(0, sections - 1) * _JOIN_COST
