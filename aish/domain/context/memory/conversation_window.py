from typing import List
import structlog

from aish.domain.context.token_estimator import estimate_tokens
from aish.domain.models.context_state import Turn, TurnRole
from aish.infrastructure.config.settings import RECENT_SUMMARY_PAIRS

logger = structlog.get_logger(__name__)


class ConversationWindow:
    """L2: budget-bounded buffer of recent user/assistant turns.

    Turns are always appended in pairs by the context manager. Eviction
    hands the removed pairs back to the caller; deciding what to do with
    them (summarization into topics) is not this class's job.
    """

    def __init__(self, max_tokens: int):
        self.max_tokens = max_tokens
        self.turns: List[Turn] = []
        self.current_tokens = 0

    def add_turn(self, role: TurnRole, content: str) -> Turn:
        turn = Turn(role=role, content=content, cost=estimate_tokens(content))
        self.turns.append(turn)
        self.current_tokens += turn.cost
        return turn

    def trim_if_needed(self) -> List[Turn]:
        """Evict oldest pairs while over budget; the newest pair always survives"""

        evicted: List[Turn] = []
        while self.current_tokens > self.max_tokens and len(self.turns) > 2:
            pair = self.turns[:2]
            del self.turns[:2]
            for turn in pair:
                self.current_tokens -= turn.cost
            evicted.extend(pair)

        self.current_tokens = max(0, self.current_tokens)
        if evicted:
            logger.debug("Window trimmed", evicted_pairs=len(evicted) // 2, remaining_tokens=self.current_tokens)
        return evicted

    def get_turns(self) -> List[Turn]:
        return list(self.turns)

    def get_recent_summary(self, max_pairs: int = RECENT_SUMMARY_PAIRS) -> str:
        """Transcript excerpt of the newest pairs for a session restart"""

        pairs = []
        i = max(0, len(self.turns) - max_pairs * 2)
        while i < len(self.turns) - 1 and len(pairs) < max_pairs:
            user, assistant = self.turns[i], self.turns[i + 1]
            pairs.append(f"User: {user.content[:100]}\nAssistant: {assistant.content[:150]}")
            i += 2
        return "\n---\n".join(pairs)

    def count(self) -> int:
        """Number of complete turn pairs"""
        return len(self.turns) // 2

    def is_empty(self) -> bool:
        return not self.turns

    def clear(self):
        self.turns = []
        self.current_tokens = 0

    def estimate_tokens(self) -> int:
        return self.current_tokens
