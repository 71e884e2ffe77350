"""Tests for the L2 conversation window."""

from aish.domain.context.memory.conversation_window import ConversationWindow
from aish.domain.context.token_estimator import estimate_tokens
from aish.domain.models.context_state import TurnRole


def add_pair(window, user, assistant):
    window.add_turn(TurnRole.USER, user)
    window.add_turn(TurnRole.ASSISTANT, assistant)


class TestConversationWindow:
    def test_tracks_cost_of_added_turns(self):
        window = ConversationWindow(max_tokens=1000)
        add_pair(window, "hello", "hello world")

        assert window.count() == 1
        assert window.estimate_tokens() == estimate_tokens("hello") + estimate_tokens("hello world")

    def test_no_trim_under_budget(self):
        window = ConversationWindow(max_tokens=1000)
        add_pair(window, "q", "a")

        assert window.trim_if_needed() == []
        assert window.count() == 1

    def test_evicts_oldest_pairs_when_over_budget(self):
        window = ConversationWindow(max_tokens=10)
        add_pair(window, "first question " * 3, "first answer " * 3)
        add_pair(window, "second", "answer")

        evicted = window.trim_if_needed()

        assert [t.content for t in evicted] == ["first question " * 3, "first answer " * 3]
        assert window.count() == 1
        assert window.get_turns()[0].content == "second"
        assert window.estimate_tokens() == estimate_tokens("second") + estimate_tokens("answer")

    def test_newest_pair_survives_even_over_budget(self):
        window = ConversationWindow(max_tokens=1)
        add_pair(window, "a very long question " * 20, "a very long answer " * 20)

        assert window.trim_if_needed() == []
        assert window.count() == 1
        assert window.estimate_tokens() > window.max_tokens

    def test_evicted_come_back_in_pairs(self):
        window = ConversationWindow(max_tokens=5)
        for i in range(4):
            add_pair(window, f"question number {i} " * 2, f"answer number {i} " * 2)

        evicted = window.trim_if_needed()

        assert len(evicted) % 2 == 0
        assert [t.role for t in evicted[:2]] == [TurnRole.USER, TurnRole.ASSISTANT]
        assert window.count() == 1

    def test_recent_summary_truncates_and_limits_pairs(self):
        window = ConversationWindow(max_tokens=10000)
        for i in range(5):
            add_pair(window, f"u{i}" + "x" * 200, f"a{i}" + "y" * 300)

        summary = window.get_recent_summary()
        blocks = summary.split("\n---\n")

        assert len(blocks) == 3
        assert blocks[0].startswith("User: u2")
        user_line, assistant_line = blocks[0].split("\n")
        assert len(user_line) == len("User: ") + 100
        assert len(assistant_line) == len("Assistant: ") + 150

    def test_recent_summary_of_empty_window(self):
        assert ConversationWindow(max_tokens=100).get_recent_summary() == ""

    def test_clear(self):
        window = ConversationWindow(max_tokens=100)
        add_pair(window, "q", "a")
        window.clear()

        assert window.is_empty()
        assert window.estimate_tokens() == 0


class TestTrimProperties:
    def fill(self, window, pairs):
        for i in range(pairs):
            add_pair(window, f"question {i} about the build", f"answer {i} " + "detail " * (i + 3))

    def test_second_trim_is_a_no_op(self):
        window = ConversationWindow(max_tokens=30)
        self.fill(window, 6)
        window.trim_if_needed()
        cost = window.estimate_tokens()

        assert window.trim_if_needed() == []
        assert window.estimate_tokens() == cost

    def test_within_budget_or_single_pair(self):
        for budget in (1, 15, 40, 80, 500):
            window = ConversationWindow(max_tokens=budget)
            self.fill(window, 6)
            window.trim_if_needed()

            assert len(window.get_turns()) % 2 == 0
            assert window.estimate_tokens() <= budget or window.count() == 1

    def test_count_is_half_the_turns(self):
        window = ConversationWindow(max_tokens=1000)
        window.add_turn(TurnRole.USER, "dangling")

        assert window.count() == 0
        window.add_turn(TurnRole.ASSISTANT, "reply")
        assert window.count() == 1
