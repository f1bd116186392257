"""Context budgeter: estimation and pairing-safe trimming."""

import pytest

from talon.ai.budget import CharRatioEstimator, ContextBudgeter
from talon.core.models import Message, ToolCall, ToolResult, pairing_violations
from talon.core.types import Role
from talon.errors import ContextOverflowError


def tool_round(call_id: str = "c1", data: str = "x") -> list[Message]:
    assistant = Message.assistant("", [ToolCall(id=call_id, name="echo", arguments={"text": data})])
    result = ToolResult(tool_call_id=call_id, tool_name="echo", success=True, data=data)
    return [assistant, Message.tool(result)]


@pytest.fixture
def budgeter() -> ContextBudgeter:
    # one token per character keeps the arithmetic readable
    return ContextBudgeter(CharRatioEstimator(1.0))


class TestEstimation:
    def test_char_ratio_rounds_up(self):
        est = CharRatioEstimator(3.0)
        assert est.count("") == 0
        assert est.count("abc") == 1
        assert est.count("abcd") == 2

    def test_monotonic(self):
        est = CharRatioEstimator(3.0)
        counts = [est.count("x" * n) for n in range(50)]
        assert counts == sorted(counts)

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            CharRatioEstimator(0)

    def test_tool_calls_are_counted(self, budgeter):
        plain = Message.assistant("")
        with_call = tool_round()[0]
        assert budgeter.estimate_message(with_call) > budgeter.estimate_message(plain)

    def test_pluggable_estimator(self):
        class WordEstimator:
            def count(self, text: str) -> int:
                return len(text.split())

        budgeter = ContextBudgeter(WordEstimator())
        assert budgeter.estimate_text("one two three") == 3


class TestFit:
    def test_everything_fits(self, budgeter):
        messages = [Message.user("hi"), Message.assistant("hello")]

        result = budgeter.fit(messages, 1000)

        assert result.messages == messages
        assert result.dropped == 0
        assert not result.compression_recommended
        assert not result.over_budget

    def test_keeps_newest_suffix(self, budgeter):
        old = Message.user("a" * 100)
        messages = [old, *tool_round(), Message.user("hi")]

        result = budgeter.fit(messages, 60)

        assert result.messages == messages[1:]
        assert result.dropped == 1
        assert result.compression_recommended
        assert pairing_violations(result.messages) == []

    def test_tool_round_dropped_whole(self, budgeter):
        messages = [Message.user("a" * 100), *tool_round(), Message.user("hi")]

        result = budgeter.fit(messages, 30)

        assert [m.content for m in result.messages] == ["hi"]
        assert result.dropped == 3
        assert pairing_violations(result.messages) == []

    def test_pairing_holds_for_every_budget(self, budgeter):
        messages = [Message.user("start")]
        for i in range(5):
            messages += [Message.user(f"q{i}"), *tool_round(f"c{i}", "y" * (i * 7)), Message.assistant(f"a{i}")]

        for budget in range(1, 400, 7):
            result = budgeter.fit(messages, budget)
            assert pairing_violations(result.messages) == []
            assert result.messages[-1] is messages[-1]

    def test_newest_unit_kept_even_when_too_large(self, budgeter):
        messages = [Message.user("x" * 500)]

        result = budgeter.fit(messages, 10)

        assert result.messages == messages
        assert result.over_budget
        assert result.compression_recommended

    def test_system_messages_always_kept(self, budgeter):
        system = Message.system("rules")
        messages = [system, Message.user("a" * 200), Message.user("latest")]

        result = budgeter.fit(messages, 30)

        assert result.messages == [system, messages[-1]]

    def test_system_prompt_counts_against_budget(self, budgeter):
        messages = [Message.user("a" * 20), Message.user("b" * 20)]

        assert budgeter.fit(messages, 60).dropped == 0
        assert budgeter.fit(messages, 60, system_prompt="s" * 20).dropped == 1

    def test_non_positive_budget(self, budgeter):
        with pytest.raises(ContextOverflowError):
            budgeter.fit([Message.user("hi")], 0)

    def test_orphan_tool_result_dropped(self, budgeter):
        orphan = Message.tool(ToolResult(tool_call_id="gone", tool_name="echo", success=True, data="x"))
        messages = [orphan, Message.user("hi")]

        result = budgeter.fit(messages, 1000)

        assert [m.role for m in result.messages] == [Role.USER]

    def test_unanswered_tool_call_dropped(self, budgeter):
        dangling = Message(role=Role.ASSISTANT, tool_calls=(ToolCall(id="c9", name="echo"),))
        messages = [Message.user("hi"), dangling, Message.user("again")]

        result = budgeter.fit(messages, 1000)

        assert [m.content for m in result.messages] == ["hi", "again"]
        assert pairing_violations(result.messages) == []
