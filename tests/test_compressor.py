"""Memory compressor: cut point, summary message and failure handling."""

import pytest

from conftest import FakeProvider, make_router, text
from talon.ai.compressor import MemoryCompressor
from talon.ai.prompts import SUMMARY_PREFIX
from talon.core.models import Message, Session, ToolCall, ToolResult, pairing_violations
from talon.core.types import Role
from talon.errors import ProviderAuthError


def chat_session(pairs: int) -> Session:
    session = Session(id="sess_test", channel="console", sender_id="alice")
    for i in range(pairs):
        session.append(Message.user(f"question {i}"))
        session.append(Message.assistant(f"answer {i}"))
    return session


def add_tool_round(session: Session, call_id: str) -> None:
    assistant = Message.assistant("", [ToolCall(id=call_id, name="echo", arguments={"text": "x"})])
    result = ToolResult(tool_call_id=call_id, tool_name="echo", success=True, data="x")
    session.append_tool_round(assistant, [Message.tool(result)])


class TestShouldCompress:
    def test_threshold(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a")), keep_recent=4, threshold=10)

        assert not compressor.should_compress(chat_session(5))
        assert compressor.should_compress(chat_session(6))

    def test_recommended_needs_something_to_summarize(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a")), keep_recent=4, threshold=100)

        assert not compressor.should_compress(chat_session(2), recommended=True)
        assert compressor.should_compress(chat_session(3), recommended=True)

    def test_keep_recent_must_be_positive(self):
        with pytest.raises(ValueError):
            MemoryCompressor(make_router(FakeProvider("a")), keep_recent=0)


class TestCompress:
    async def test_recent_messages_untouched(self):
        provider = FakeProvider("a", [text("They asked ten questions.")])
        compressor = MemoryCompressor(make_router(provider), keep_recent=4)
        session = chat_session(10)
        recent = session.messages[-4:]

        result = await compressor.compress(session)

        assert result.compressed
        assert result.summarized == 16
        assert len(session.messages) == 5
        assert all(a is b for a, b in zip(session.messages[-4:], recent))
        summary = session.messages[0]
        assert summary.role == Role.ASSISTANT
        assert summary.summary
        assert summary.content == f"{SUMMARY_PREFIX}\nThey asked ten questions."
        assert session.memory_summary == "They asked ten questions."

    async def test_cut_never_splits_tool_round(self):
        provider = FakeProvider("a", [text("summary")])
        compressor = MemoryCompressor(make_router(provider), keep_recent=3)
        session = chat_session(3)
        add_tool_round(session, "c1")
        session.append(Message.assistant("done"))
        session.append(Message.user("thanks"))
        # the naive cut (len - 3) lands on the tool result
        assert session.messages[len(session.messages) - 3].role == Role.TOOL

        await compressor.compress(session)

        assert pairing_violations(session.messages) == []
        assert session.messages[1].has_tool_calls
        assert [m.content for m in session.messages[-2:]] == ["done", "thanks"]

    async def test_protect_from_keeps_current_turn(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a", [text("summary")])), keep_recent=2)
        session = chat_session(6)
        protected = session.messages[5]

        await compressor.compress(session, protect_from=5)

        assert session.messages[1] is protected

    async def test_system_messages_stay_in_front(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a", [text("summary")])), keep_recent=2)
        session = chat_session(0)
        session.append(Message.system("persona"))
        for i in range(4):
            session.append(Message.user(f"q{i}"))

        await compressor.compress(session)

        assert session.messages[0].role == Role.SYSTEM
        assert session.messages[1].summary

    async def test_previous_summary_fed_into_prompt(self):
        provider = FakeProvider("a", [text("first summary"), text("second summary")])
        compressor = MemoryCompressor(make_router(provider), keep_recent=2)
        session = chat_session(4)

        await compressor.compress(session)
        session.append(Message.user("more"))
        session.append(Message.assistant("even more"))
        await compressor.compress(session)

        prompt = provider.calls[1]["messages"][0].content
        assert "first summary" in prompt
        assert sum(1 for m in session.messages if m.summary) == 1
        assert session.memory_summary == "second summary"

    async def test_summary_bounded(self):
        compressor = MemoryCompressor(
            make_router(FakeProvider("a", [text("z" * 500)])), keep_recent=2, summary_max_chars=100
        )
        session = chat_session(4)

        result = await compressor.compress(session)

        assert len(result.summary) <= 104
        assert len(session.memory_summary) <= 104

    async def test_provider_failure_keeps_state(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a", [ProviderAuthError("bad key")])), keep_recent=2)
        session = chat_session(4)
        before = list(session.messages)

        result = await compressor.compress(session)

        assert not result.compressed
        assert session.messages == before
        assert session.memory_summary == ""

    async def test_empty_summary_ignored(self):
        compressor = MemoryCompressor(make_router(FakeProvider("a", [text("  ")])), keep_recent=2)
        session = chat_session(4)

        result = await compressor.compress(session)

        assert not result.compressed
        assert len(session.messages) == 8

    async def test_nothing_to_summarize(self):
        provider = FakeProvider("a", [text("unused")])
        compressor = MemoryCompressor(make_router(provider), keep_recent=10)

        result = await compressor.compress(chat_session(2))

        assert not result.compressed
        assert provider.calls == []
