"""Tool invocation adapter and built-in tools."""

import json

import pytest

from conftest import call
from talon.ai.tool_runner import ABORTED, EXCEPTION, INVALID_ARGUMENTS, TIMEOUT, UNKNOWN_TOOL, ToolRunner
from talon.ai.tools.base import ToolContext
from talon.core.models import Message, Session, ToolCall


@pytest.fixture
def context() -> ToolContext:
    return ToolContext(session=Session(id="sess_tools", channel="console", sender_id="alice"))


def envelope(result) -> dict:
    return json.loads(Message.tool(result).content)


# =============================================================================
# Envelopes
# =============================================================================


class TestInvoke:
    async def test_success(self, tool_runner, context):
        result = await tool_runner.invoke(call("echo", text="ab", times=2), context)

        assert result.success
        assert result.data == "abab"
        assert result.tool_call_id == "call_1"
        assert result.duration_ms >= 0
        assert envelope(result) == {"ok": True, "data": "abab"}

    async def test_unknown_tool(self, tool_runner, context):
        result = await tool_runner.invoke(call("lookup", x="y"), context)

        assert not result.success
        assert result.error_code == UNKNOWN_TOOL
        assert envelope(result)["error"]["code"] == UNKNOWN_TOOL

    async def test_exception(self, tool_runner, context):
        result = await tool_runner.invoke(call("boom"), context)

        assert result.error_code == EXCEPTION
        assert "RuntimeError" in result.error_message
        assert "kaboom" in result.error_message

    async def test_timeout(self, tool_runner, context):
        result = await tool_runner.invoke(call("slow"), context)

        assert result.error_code == TIMEOUT
        assert "timed out" in result.error_message

    async def test_missing_required_argument(self, tool_runner, context):
        result = await tool_runner.invoke(call("echo"), context)

        assert result.error_code == INVALID_ARGUMENTS
        assert "text" in result.error_message

    async def test_wrong_type(self, tool_runner, context):
        result = await tool_runner.invoke(call("echo", text="a", times="2"), context)

        assert result.error_code == INVALID_ARGUMENTS

    async def test_bool_is_not_an_integer(self, tool_runner, context):
        result = await tool_runner.invoke(call("echo", text="a", times=True), context)

        assert result.error_code == INVALID_ARGUMENTS

    async def test_unexpected_argument(self, tool_runner, context):
        result = await tool_runner.invoke(call("echo", text="a", loud=True), context)

        assert result.error_code == INVALID_ARGUMENTS

    async def test_enum_checked(self, tool_runner, context):
        result = await tool_runner.invoke(call("scratchpad", action="explode"), context)

        assert result.error_code == INVALID_ARGUMENTS

    async def test_unparseable_arguments(self, tool_runner, context):
        broken = ToolCall(id="c1", name="echo", parse_error="invalid JSON (Expecting value)")

        result = await tool_runner.invoke(broken, context)

        assert result.error_code == INVALID_ARGUMENTS
        assert "invalid JSON" in result.error_message

    async def test_disabled_tool_is_unknown(self, registry, context):
        registry.enable_only(["clock"])
        runner = ToolRunner(registry)

        result = await runner.invoke(call("echo", text="a"), context)

        assert result.error_code == UNKNOWN_TOOL
        assert [s.name for s in runner.specs()] == ["clock"]

    def test_aborted(self):
        result = ToolRunner.aborted(call("echo", text="a"), "round abandoned")

        assert result.error_code == ABORTED
        assert not result.success


# =============================================================================
# Built-in tools
# =============================================================================


class TestScratchpad:
    async def test_tracks_progress(self, tool_runner, context):
        await tool_runner.invoke(call("scratchpad", action="add_visited", value="page-1"), context)
        await tool_runner.invoke(call("scratchpad", action="add_visited", value="page-1"), context)
        await tool_runner.invoke(call("scratchpad", action="add_pending", value="page-2"), context)
        await tool_runner.invoke(call("scratchpad", action="set_progress", data={"step": 2}), context)

        shown = await tool_runner.invoke(call("scratchpad", action="show"), context)

        assert shown.data["visited"] == ["page-1"]
        assert shown.data["pending"] == ["page-2"]
        assert shown.data["progress"] == {"step": 2}

    async def test_clear(self, tool_runner, context):
        await tool_runner.invoke(call("scratchpad", action="add_pending", value="x"), context)
        await tool_runner.invoke(call("scratchpad", action="clear"), context)

        assert context.session.scratchpad["pending"] == []

    async def test_missing_value_is_an_error(self, tool_runner, context):
        result = await tool_runner.invoke(call("scratchpad", action="add_visited"), context)

        assert result.error_code == EXCEPTION


class TestClock:
    async def test_utc_default(self, tool_runner, context):
        result = await tool_runner.invoke(call("clock"), context)

        assert result.success
        assert result.data["timezone"] == "UTC"
        assert result.data["iso"].endswith("+00:00")

    async def test_unknown_timezone(self, tool_runner, context):
        result = await tool_runner.invoke(call("clock", timezone="Mars/Olympus"), context)

        assert result.error_code == EXCEPTION
        assert "Unknown timezone" in result.error_message
