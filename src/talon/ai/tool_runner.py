"""Tool invocation adapter: every tool call ends in a normalized ToolResult."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from talon.ai.tools.base import ToolContext, ToolSpec
from talon.ai.tools.registry import ToolRegistry
from talon.core.models import ToolCall, ToolResult
from talon.errors import ToolUnknownError, ToolValidationError
from talon.log import get_logger

logger = get_logger(__name__)

UNKNOWN_TOOL = "UNKNOWN_TOOL"
INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
TIMEOUT = "TIMEOUT"
EXCEPTION = "EXCEPTION"
ABORTED = "ABORTED"

DEFAULT_TOOL_TIMEOUT = 30.0


class ToolRunner:
    """Looks tools up, runs them under a timeout and wraps the outcome.

    ``invoke`` never raises for anything a tool does: unknown names, bad
    arguments, timeouts and exceptions all come back as failed envelopes.
    """

    def __init__(self, registry: ToolRegistry, default_timeout: float = DEFAULT_TOOL_TIMEOUT):
        self._registry = registry
        self._default_timeout = default_timeout

    def specs(self) -> list[ToolSpec]:
        return self._registry.list()

    async def invoke(self, call: ToolCall, context: ToolContext) -> ToolResult:
        started = time.perf_counter()

        def _done(success: bool, data: Any = None, code: str | None = None, message: str | None = None) -> ToolResult:
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=success,
                data=data,
                error_code=code,
                error_message=message,
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
            )

        if call.parse_error:
            return _done(False, code=INVALID_ARGUMENTS, message=f"Could not parse arguments: {call.parse_error}")

        tool = self._registry.get(call.name)
        timeout = (tool.timeout if tool and tool.timeout else None) or self._default_timeout

        try:
            data = await asyncio.wait_for(
                self._registry.execute(call.name, dict(call.arguments), context),
                timeout=timeout,
            )
        except ToolUnknownError as e:
            logger.warning("tool_unknown", tool=call.name)
            return _done(False, code=UNKNOWN_TOOL, message=str(e))
        except ToolValidationError as e:
            logger.warning("tool_invalid_arguments", tool=call.name, error=str(e))
            return _done(False, code=INVALID_ARGUMENTS, message=str(e))
        except asyncio.TimeoutError:
            logger.warning("tool_timeout", tool=call.name, timeout=timeout)
            return _done(False, code=TIMEOUT, message=f"Tool '{call.name}' timed out after {timeout} seconds")
        except Exception as e:
            logger.error("tool_execution_error", tool=call.name, error=str(e))
            return _done(False, code=EXCEPTION, message=f"{type(e).__name__}: {e}")

        result = _done(True, data=data)
        logger.info("tool_executed", tool=call.name, duration_ms=result.duration_ms)
        return result

    @staticmethod
    def aborted(call: ToolCall, reason: str) -> ToolResult:
        """Envelope for a call that was never run because the round was abandoned."""
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=False,
            error_code=ABORTED,
            error_message=reason,
        )
