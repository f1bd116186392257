"""Tool registry for discovering and managing available tools."""

from __future__ import annotations

from typing import Any

from talon.ai.tools.base import Tool, ToolContext, ToolSpec
from talon.errors import ToolUnknownError
from talon.log import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools.

    ``execute`` raises for unknown tools and lets tool exceptions through;
    ``ToolRunner`` turns both into result envelopes.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._enabled: list[str] | None = None

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        if self._enabled is not None and name not in self._enabled:
            return None
        return self._tools.get(name)

    def enable_only(self, names: list[str]) -> None:
        """Restrict the registry to *names*; unknown names are logged and ignored."""
        for n in names:
            if n not in self._tools:
                logger.warning("tool_not_found", tool_name=n)
        self._enabled = [n for n in names if n in self._tools]

    def get_tools_by_names(self, names: list[str]) -> list[Tool]:
        """Get a subset of tools by name list."""
        return [self._tools[n] for n in names if n in self._tools]

    def all_tools(self) -> list[Tool]:
        if self._enabled is None:
            return list(self._tools.values())
        return self.get_tools_by_names(self._enabled)

    def list(self) -> list[ToolSpec]:
        return [t.to_spec() for t in self.all_tools()]

    async def execute(self, name: str, arguments: dict[str, Any], context: ToolContext) -> Any:
        tool = self.get(name)
        if tool is None:
            raise ToolUnknownError(name)
        tool.validate(arguments)
        return await tool.execute(context, **arguments)

    def discover_and_register(self) -> None:
        """Import and register all built-in tools."""
        from talon.ai.tools.clock import ClockTool
        from talon.ai.tools.scratchpad import ScratchpadTool

        self.register(ScratchpadTool())
        self.register(ClockTool())
