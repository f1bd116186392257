"""Current date/time tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from talon.ai.tools.base import Tool, ToolContext


class ClockTool(Tool):
    @property
    def name(self) -> str:
        return "clock"

    @property
    def description(self) -> str:
        return "Get the current date and time, optionally in a given IANA timezone (e.g. 'Europe/Berlin')."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone name (default: UTC)",
                },
            },
        }

    @property
    def timeout(self) -> float:
        return 2.0

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        tz_name = kwargs.get("timezone") or "UTC"
        if tz_name.upper() == "UTC":
            tz = timezone.utc
        else:
            try:
                tz = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {tz_name}") from None
        now = datetime.now(tz)
        return {
            "timezone": tz_name,
            "iso": now.isoformat(timespec="seconds"),
            "weekday": now.strftime("%A"),
        }
