"""Scratchpad tool for tracking multi-step task state in the session."""

from __future__ import annotations

from typing import Any

from talon.ai.tools.base import Tool, ToolContext

ACTIONS = ["add_visited", "add_collected", "add_pending", "remove_pending", "set_progress", "clear", "show"]


def _empty() -> dict[str, Any]:
    return {"visited": [], "collected": [], "pending": [], "progress": {}}


class ScratchpadTool(Tool):
    """Reads and updates ``session.scratchpad``."""

    @property
    def name(self) -> str:
        return "scratchpad"

    @property
    def description(self) -> str:
        return (
            "Track progress of a multi-step task: items visited, results collected, "
            "pending work and free-form progress state. Use 'show' to read it back."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ACTIONS,
                    "description": "Action to perform on the scratchpad",
                },
                "value": {
                    "type": "string",
                    "description": "Item for add_visited, add_pending and remove_pending",
                },
                "data": {
                    "type": "object",
                    "description": "Result for add_collected, or state to merge for set_progress",
                },
            },
            "required": ["action"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        action = kwargs["action"]
        value = kwargs.get("value")
        data = kwargs.get("data")

        pad = context.session.scratchpad
        for key, default in _empty().items():
            pad.setdefault(key, default)

        match action:
            case "add_visited":
                if not value:
                    raise ValueError("value is required for add_visited")
                if value not in pad["visited"]:
                    pad["visited"].append(value)
                return {"visited": len(pad["visited"])}
            case "add_collected":
                if not data:
                    raise ValueError("data is required for add_collected")
                pad["collected"].append(data)
                return {"collected": len(pad["collected"])}
            case "add_pending":
                if not value:
                    raise ValueError("value is required for add_pending")
                if value not in pad["pending"]:
                    pad["pending"].append(value)
                return {"pending": list(pad["pending"])}
            case "remove_pending":
                if value in pad["pending"]:
                    pad["pending"].remove(value)
                return {"pending": list(pad["pending"])}
            case "set_progress":
                pad["progress"].update(data or {})
                return {"progress": dict(pad["progress"])}
            case "clear":
                pad.clear()
                pad.update(_empty())
                return {"cleared": True}
            case _:
                return dict(pad)
