"""Convert session messages and tool specs to provider wire formats."""

from __future__ import annotations

import json
from typing import Any

from talon.ai.tools.base import ToolSpec
from talon.core.models import Message
from talon.core.types import Role

CONTINUATION_PLACEHOLDER = "(Earlier conversation was summarized or trimmed.)"


def split_system(messages: list[Message], system: str = "") -> tuple[str, list[Message]]:
    """Fold system-role messages into the system prompt and return the rest."""
    parts = [system] if system else []
    parts += [m.content for m in messages if m.role == Role.SYSTEM and m.content]
    return "\n\n".join(parts), [m for m in messages if m.role != Role.SYSTEM]


def build_anthropic_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert messages into Anthropic Messages API format.

    Tool results become ``tool_result`` blocks inside a user message, and
    consecutive messages of the same role are merged into one content list,
    since the API expects user and assistant turns to alternate starting
    with the user.
    """
    out: list[dict[str, Any]] = []

    def _push(role: str, blocks: list[dict[str, Any]]) -> None:
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(blocks)
        else:
            out.append({"role": role, "content": blocks})

    for msg in messages:
        if msg.role == Role.SYSTEM:
            continue
        if msg.role == Role.TOOL:
            _push(
                "user",
                [{"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}],
            )
        elif msg.role == Role.ASSISTANT:
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            if blocks:
                _push("assistant", blocks)
        else:
            _push("user", [{"type": "text", "text": msg.content}])

    if out and out[0]["role"] != "user":
        out.insert(0, {"role": "user", "content": [{"type": "text", "text": CONTINUATION_PLACEHOLDER}]})
    return out


def build_openai_messages(messages: list[Message], system: str = "") -> list[dict[str, Any]]:
    """Convert messages into OpenAI chat-completions format."""
    out: list[dict[str, Any]] = []
    if system:
        out.append({"role": "system", "content": system})

    for msg in messages:
        if msg.role == Role.TOOL:
            out.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.has_tool_calls:
            out.append(
                {
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments, ensure_ascii=False),
                            },
                        }
                        for call in msg.tool_calls
                    ],
                }
            )
        else:
            out.append({"role": msg.role.value, "content": msg.content})
    return out


def anthropic_tools(specs: list[ToolSpec]) -> list[dict[str, Any]]:
    return [{"name": s.name, "description": s.description, "input_schema": s.input_schema} for s in specs]


def openai_tools(specs: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": s.name, "description": s.description, "parameters": s.input_schema},
        }
        for s in specs
    ]


def format_transcript(messages: list[Message], max_chars_per_message: int = 2000) -> str:
    """Render messages as plain text, e.g. for a summarization prompt."""
    lines: list[str] = []
    for msg in messages:
        role = msg.role.value.upper()
        content = msg.content
        if len(content) > max_chars_per_message:
            content = content[:max_chars_per_message] + " ... (truncated)"
        if msg.has_tool_calls:
            calls = ", ".join(f"{c.name}({json.dumps(c.arguments, ensure_ascii=False)})" for c in msg.tool_calls)
            prefix = f"{role}: {content} " if content else f"{role}: "
            lines.append(f"{prefix}[called: {calls}]")
        elif msg.role == Role.TOOL:
            lines.append(f"TOOL RESULT ({msg.tool_call_id}): {content}")
        else:
            lines.append(f"{role}: {content}")
    return "\n".join(lines)
