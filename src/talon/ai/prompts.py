"""Prompt text used by the runtime itself."""

from __future__ import annotations

SUMMARY_PREFIX = "[Conversation summary]"

COMPRESSION_SYSTEM_PROMPT = "You are a memory compression agent. Return ONLY the updated summary."


def build_compression_prompt(old_summary: str, transcript: str, max_tokens: int) -> str:
    return f"""Update the memory summary of a conversation between a user and their assistant.

## Current Memory Summary
{old_summary or "(empty, this is the first compression)"}

## New Messages to Incorporate
{transcript}

## Instructions
Write an updated memory summary that:
1. Preserves important facts, decisions and user preferences
2. Merges the new messages into the existing summary
3. Drops information that has been superseded
4. Stays under {max_tokens} tokens
5. Uses these sections:

User Profile:
- Key facts about the user

Current Task:
- What the user is working on

Decisions Made:
- Choices and their rationale

Important Facts:
- Technical details, preferences, constraints"""


def iteration_limit_message(limit: int, tool_summary: str = "") -> str:
    text = (
        f"I stopped after {limit} rounds of tool calls without reaching a final answer. "
        "Here is what I have so far; tell me if you want me to continue."
    )
    if tool_summary:
        return f"{tool_summary}\n\n---\n{text}"
    return text


SHUTDOWN_MESSAGE = "I had to stop this task because the assistant is shutting down. Ask me again to pick it up."

EMPTY_RESPONSE_MESSAGE = "(The model returned an empty response.)"
