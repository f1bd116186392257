"""Conversation data model: sessions, messages, tool calls and tool results."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from talon.core.types import ErrorCategory, LoopState, Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    parse_error: Optional[str] = None  # set when the provider sent unparseable arguments


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Normalized outcome of one tool call."""

    tool_call_id: str
    tool_name: str
    success: bool
    data: Any = None
    error_code: Optional[str] = None  # "UNKNOWN_TOOL" | "INVALID_ARGUMENTS" | "TIMEOUT" | "EXCEPTION" | ...
    error_message: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)

    def to_content(self) -> str:
        """Serialize the envelope into the text content of a tool message."""
        if self.success:
            payload: dict[str, Any] = {"ok": True, "data": self.data}
        else:
            payload = {
                "ok": False,
                "error": {"code": self.error_code, "message": self.error_message},
            }
        return json.dumps(payload, ensure_ascii=False, default=str)


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    summary: bool = False  # synthetic memory-compression message
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: tuple[ToolCall, ...] | list[ToolCall] = ()) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, result: ToolResult) -> Message:
        return cls(role=Role.TOOL, content=result.to_content(), tool_call_id=result.tool_call_id)

    @property
    def has_tool_calls(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)


def pairing_violations(messages: list[Message]) -> list[str]:
    """Return human-readable descriptions of every pairing-invariant violation.

    An assistant message with tool calls must be immediately followed by exactly
    one tool message per call id, and tool messages may appear nowhere else.
    """
    problems: list[str] = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        if msg.has_tool_calls:
            expected = [c.id for c in msg.tool_calls]
            j = i + 1
            seen: list[str] = []
            while j < len(messages) and messages[j].role == Role.TOOL:
                seen.append(messages[j].tool_call_id or "")
                j += 1
            if sorted(seen) != sorted(expected):
                problems.append(f"message {i}: tool calls {expected} answered by {seen}")
            i = j
            continue
        if msg.role == Role.TOOL:
            problems.append(f"message {i}: orphan tool result {msg.tool_call_id}")
        i += 1
    return problems


@dataclass
class Session:
    """One conversation. Owned by the session store, mutated by one turn at a time."""

    id: str
    channel: str
    sender_id: str
    messages: list[Message] = field(default_factory=list)
    memory_summary: str = ""
    scratchpad: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new_id() -> str:
        return f"sess_{uuid.uuid4().hex[:12]}"

    def append(self, message: Message) -> None:
        if message.has_tool_calls or message.role == Role.TOOL:
            raise ValueError("Tool calls and results must be appended with append_tool_round()")
        self.messages.append(message)
        self.touch()

    def append_tool_round(self, assistant: Message, results: list[Message]) -> None:
        """Append an assistant tool-call message together with its results."""
        expected = sorted(c.id for c in assistant.tool_calls)
        answered = sorted(r.tool_call_id or "" for r in results)
        if not assistant.has_tool_calls or expected != answered:
            raise ValueError(f"Tool round mismatch: calls {expected}, results {answered}")
        self.messages.append(assistant)
        self.messages.extend(results)
        self.touch()

    def touch(self) -> None:
        self.last_active_at = utcnow()


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: Usage) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


@dataclass
class RunState:
    """Transient per-turn state. Never persisted."""

    iteration: int = 0
    usage: Usage = field(default_factory=Usage)
    last_error: Optional[BaseException] = None
    state: LoopState = LoopState.IDLE
    history: list[LoopState] = field(default_factory=list)
    excluded_routes: dict[str, ErrorCategory] = field(default_factory=dict)  # route key -> failure category
    served_by: list[str] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    compression_attempted: bool = False

    def transition(self, state: LoopState) -> None:
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class FinalResponse:
    session_id: str
    text: str
    iterations: int = 0
    usage: Usage = field(default_factory=Usage)
    served_by: tuple[str, ...] = ()
    truncated: bool = False  # loop was cut off by the iteration guard or shutdown
    states: tuple[LoopState, ...] = ()


@dataclass(frozen=True)
class ErrorResponse:
    session_id: str
    category: ErrorCategory
    message: str
    recoverable: bool
    error_code: str = ""
    states: tuple[LoopState, ...] = ()
