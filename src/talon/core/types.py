"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class LoopState(StrEnum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING_TOOLS = "executing_tools"
    EVALUATING = "evaluating"
    RESPONDING = "responding"
    FAILED = "failed"


class ErrorCategory(StrEnum):
    AUTH = "auth"
    BILLING = "billing"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    UNKNOWN = "unknown"
    UNAVAILABLE = "unavailable"


class TaskHint(StrEnum):
    """Routing hint passed to the provider router."""

    DEFAULT = "default"
    SIMPLE = "simple"
    SUMMARIZE = "summarize"
