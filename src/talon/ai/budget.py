"""
Context window budget management.

Estimates the token cost of a message list and trims it to fit a provider's
context window. Trimming works on *units*: a plain message is a unit, and an
assistant message with tool calls together with its tool results is one unit.
Units are kept or dropped whole so a provider never sees an orphaned tool call
or tool result.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Protocol

from talon.core.models import Message, pairing_violations
from talon.core.types import Role
from talon.errors import ContextOverflowError
from talon.log import get_logger

logger = get_logger(__name__)

# ~3 chars/token is conservative for code, JSON and non-English text.
CHARS_PER_TOKEN = 3.0
MESSAGE_OVERHEAD_TOKENS = 4


class TokenEstimator(Protocol):
    def count(self, text: str) -> int: ...


class CharRatioEstimator:
    """Character-count heuristic. Monotonic: more text never costs fewer tokens."""

    def __init__(self, chars_per_token: float = CHARS_PER_TOKEN):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


@dataclass(frozen=True)
class BudgetResult:
    messages: list[Message]
    estimated_tokens: int
    budget: int
    dropped: int
    compression_recommended: bool

    @property
    def over_budget(self) -> bool:
        return self.estimated_tokens > self.budget


class ContextBudgeter:
    def __init__(self, estimator: TokenEstimator | None = None):
        self._estimator = estimator or CharRatioEstimator()

    def estimate_text(self, text: str) -> int:
        return self._estimator.count(text)

    def estimate_message(self, message: Message) -> int:
        tokens = MESSAGE_OVERHEAD_TOKENS + self._estimator.count(message.content)
        for call in message.tool_calls:
            tokens += self._estimator.count(call.name)
            tokens += self._estimator.count(json.dumps(call.arguments, ensure_ascii=False, default=str))
        return tokens

    def estimate_messages(self, messages: list[Message]) -> int:
        return sum(self.estimate_message(m) for m in messages)

    def fit(self, messages: list[Message], budget: int, system_prompt: str = "") -> BudgetResult:
        """Return the newest contiguous suffix of *messages* that fits *budget*.

        System messages (and *system_prompt*, which is sent separately) always
        count and are always kept. The newest unit is kept even when it alone
        exceeds the budget; the result then reports ``compression_recommended``.
        """
        if budget <= 0:
            raise ContextOverflowError(f"Context budget must be positive, got {budget}")

        system_msgs = [m for m in messages if m.role == Role.SYSTEM]
        units = self._units([m for m in messages if m.role != Role.SYSTEM])

        fixed = self.estimate_text(system_prompt) + self.estimate_messages(system_msgs)
        remaining = budget - fixed

        kept: list[list[Message]] = []
        used = 0
        for unit in reversed(units):
            cost = self.estimate_messages(unit)
            if kept and used + cost > remaining:
                break
            kept.append(unit)
            used += cost
        kept.reverse()

        trimmed = system_msgs + [m for unit in kept for m in unit]
        total = fixed + used
        dropped = len(messages) - len(trimmed)
        recommended = dropped > 0 or total > budget

        if recommended:
            logger.info(
                "context_trimmed",
                budget=budget,
                estimated_tokens=total,
                kept=len(trimmed),
                dropped=dropped,
            )
        return BudgetResult(
            messages=trimmed,
            estimated_tokens=total,
            budget=budget,
            dropped=dropped,
            compression_recommended=recommended,
        )

    @staticmethod
    def _units(messages: list[Message]) -> list[list[Message]]:
        """Group messages into keep-or-drop units, discarding broken tool pairs."""
        units: list[list[Message]] = []
        i = 0
        while i < len(messages):
            msg = messages[i]
            if msg.has_tool_calls:
                j = i + 1
                while j < len(messages) and messages[j].role == Role.TOOL:
                    j += 1
                unit = messages[i:j]
                if pairing_violations(unit):
                    logger.warning("context_unit_dropped", reason="unanswered_tool_calls", index=i)
                else:
                    units.append(unit)
                i = j
                continue
            if msg.role == Role.TOOL:
                logger.warning("context_unit_dropped", reason="orphan_tool_result", index=i)
            else:
                units.append([msg])
            i += 1
        return units
