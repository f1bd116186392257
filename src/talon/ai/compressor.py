"""Memory compressor: folds old history into a bounded summary message."""

from __future__ import annotations

from dataclasses import dataclass

from talon.ai.conversation import format_transcript
from talon.ai.prompts import COMPRESSION_SYSTEM_PROMPT, SUMMARY_PREFIX, build_compression_prompt
from talon.ai.router import ProviderRouter
from talon.core.models import Message, RunState, Session
from talon.core.types import Role, TaskHint
from talon.errors import AllProvidersExhaustedError
from talon.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompressionResult:
    compressed: bool
    summarized: int = 0  # messages replaced by the summary
    summary: str = ""


class MemoryCompressor:
    """Replaces everything older than the most recent ``keep_recent`` messages
    with one synthetic assistant summary message.

    The cut point only ever moves towards older messages, so the recent window
    is never touched and an assistant tool-call message is never separated from
    its results.
    """

    def __init__(
        self,
        router: ProviderRouter,
        keep_recent: int = 10,
        threshold: int = 40,
        summary_max_tokens: int = 800,
        summary_max_chars: int = 4000,
    ):
        if keep_recent < 1:
            raise ValueError("keep_recent must be at least 1")
        self._router = router
        self.keep_recent = keep_recent
        self.threshold = threshold
        self.summary_max_tokens = summary_max_tokens
        self.summary_max_chars = summary_max_chars

    def should_compress(self, session: Session, recommended: bool = False) -> bool:
        if len(session.messages) <= self.keep_recent:
            return False
        return recommended or len(session.messages) > self.threshold

    def cut_index(self, messages: list[Message], protect_from: int | None = None) -> int:
        """Index of the first message that stays verbatim.

        Everything before it (except system messages) is summarized.
        """
        cut = len(messages) - self.keep_recent
        if protect_from is not None:
            cut = min(cut, protect_from)
        # Never start the kept window on a tool result: pull its assistant along
        while cut > 0 and messages[cut].role == Role.TOOL:
            cut -= 1
        return max(cut, 0)

    async def compress(
        self, session: Session, protect_from: int | None = None, run_state: RunState | None = None
    ) -> CompressionResult:
        cut = self.cut_index(session.messages, protect_from)
        block = [m for m in session.messages[:cut] if m.role != Role.SYSTEM]
        to_summarize = [m for m in block if not m.summary]
        if not to_summarize:
            return CompressionResult(compressed=False)

        prompt = build_compression_prompt(
            session.memory_summary, format_transcript(to_summarize), self.summary_max_tokens
        )
        try:
            routed = await self._router.chat(
                [Message.user(prompt)],
                system=COMPRESSION_SYSTEM_PROMPT,
                task=TaskHint.SUMMARIZE,
                max_tokens=self.summary_max_tokens,
                temperature=0.3,
                run_state=run_state,
            )
        except AllProvidersExhaustedError as e:
            logger.error("memory_compression_failed", session_id=session.id, error=str(e))
            return CompressionResult(compressed=False)

        summary = routed.completion.content.strip()
        if not summary:
            logger.warning("memory_compression_empty", session_id=session.id)
            return CompressionResult(compressed=False)
        if len(summary) > self.summary_max_chars:
            summary = summary[: self.summary_max_chars].rstrip() + " ..."

        head_system = [m for m in session.messages[:cut] if m.role == Role.SYSTEM]
        summary_msg = Message(role=Role.ASSISTANT, content=f"{SUMMARY_PREFIX}\n{summary}", summary=True)
        session.messages[:] = head_system + [summary_msg] + session.messages[cut:]
        session.memory_summary = summary
        session.touch()

        logger.info(
            "memory_compressed",
            session_id=session.id,
            summarized=len(block),
            route=routed.route.key,
            summary_chars=len(summary),
        )
        return CompressionResult(compressed=True, summarized=len(block), summary=summary)
