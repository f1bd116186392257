"""Agent loop: one inbound message in, one final response (or error) out.

States per turn: idle -> thinking -> executing_tools -> thinking ... ->
evaluating -> responding -> idle, with ``failed`` as the terminal state for
unrecoverable errors. The session is persisted after every completed step.
"""

from __future__ import annotations

import asyncio
import json

import structlog

from talon.ai.budget import ContextBudgeter
from talon.ai.client import Completion
from talon.ai.compressor import MemoryCompressor
from talon.ai.prompts import EMPTY_RESPONSE_MESSAGE, SHUTDOWN_MESSAGE, iteration_limit_message
from talon.ai.router import ProviderRouter
from talon.ai.tool_runner import ToolRunner
from talon.ai.tools.base import ToolContext
from talon.core import events
from talon.core.events import EventBus
from talon.core.models import ErrorResponse, FinalResponse, Message, RunState, Session, ToolResult
from talon.core.session import SessionLocks
from talon.core.types import ErrorCategory, LoopState
from talon.errors import (
    AllProvidersExhaustedError,
    ContextOverflowError,
    MaxIterationsExceededError,
    SessionNotFoundError,
    SessionStoreError,
    TalonError,
    ToolExecutionError,
)
from talon.log import get_logger
from talon.storage.session_store import SessionStore

logger = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 10
TOOL_SUMMARY_CHARS = 2000

_USER_MESSAGES = {
    ErrorCategory.AUTH: "None of my model providers accepted the configured credentials.",
    ErrorCategory.BILLING: "My model providers refused the request for billing or quota reasons.",
    ErrorCategory.RATE_LIMIT: "My model providers are rate limiting me right now.",
    ErrorCategory.TIMEOUT: "My model providers did not answer in time.",
    ErrorCategory.NETWORK: "I could not reach any of my model providers.",
    ErrorCategory.UNKNOWN: "Something went wrong while I was working on that.",
    ErrorCategory.UNAVAILABLE: "I am shutting down and cannot take new requests.",
}


class AgentLoop:
    """Per-turn state machine orchestrating provider calls and tool execution.

    Collaborators are passed in explicitly. Turns for the same session are
    serialized with a per-session lock; turns for different sessions run
    concurrently.
    """

    def __init__(
        self,
        router: ProviderRouter,
        tool_runner: ToolRunner,
        store: SessionStore,
        event_bus: EventBus,
        *,
        budgeter: ContextBudgeter | None = None,
        compressor: MemoryCompressor | None = None,
        system_prompt: str = "",
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_output_tokens: int = 4096,
        temperature: float = 0.7,
        reserved_output_tokens: int = 4096,
        locks: SessionLocks | None = None,
    ):
        self._router = router
        self._tool_runner = tool_runner
        self._store = store
        self._events = event_bus
        self._budgeter = budgeter or ContextBudgeter()
        self._compressor = compressor
        self._system_prompt = system_prompt
        self._max_iterations = max_iterations
        self._max_output_tokens = max_output_tokens
        self._temperature = temperature
        self._reserved_output_tokens = reserved_output_tokens
        self._locks = locks or SessionLocks()
        self._closing = False
        self._active = 0
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def active_turns(self) -> int:
        return self._active

    @property
    def closing(self) -> bool:
        return self._closing

    async def handle_inbound_message(self, session_id: str, text: str) -> FinalResponse | ErrorResponse:
        """Run one turn for *session_id* and return its outcome."""
        if self._closing:
            return self._unavailable(session_id)

        self._active += 1
        self._drained.clear()
        try:
            async with self._locks.hold(session_id):
                if self._closing:
                    return self._unavailable(session_id)
                with structlog.contextvars.bound_contextvars(session_id=session_id):
                    return await self._turn(session_id, text)
        finally:
            self._active -= 1
            if self._active == 0:
                self._drained.set()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Refuse new turns and wait for in-flight ones to reach a safe stop."""
        self._closing = True
        logger.info("agent_loop_draining", active_turns=self._active)
        await asyncio.wait_for(self._drained.wait(), timeout=timeout)
        logger.info("agent_loop_stopped")

    # --- Turn ------------------------------------------------------------

    async def _turn(self, session_id: str, text: str) -> FinalResponse | ErrorResponse:
        run = RunState()
        try:
            session = await self._store.load(session_id)
        except SessionStoreError as e:
            logger.error("session_load_failed", error=str(e))
            run.last_error = e
            run.transition(LoopState.FAILED)
            await self._events.emit(events.TURN_FAILED, session_id, category=ErrorCategory.UNKNOWN.value, error=str(e))
            return ErrorResponse(
                session_id=session_id,
                category=ErrorCategory.UNKNOWN,
                message=_USER_MESSAGES[ErrorCategory.UNKNOWN],
                recoverable=not isinstance(e, SessionNotFoundError),
                error_code=e.code,
            )

        logger.info("turn_started", channel=session.channel, text_length=len(text))
        await self._events.emit(events.TURN_STARTED, session.id, channel=session.channel, sender_id=session.sender_id)

        turn_message = Message.user(text)
        session.append(turn_message)
        try:
            await self._store.save(session)
            return await self._run(session, turn_message, run)
        except AllProvidersExhaustedError as e:
            return await self._fail(session, run, e, e.category, e.recoverable)
        except ToolExecutionError as e:
            return await self._fail(session, run, e, ErrorCategory.UNKNOWN, True)
        except (ContextOverflowError, SessionStoreError) as e:
            return await self._fail(session, run, e, ErrorCategory.UNKNOWN, False)

    async def _run(self, session: Session, turn_message: Message, run: RunState) -> FinalResponse:
        tools = self._tool_runner.specs() or None

        while True:
            if run.iteration >= self._max_iterations:
                error = MaxIterationsExceededError(self._max_iterations)
                run.last_error = error
                logger.warning("max_iterations_reached", max_iterations=self._max_iterations)
                text = iteration_limit_message(self._max_iterations, self._summarize_tool_results(run))
                return await self._respond(session, run, text, truncated=True)

            if self._closing:
                logger.info("turn_interrupted", reason="shutdown", iteration=run.iteration)
                return await self._respond(session, run, SHUTDOWN_MESSAGE, truncated=True)

            run.transition(LoopState.THINKING)
            await self._maybe_compress(session, turn_message, run)

            window = self._router.context_window(needs_tools=bool(tools))
            if window == 0:
                raise AllProvidersExhaustedError([], "No provider routes are configured")
            budget = window - self._reserved_output_tokens
            fitted = self._budgeter.fit(session.messages, budget, system_prompt=self._system_prompt)
            if fitted.compression_recommended and await self._maybe_compress(
                session, turn_message, run, recommended=True
            ):
                fitted = self._budgeter.fit(session.messages, budget, system_prompt=self._system_prompt)

            logger.info(
                "agent_iteration",
                iteration=run.iteration,
                messages=len(fitted.messages),
                estimated_tokens=fitted.estimated_tokens,
            )
            routed = await self._router.chat(
                fitted.messages,
                tools,
                system=self._system_prompt,
                max_tokens=self._max_output_tokens,
                temperature=self._temperature,
                run_state=run,
            )
            if len(routed.attempts) > 1:
                await self._events.emit(
                    events.PROVIDER_FALLBACK,
                    session.id,
                    route=routed.route.key,
                    failed=[a.route.key for a in routed.attempts if not a.success],
                )

            completion = routed.completion
            if completion.tool_calls:
                run.iteration += 1
                run.transition(LoopState.EXECUTING_TOOLS)
                await self._execute_tools(session, completion, run)
                await self._store.save(session)
                continue

            run.transition(LoopState.EVALUATING)
            text = completion.content.strip()
            if not text and run.tool_results:
                logger.warning("empty_final_response", tool_results=len(run.tool_results))
                text = self._summarize_tool_results(run)
            return await self._respond(session, run, text or EMPTY_RESPONSE_MESSAGE)

    async def _execute_tools(self, session: Session, completion: Completion, run: RunState) -> None:
        """Run the requested calls in order and append them as one round."""
        assistant = Message.assistant(completion.content, completion.tool_calls)
        context = ToolContext(session=session)
        results: list[ToolResult] = []

        for index, call in enumerate(completion.tool_calls):
            try:
                result = await self._tool_runner.invoke(call, context)
            except Exception as e:
                logger.error("tool_invocation_crashed", tool=call.name, error=str(e))
                results += [
                    ToolRunner.aborted(c, f"Not run: tool invocation failed ({e})")
                    for c in completion.tool_calls[index:]
                ]
                session.append_tool_round(assistant, [Message.tool(r) for r in results])
                raise ToolExecutionError(call.name, str(e)) from e

            results.append(result)
            run.tool_results.append(result)
            await self._events.emit(
                events.TOOL_INVOKED,
                session.id,
                tool=call.name,
                tool_call_id=call.id,
                success=result.success,
                error_code=result.error_code,
                duration_ms=result.duration_ms,
            )

        session.append_tool_round(assistant, [Message.tool(r) for r in results])

    async def _maybe_compress(
        self, session: Session, turn_message: Message, run: RunState, recommended: bool = False
    ) -> bool:
        if self._compressor is None or run.compression_attempted:
            return False
        if not self._compressor.should_compress(session, recommended):
            return False

        run.compression_attempted = True
        protect_from = next(i for i, m in enumerate(session.messages) if m is turn_message)
        result = await self._compressor.compress(session, protect_from=protect_from, run_state=run)
        if result.compressed:
            await self._store.save(session)
            await self._events.emit(events.MEMORY_COMPRESSED, session.id, summarized=result.summarized)
        return result.compressed

    async def _respond(self, session: Session, run: RunState, text: str, truncated: bool = False) -> FinalResponse:
        run.transition(LoopState.RESPONDING)
        session.append(Message.assistant(text))
        await self._store.save(session)

        logger.info(
            "turn_completed",
            iterations=run.iteration,
            served_by=run.served_by,
            input_tokens=run.usage.input_tokens,
            output_tokens=run.usage.output_tokens,
            truncated=truncated,
        )
        await self._events.emit(
            events.TURN_COMPLETED,
            session.id,
            text=text,
            iterations=run.iteration,
            served_by=list(run.served_by),
            truncated=truncated,
        )
        run.transition(LoopState.IDLE)
        return FinalResponse(
            session_id=session.id,
            text=text,
            iterations=run.iteration,
            usage=run.usage,
            served_by=tuple(run.served_by),
            truncated=truncated,
            states=tuple(run.history),
        )

    async def _fail(
        self, session: Session, run: RunState, error: TalonError, category: ErrorCategory, recoverable: bool
    ) -> ErrorResponse:
        run.last_error = error
        run.transition(LoopState.FAILED)
        logger.error("turn_failed", category=category.value, error=str(error), error_code=error.code)
        try:
            await self._store.save(session)
        except SessionStoreError as e:
            logger.error("session_save_failed", error=str(e))
        await self._events.emit(
            events.TURN_FAILED, session.id, category=category.value, error=str(error), recoverable=recoverable
        )
        return ErrorResponse(
            session_id=session.id,
            category=category,
            message=_USER_MESSAGES[category],
            recoverable=recoverable,
            error_code=error.code,
            states=tuple(run.history),
        )

    def _unavailable(self, session_id: str) -> ErrorResponse:
        return ErrorResponse(
            session_id=session_id,
            category=ErrorCategory.UNAVAILABLE,
            message=_USER_MESSAGES[ErrorCategory.UNAVAILABLE],
            recoverable=True,
            error_code="SHUTTING_DOWN",
        )

    @staticmethod
    def _summarize_tool_results(run: RunState) -> str:
        parts: list[str] = []
        for r in run.tool_results[-5:]:
            if r.success:
                body = r.data if isinstance(r.data, str) else json.dumps(r.data, ensure_ascii=False, default=str)
                parts.append(f"**{r.tool_name}:**\n{body[:TOOL_SUMMARY_CHARS]}")
            else:
                parts.append(f"**{r.tool_name}:** failed ({r.error_code}): {r.error_message}")
        return "\n\n".join(parts)
