"""Shared fixtures: scripted providers, test tools and a loop factory."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from talon.ai.budget import CharRatioEstimator, ContextBudgeter
from talon.ai.client import Completion, Provider
from talon.ai.compressor import MemoryCompressor
from talon.ai.loop import AgentLoop
from talon.ai.router import ProviderRoute, ProviderRouter
from talon.ai.tool_runner import ToolRunner
from talon.ai.tools.base import Tool, ToolContext
from talon.ai.tools.registry import ToolRegistry
from talon.core.events import Event, EventBus
from talon.core.models import ToolCall, Usage
from talon.storage.session_store import InMemorySessionStore


# =============================================================================
# Scripted provider
# =============================================================================


def text(content: str, input_tokens: int = 10, output_tokens: int = 5) -> Completion:
    return Completion(content=content, usage=Usage(input_tokens, output_tokens), stop_reason="end_turn")


def calls(*tool_calls: ToolCall, content: str = "") -> Completion:
    return Completion(content=content, tool_calls=list(tool_calls), usage=Usage(10, 5), stop_reason="tool_use")


def call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


class FakeProvider(Provider):
    """Plays back a script of completions, exceptions or async callables.

    With ``repeat=True`` the last step is replayed forever.
    """

    def __init__(self, provider_id: str = "fake", script: list[Any] | None = None, repeat: bool = False):
        super().__init__(provider_id)
        self.script = list(script or [])
        self.repeat = repeat
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, tools=None, *, model, system="", max_tokens=4096, temperature=0.7):
        self.calls.append(
            {"messages": list(messages), "tools": tools, "model": model, "system": system, "max_tokens": max_tokens}
        )
        if not self.script:
            raise AssertionError(f"{self.provider_id}: script exhausted")
        step = self.script[0] if self.repeat and len(self.script) == 1 else self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step()
        return step


def route(provider_id: str, model: str = "m", priority: int = 0, **kwargs: Any) -> ProviderRoute:
    return ProviderRoute(provider_id=provider_id, model=model, priority=priority, **kwargs)


def make_router(*providers: FakeProvider, route_kwargs: dict | None = None, **kwargs: Any) -> ProviderRouter:
    """One route per provider, in the given order."""
    routes = [route(p.provider_id, priority=i, **(route_kwargs or {})) for i, p in enumerate(providers)]
    kwargs.setdefault("retry_backoff", 0)
    return ProviderRouter(routes, {p.provider_id: p for p in providers}, **kwargs)


# =============================================================================
# Test tools
# =============================================================================


class EchoTool(Tool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the given text back."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}, "times": {"type": "integer"}},
            "required": ["text"],
            "additionalProperties": False,
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        return kwargs["text"] * kwargs.get("times", 1)


class BoomTool(Tool):
    @property
    def name(self) -> str:
        return "boom"

    @property
    def description(self) -> str:
        return "Always fails."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        raise RuntimeError("kaboom")


class SlowTool(Tool):
    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps for a long time."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def timeout(self) -> float:
        return 0.05

    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        await asyncio.sleep(5)
        return "done"


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.discover_and_register()
    for tool in (EchoTool(), BoomTool(), SlowTool()):
        reg.register(tool)
    return reg


@pytest.fixture
def tool_runner(registry: ToolRegistry) -> ToolRunner:
    return ToolRunner(registry, default_timeout=1.0)


# =============================================================================
# Events and loop factory
# =============================================================================


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Event] = []

    async def __call__(self, event: Event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def event_bus(recorder: EventRecorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest.fixture
def make_loop(
    store: InMemorySessionStore, event_bus: EventBus, tool_runner: ToolRunner
) -> Callable[..., AgentLoop]:
    def _make(
        *providers: FakeProvider,
        compressor: bool = False,
        router_kwargs: dict | None = None,
        compressor_kwargs: dict | None = None,
        **kwargs: Any,
    ):
        router = make_router(*providers, **(router_kwargs or {}))
        if compressor:
            options = {"keep_recent": 4, "threshold": 8, **(compressor_kwargs or {})}
            kwargs.setdefault("compressor", MemoryCompressor(router, **options))
        kwargs.setdefault("budgeter", ContextBudgeter(CharRatioEstimator(3.0)))
        kwargs.setdefault("system_prompt", "You are a test assistant.")
        kwargs.setdefault("reserved_output_tokens", 1000)
        return AgentLoop(router, tool_runner, store, event_bus, **kwargs)

    return _make
