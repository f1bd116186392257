"""Provider router: static route table, failure classification and fallback."""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from talon.ai.client import Completion, Provider
from talon.ai.tools.base import ToolSpec
from talon.config import AppConfig
from talon.core.models import Message, RunState
from talon.core.types import ErrorCategory, TaskHint
from talon.errors import AllProvidersExhaustedError, ProviderTimeoutError, to_provider_error
from talon.log import get_logger

logger = get_logger(__name__)

# Failures that may succeed if the same route is tried again shortly
RETRYABLE = frozenset({ErrorCategory.RATE_LIMIT, ErrorCategory.TIMEOUT})
# Failures that rule a route out for the rest of the turn
EXCLUDING = frozenset({ErrorCategory.AUTH, ErrorCategory.BILLING})


@dataclass(frozen=True, slots=True)
class ProviderRoute:
    provider_id: str
    model: str
    priority: int
    cost_rank: int = 0
    supports_tools: bool = True
    context_window: int = 128_000
    timeout: float = 60.0

    @property
    def key(self) -> str:
        return f"{self.provider_id}/{self.model}"


@dataclass(frozen=True, slots=True)
class ProviderAttempt:
    route: ProviderRoute
    success: bool
    category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    latency_ms: float = 0.0


@dataclass
class RoutedCompletion:
    completion: Completion
    route: ProviderRoute
    attempts: list[ProviderAttempt] = field(default_factory=list)


class ProviderRouter:
    """Runs a chat call against the first route that succeeds.

    Route order is the configured priority; it never depends on load. Auth and
    billing failures are not retried on the same route and, when a RunState is
    given, exclude that route for the rest of the turn. Rate-limit and timeout
    failures are retried on the same route with exponential backoff.
    """

    def __init__(
        self,
        routes: list[ProviderRoute],
        providers: dict[str, Provider],
        retry_backoff: float = 1.0,
        same_route_retries: int = 1,
    ):
        missing = sorted({r.provider_id for r in routes} - set(providers))
        if missing:
            raise ValueError(f"Routes reference unknown providers: {', '.join(missing)}")
        self._routes = tuple(sorted(routes, key=lambda r: r.priority))
        self._providers = dict(providers)
        self._retry_backoff = retry_backoff
        self._same_route_retries = same_route_retries
        self.served: Counter[str] = Counter()
        self.tokens: Counter[str] = Counter()

    @property
    def routes(self) -> tuple[ProviderRoute, ...]:
        return self._routes

    def eligible_routes(
        self, task: TaskHint = TaskHint.DEFAULT, needs_tools: bool = False
    ) -> list[ProviderRoute]:
        routes = [r for r in self._routes if r.supports_tools or not needs_tools]
        if task in (TaskHint.SIMPLE, TaskHint.SUMMARIZE):
            routes.sort(key=lambda r: (r.cost_rank, r.priority))
        return routes

    def context_window(self, task: TaskHint = TaskHint.DEFAULT, needs_tools: bool = False) -> int:
        """Smallest context window any eligible route may serve with."""
        routes = self.eligible_routes(task, needs_tools)
        if not routes:
            return 0
        return min(r.context_window for r in routes)

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        *,
        system: str = "",
        task: TaskHint = TaskHint.DEFAULT,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        run_state: RunState | None = None,
    ) -> RoutedCompletion:
        attempts: list[ProviderAttempt] = []
        skipped: list[ProviderAttempt] = []
        excluded = run_state.excluded_routes if run_state is not None else {}

        for route in self.eligible_routes(task, needs_tools=bool(tools)):
            if route.key in excluded:
                logger.debug("route_skipped", route=route.key, reason="excluded_this_turn")
                skipped.append(
                    ProviderAttempt(
                        route=route, success=False, category=excluded[route.key], error="excluded earlier this turn"
                    )
                )
                continue

            provider = self._providers[route.provider_id]
            retries_left = self._same_route_retries
            delay = self._retry_backoff

            while True:
                started = time.perf_counter()
                try:
                    completion = await asyncio.wait_for(
                        provider.chat(
                            messages,
                            tools,
                            model=route.model,
                            system=system,
                            max_tokens=max_tokens,
                            temperature=temperature,
                        ),
                        timeout=route.timeout,
                    )
                except asyncio.TimeoutError:
                    error = ProviderTimeoutError(
                        f"{route.key} timed out after {route.timeout}s", provider_id=route.provider_id
                    )
                except Exception as e:
                    error = to_provider_error(e, route.provider_id)
                else:
                    latency = (time.perf_counter() - started) * 1000
                    attempts.append(ProviderAttempt(route=route, success=True, latency_ms=latency))
                    self._record(route, completion, run_state)
                    if len(attempts) > 1:
                        logger.info("fallback_succeeded", route=route.key, attempts=len(attempts))
                    return RoutedCompletion(completion=completion, route=route, attempts=attempts)

                latency = (time.perf_counter() - started) * 1000
                category = error.category
                attempts.append(
                    ProviderAttempt(route=route, success=False, category=category, error=str(error), latency_ms=latency)
                )
                if run_state is not None:
                    run_state.last_error = error
                logger.warning(
                    "provider_attempt_failed",
                    route=route.key,
                    category=category.value,
                    error=str(error),
                )

                if category in EXCLUDING:
                    excluded[route.key] = category
                    break
                if category in RETRYABLE and retries_left > 0:
                    retries_left -= 1
                    logger.info("provider_retry", route=route.key, delay=delay)
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue
                break

        # skipped routes count as failures of their recorded category
        raise AllProvidersExhaustedError(skipped + attempts)

    def _record(self, route: ProviderRoute, completion: Completion, run_state: RunState | None) -> None:
        self.served[route.key] += 1
        self.tokens[route.key] += completion.usage.total_tokens
        if run_state is not None:
            run_state.served_by.append(route.key)
            run_state.usage.add(completion.usage)


def build_routes(config: AppConfig) -> list[ProviderRoute]:
    """Flatten configured providers and models into a priority-ordered route list.

    Providers without usable credentials are skipped. Models without an explicit
    priority keep their declaration order.
    """
    routes: list[ProviderRoute] = []
    order = 0
    for provider in config.providers:
        if not provider.has_credentials:
            logger.info("provider_skipped", provider=provider.id, reason="no_api_key")
            continue
        for model in provider.models:
            routes.append(
                ProviderRoute(
                    provider_id=provider.id,
                    model=model.name,
                    priority=model.priority if model.priority is not None else order,
                    cost_rank=model.cost_rank,
                    supports_tools=model.supports_tools,
                    context_window=model.context_window,
                    timeout=provider.timeout,
                )
            )
            order += 1
    if not routes:
        logger.warning("no_provider_routes", hint="Configure at least one provider with an api_key")
    return sorted(routes, key=lambda r: r.priority)
