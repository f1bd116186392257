"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from talon.ai.budget import CharRatioEstimator, ContextBudgeter
from talon.ai.client import Provider, create_provider
from talon.ai.compressor import MemoryCompressor
from talon.ai.handler import MessageHandler
from talon.ai.loop import AgentLoop
from talon.ai.router import ProviderRouter, build_routes
from talon.ai.tool_runner import ToolRunner
from talon.ai.tools.registry import ToolRegistry
from talon.config import AppConfig
from talon.core.channel_registry import ChannelRegistry
from talon.core.events import EventBus
from talon.core.session import SessionManager
from talon.log import get_logger
from talon.messenger.base import MessengerAdapter
from talon.storage.database import Database
from talon.storage.session_store import InMemorySessionStore, SessionStore, SqliteSessionStore

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT = 30.0


class TalonApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, adapters: list[MessengerAdapter] | None = None):
        self.config = config
        agent = config.agent

        self.db: Database | None = None
        if config.storage.backend == "sqlite":
            self.db = Database(config.storage.db_path)
            self.store: SessionStore = SqliteSessionStore(self.db)
        else:
            self.store = InMemorySessionStore()
        self.session_manager = SessionManager(self.store)

        self.tool_registry = ToolRegistry()
        self.tool_registry.discover_and_register()
        self.tool_registry.enable_only(agent.tools)
        self.tool_runner = ToolRunner(self.tool_registry, default_timeout=agent.tool_timeout)

        routes = build_routes(config)
        used = {r.provider_id for r in routes}
        self.providers: dict[str, Provider] = {
            p.id: create_provider(p) for p in config.providers if p.id in used
        }
        self.router = ProviderRouter(
            routes,
            self.providers,
            retry_backoff=config.router.retry_backoff,
            same_route_retries=config.router.same_route_retries,
        )

        self.event_bus = EventBus()
        self.compressor = MemoryCompressor(
            self.router,
            keep_recent=agent.keep_recent_messages,
            threshold=agent.compression_threshold,
            summary_max_tokens=agent.summary_max_tokens,
            summary_max_chars=agent.summary_max_chars,
        )
        self.loop = AgentLoop(
            self.router,
            self.tool_runner,
            self.store,
            self.event_bus,
            budgeter=ContextBudgeter(CharRatioEstimator(agent.chars_per_token)),
            compressor=self.compressor,
            system_prompt=agent.system_prompt,
            max_iterations=agent.max_iterations,
            max_output_tokens=agent.max_output_tokens,
            temperature=agent.temperature,
            reserved_output_tokens=agent.reserved_output_tokens,
        )

        self.channel_registry = ChannelRegistry()
        self._adapters = list(adapters or [])

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        if self.db is not None:
            await self.db.initialize()

        # 2. Channel adapters
        for adapter in self._adapters:
            try:
                handler = MessageHandler(
                    adapter=adapter,
                    loop=self.loop,
                    session_manager=self.session_manager,
                    router=self.router,
                    tool_registry=self.tool_registry,
                )
                adapter.on_message(handler.handle)
                await adapter.start()
                self.channel_registry.register(adapter.channel_id, adapter)
                logger.info("channel_started", channel=adapter.channel_id, platform=adapter.platform_name)
            except Exception as e:
                logger.error("channel_start_failed", channel=adapter.channel_id, error=str(e))

        logger.info(
            "talon_started",
            channel_count=len(self.channel_registry.ids()),
            routes=[r.key for r in self.router.routes],
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for adapter in self.channel_registry.all():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("channel_stop_error", channel=adapter.channel_id, error=str(e))

        try:
            await self.loop.shutdown(timeout=SHUTDOWN_TIMEOUT)
        except TimeoutError:
            logger.warning("agent_loop_drain_timeout", active_turns=self.loop.active_turns)

        if self.db is not None:
            await self.db.close()
        logger.info("talon_stopped")
