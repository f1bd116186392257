"""Lifecycle event bus passed explicitly to the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from talon.core.models import utcnow
from talon.log import get_logger

logger = get_logger(__name__)

TURN_STARTED = "turn.started"
TOOL_INVOKED = "tool.invoked"
TURN_COMPLETED = "turn.completed"
TURN_FAILED = "turn.failed"
MEMORY_COMPRESSED = "memory.compressed"
PROVIDER_FALLBACK = "provider.fallback"


@dataclass(frozen=True, slots=True)
class Event:
    name: str
    session_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """Fans lifecycle events out to subscribers.

    A subscriber that raises is logged and skipped; the turn that emitted the
    event carries on.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[str | None, EventHandler]] = []

    def subscribe(self, handler: EventHandler, name: str | None = None) -> None:
        """Register *handler* for events called *name*, or for every event when None."""
        self._handlers.append((name, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._handlers = [(n, h) for n, h in self._handlers if h is not handler]

    async def emit(self, name: str, session_id: str, **payload: Any) -> Event:
        event = Event(name=name, session_id=session_id, payload=payload)
        logger.debug("event_emitted", event_name=name, session_id=session_id)
        for wanted, handler in list(self._handlers):
            if wanted is not None and wanted != name:
                continue
            try:
                await handler(event)
            except Exception as e:
                logger.error("event_handler_error", event_name=name, error=str(e))
        return event
