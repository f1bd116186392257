"""Abstract channel adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from talon.messenger.models import IncomingMessage, OutgoingMessage


class MessengerAdapter(ABC):
    """Base class for all channel adapters.

    To add a new channel, subclass this and implement all abstract methods.
    """

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Send a message to a specific chat."""
        ...

    async def send_typing_indicator(self, chat_id: str) -> None:
        """Show typing/processing indicator, where the platform has one."""
        return None

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    async def dispatch(self, message: IncomingMessage) -> None:
        if self._message_callback is not None:
            await self._message_callback(message)

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...
