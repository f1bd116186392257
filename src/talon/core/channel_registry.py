"""Registry of active channel adapter instances."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from talon.messenger.base import MessengerAdapter


class ChannelRegistry:
    """Tracks all active channel adapters."""

    def __init__(self) -> None:
        self._adapters: dict[str, MessengerAdapter] = {}

    def register(self, channel_id: str, adapter: MessengerAdapter) -> None:
        self._adapters[channel_id] = adapter

    def get(self, channel_id: str) -> MessengerAdapter | None:
        return self._adapters.get(channel_id)

    def all(self) -> list[MessengerAdapter]:
        return list(self._adapters.values())

    def ids(self) -> list[str]:
        return list(self._adapters.keys())
