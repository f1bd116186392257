"""Session routing per (channel, sender) and per-session turn locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from talon.log import get_logger
from talon.storage.session_store import SessionStore

logger = get_logger(__name__)


class SessionLocks:
    """One asyncio.Lock per session id, so turns for a session never overlap."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._waiters[session_id] = self._waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[session_id] -= 1
            if self._waiters[session_id] == 0:
                del self._waiters[session_id]
                del self._locks[session_id]

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()


class SessionManager:
    """Maps (channel, sender_id) pairs to session ids, creating sessions on demand."""

    def __init__(self, store: SessionStore):
        self._store = store
        self._active_sessions: dict[tuple[str, str], str] = {}
        self._resolve_lock = asyncio.Lock()

    async def get_session_id(self, channel: str, sender_id: str) -> str:
        """Get the sender's current session id, resuming or creating one."""
        key = (channel, sender_id)
        async with self._resolve_lock:
            if key not in self._active_sessions:
                session_id = await self._store.find_latest(channel, sender_id)
                if session_id is None:
                    session = await self._store.create(channel, sender_id)
                    session_id = session.id
                else:
                    logger.info("session_resumed", channel=channel, sender_id=sender_id, session_id=session_id)
                self._active_sessions[key] = session_id
            return self._active_sessions[key]

    async def reset_session(self, channel: str, sender_id: str) -> str:
        """Force create a new session, returning the new session ID."""
        key = (channel, sender_id)
        async with self._resolve_lock:
            session = await self._store.create(channel, sender_id)
            self._active_sessions[key] = session.id
        logger.info("session_reset", channel=channel, sender_id=sender_id, session_id=session.id)
        return session.id

    @property
    def store(self) -> SessionStore:
        return self._store
