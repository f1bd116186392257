"""Session stores: load/create/save whole sessions atomically."""

from __future__ import annotations

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from talon.core.models import Message, Session, ToolCall
from talon.core.types import Role
from talon.errors import SessionNotFoundError, SessionStoreError
from talon.log import get_logger
from talon.storage.database import Database

logger = get_logger(__name__)


class SessionStore(ABC):
    @abstractmethod
    async def load(self, session_id: str) -> Session:
        """Return the stored session or raise ``SessionNotFoundError``."""
        ...

    @abstractmethod
    async def create(self, channel: str, sender_id: str) -> Session:
        ...

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Replace the stored copy of *session*; never partially visible."""
        ...

    @abstractmethod
    async def find_latest(self, channel: str, sender_id: str) -> Optional[str]:
        """Id of the most recently active session for a sender, if any."""
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def list_sessions(self) -> list[Session]:
        """All sessions without their messages, most recently active first."""
        ...


def _clone(session: Session) -> Session:
    """Copy a session; messages are immutable and can be shared."""
    return Session(
        id=session.id,
        channel=session.channel,
        sender_id=session.sender_id,
        messages=list(session.messages),
        memory_summary=session.memory_summary,
        scratchpad=copy.deepcopy(session.scratchpad),
        created_at=session.created_at,
        last_active_at=session.last_active_at,
    )


class InMemorySessionStore(SessionStore):
    """Keeps private copies so callers never share state with the store."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    async def load(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return _clone(session)

    async def create(self, channel: str, sender_id: str) -> Session:
        session = Session(id=Session.new_id(), channel=channel, sender_id=sender_id)
        self._sessions[session.id] = _clone(session)
        logger.info("session_created", session_id=session.id, channel=channel, sender_id=sender_id)
        return session

    async def save(self, session: Session) -> None:
        self._sessions[session.id] = _clone(session)

    async def find_latest(self, channel: str, sender_id: str) -> Optional[str]:
        matches = [s for s in self._sessions.values() if s.channel == channel and s.sender_id == sender_id]
        if not matches:
            return None
        return max(matches, key=lambda s: s.last_active_at).id

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def list_sessions(self) -> list[Session]:
        sessions = [
            Session(
                id=s.id,
                channel=s.channel,
                sender_id=s.sender_id,
                memory_summary=s.memory_summary,
                created_at=s.created_at,
                last_active_at=s.last_active_at,
            )
            for s in self._sessions.values()
        ]
        return sorted(sessions, key=lambda s: s.last_active_at, reverse=True)


class SqliteSessionStore(SessionStore):
    """SQLite-backed store.

    All operations share one connection and are serialized by a lock, and a
    save rewrites the session row and its messages in a single transaction.
    """

    def __init__(self, db: Database):
        self._db = db
        self._lock = asyncio.Lock()

    async def load(self, session_id: str) -> Session:
        async with self._lock:
            try:
                cursor = await self._db.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
                row = await cursor.fetchone()
                if row is None:
                    raise SessionNotFoundError(session_id)
                cursor = await self._db.conn.execute(
                    "SELECT * FROM messages WHERE session_id = ? ORDER BY seq ASC", (session_id,)
                )
                message_rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise SessionStoreError(f"Failed to load session {session_id}: {e}") from e
        session = self._row_to_session(row)
        session.messages = [self._row_to_message(r) for r in message_rows]
        return session

    async def create(self, channel: str, sender_id: str) -> Session:
        session = Session(id=Session.new_id(), channel=channel, sender_id=sender_id)
        await self.save(session)
        logger.info("session_created", session_id=session.id, channel=channel, sender_id=sender_id)
        return session

    async def save(self, session: Session) -> None:
        conn = self._db.conn
        async with self._lock:
            try:
                await conn.execute(
                    """INSERT INTO sessions
                       (id, channel, sender_id, memory_summary, scratchpad_json, created_at, last_active_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                           memory_summary = excluded.memory_summary,
                           scratchpad_json = excluded.scratchpad_json,
                           last_active_at = excluded.last_active_at""",
                    (
                        session.id,
                        session.channel,
                        session.sender_id,
                        session.memory_summary,
                        json.dumps(session.scratchpad, ensure_ascii=False, default=str),
                        session.created_at.isoformat(),
                        session.last_active_at.isoformat(),
                    ),
                )
                await conn.execute("DELETE FROM messages WHERE session_id = ?", (session.id,))
                await conn.executemany(
                    """INSERT INTO messages
                       (session_id, seq, role, content, tool_calls_json, tool_call_id, is_summary, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    [self._message_to_row(session.id, seq, m) for seq, m in enumerate(session.messages)],
                )
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise SessionStoreError(f"Failed to save session {session.id}: {e}") from e

    async def find_latest(self, channel: str, sender_id: str) -> Optional[str]:
        async with self._lock:
            cursor = await self._db.conn.execute(
                """SELECT id FROM sessions WHERE channel = ? AND sender_id = ?
                   ORDER BY last_active_at DESC LIMIT 1""",
                (channel, sender_id),
            )
            row = await cursor.fetchone()
        return row["id"] if row else None

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            await self._db.conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            await self._db.conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await self._db.conn.commit()

    async def list_sessions(self) -> list[Session]:
        async with self._lock:
            cursor = await self._db.conn.execute("SELECT * FROM sessions ORDER BY last_active_at DESC")
            rows = await cursor.fetchall()
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _message_to_row(session_id: str, seq: int, msg: Message) -> tuple[Any, ...]:
        calls = None
        if msg.tool_calls:
            calls = json.dumps(
                [
                    {"id": c.id, "name": c.name, "arguments": c.arguments, "parse_error": c.parse_error}
                    for c in msg.tool_calls
                ],
                ensure_ascii=False,
                default=str,
            )
        return (
            session_id,
            seq,
            msg.role.value,
            msg.content,
            calls,
            msg.tool_call_id,
            int(msg.summary),
            msg.timestamp.isoformat(),
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        calls: tuple[ToolCall, ...] = ()
        if row["tool_calls_json"]:
            calls = tuple(
                ToolCall(
                    id=c["id"],
                    name=c["name"],
                    arguments=c.get("arguments") or {},
                    parse_error=c.get("parse_error"),
                )
                for c in json.loads(row["tool_calls_json"])
            )
        return Message(
            role=Role(row["role"]),
            content=row["content"],
            tool_calls=calls,
            tool_call_id=row["tool_call_id"],
            summary=bool(row["is_summary"]),
            timestamp=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_session(row) -> Session:
        return Session(
            id=row["id"],
            channel=row["channel"],
            sender_id=row["sender_id"],
            memory_summary=row["memory_summary"],
            scratchpad=json.loads(row["scratchpad_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_active_at=datetime.fromisoformat(row["last_active_at"]),
        )
