"""Console channel: reads lines from stdin and prints replies to stdout."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from talon.log import get_logger
from talon.messenger.base import MessengerAdapter
from talon.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

PROMPT = "you> "


class ConsoleAdapter(MessengerAdapter):
    """Single-user adapter for running the agent from a terminal."""

    def __init__(
        self,
        channel_id: str = "console",
        sender_id: str = "local",
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ):
        super().__init__(channel_id)
        self._sender_id = sender_id
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._task: asyncio.Task[Any] | None = None
        self.closed = asyncio.Event()

    @property
    def platform_name(self) -> str:
        return "console"

    async def start(self) -> None:
        self._task = asyncio.create_task(self._read_loop())
        logger.info("console_adapter_started", channel=self.channel_id, sender_id=self._sender_id)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.closed.set()
        logger.info("console_adapter_stopped", channel=self.channel_id)

    async def send_message(self, message: OutgoingMessage) -> None:
        self._stdout.write(f"talon> {message.text}\n")
        self._stdout.flush()

    async def _read_loop(self) -> None:
        while True:
            self._stdout.write(PROMPT)
            self._stdout.flush()
            line = await asyncio.to_thread(self._stdin.readline)
            if not line:
                # EOF
                break
            text = line.strip()
            if not text:
                continue
            if text.lower() in ("/quit", "/exit"):
                break
            await self.dispatch(
                IncomingMessage(
                    channel=self.channel_id,
                    sender_id=self._sender_id,
                    chat_id=self._sender_id,
                    text=text,
                    timestamp=datetime.now(timezone.utc),
                )
            )
        self.closed.set()
