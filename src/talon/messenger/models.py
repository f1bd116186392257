"""Unified message models for all channels."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    channel: str
    sender_id: str
    chat_id: str
    text: str
    timestamp: datetime
    sender_display_name: str = ""
    reply_to_message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str
    parse_mode: Optional[str] = None  # "markdown", "html", None
    reply_to_message_id: Optional[str] = None
