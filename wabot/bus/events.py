"""Event types carried by the message bus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """Message received from a chat channel."""

    channel: str  # e.g. "whatsapp"
    sender_id: str  # User identifier
    chat_id: str  # Chat/address to reply to
    content: str  # Message text
    timestamp: datetime = field(default_factory=datetime.now)
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)  # message_id, from_me, ...

    @property
    def message_id(self) -> str:
        return str(self.metadata.get("message_id") or "").strip()

    @property
    def from_me(self) -> bool:
        return bool(self.metadata.get("from_me", False))


@dataclass
class OutboundMessage:
    """Message to send to a chat channel."""

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
