"""Base channel interface for chat transports."""

from abc import ABC, abstractmethod
import re
from typing import Any

from loguru import logger

from wabot.bus.events import InboundMessage, OutboundMessage
from wabot.bus.queue import MessageBus


class BaseChannel(ABC):
    """
    Abstract base class for chat transports.

    A channel owns the connection to the chat platform, publishes every
    inbound text event on the bus and exposes the low-level delivery calls
    used by the orchestrator. Delivery calls raise on failure; deciding
    whether to retry or drop is the caller's job.
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        """
        Args:
            config: Transport settings (must expose `allow_from`).
            bus: Bus that receives inbound events.
        """
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """
        Connect and keep reading events until stopped.

        Implementations stay in this coroutine for the channel's whole life
        and push each inbound event through `_handle_message()`.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Close the connection and fail anything still waiting on it."""

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> None:
        """Deliver a plain text message."""

    @abstractmethod
    async def send_media(self, chat_id: str, media: str | bytes, caption: str = "") -> None:
        """
        Deliver an image.

        Args:
            chat_id: Destination address.
            media: Remote URL the platform fetches itself, or the raw bytes.
            caption: Optional caption shown under the image.
        """

    async def send_presence(self, chat_id: str, state: str) -> None:
        """Send a presence hint ("composing" / "paused"). Optional for channels."""
        return None

    async def send(self, msg: OutboundMessage) -> None:
        """Deliver a bus message: media first when present, otherwise text."""
        if msg.media:
            await self.send_media(msg.chat_id, msg.media[0], caption=msg.content)
            return
        await self.send_text(msg.chat_id, msg.content)

    def is_allowed(self, sender_id: str) -> bool:
        """An empty `allow_from` admits everyone; otherwise any identity variant must match."""
        allow_list = getattr(self.config, "allow_from", None) or []
        if not allow_list:
            return True

        mine = self._build_identity_variants(sender_id)
        return any(mine & self._build_identity_variants(entry) for entry in allow_list)

    def _build_identity_variants(self, raw: str) -> set[str]:
        """Raw id, JID local part, digits, and digits without leading zeros."""
        text = str(raw or "").strip()
        variants = {text}

        if "@" in text:
            variants.add(text.split("@", 1)[0].strip())

        digits = re.sub(r"\D+", "", text)
        if digits:
            variants.add(digits)
            variants.add(digits.lstrip("0"))

        return {v for v in variants if v}

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        media: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Publish one inbound event. Operator (from_me) events skip the allow list."""
        meta = metadata or {}
        if not meta.get("from_me") and not self.is_allowed(sender_id):
            logger.warning(
                f"Dropping message from {sender_id} on {self.name}: not in allowFrom"
            )
            return

        await self.bus.publish_inbound(
            InboundMessage(
                channel=self.name,
                sender_id=str(sender_id),
                chat_id=str(chat_id),
                content=content,
                media=media or [],
                metadata=meta,
            )
        )

    @property
    def is_running(self) -> bool:
        return self._running
