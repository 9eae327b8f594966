"""Delivery wrapper that never raises for transport failures."""

import httpx
from loguru import logger

from wabot.agent.generator import MediaItem
from wabot.channels.base import BaseChannel
from wabot.conversation.contacts import ContactBook
from wabot.conversation.pause import PauseRegistry
from wabot.observability.metrics import MetricsStore

DOWNLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "image/*,*/*;q=0.8",
}
MAX_DOWNLOAD_BYTES = 10 * 1024 * 1024


class MediaTooLargeError(ValueError):
    """Remote media is bigger than the inline retry allows."""


class SafeSender:
    """
    Send text or media to a contact, checking the pause state last.

    When the transport cannot deliver a remote image, the image is downloaded
    here (up to `max_download_bytes`) and sent once more as inline bytes. Any
    remaining failure is logged and reported as False.
    """

    def __init__(
        self,
        channel: BaseChannel,
        pauses: PauseRegistry,
        contacts: ContactBook,
        metrics: MetricsStore | None = None,
        download_timeout_s: float = 15.0,
        max_download_bytes: int = MAX_DOWNLOAD_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.channel = channel
        self.pauses = pauses
        self.contacts = contacts
        self.metrics = metrics
        self.download_timeout_s = download_timeout_s
        self.max_download_bytes = max_download_bytes
        self._transport = transport

    async def send(self, key: str, content: str | MediaItem) -> bool:
        if self.pauses.is_paused(key):
            logger.debug(f"Skipping send to paused contact {key}")
            return False

        address = self.contacts.address_for(key)
        kind = "media" if isinstance(content, MediaItem) else "text"
        try:
            if isinstance(content, MediaItem):
                await self.channel.send_media(address, content.data or content.url, caption=content.caption)
            else:
                await self.channel.send_text(address, content)
            self._record(key, kind, True)
            return True
        except Exception as e:
            first_error = e

        if not (isinstance(content, MediaItem) and content.is_remote):
            logger.error(f"Failed to send {kind} to {key}: {first_error}")
            self._record(key, kind, False, error=str(first_error))
            return False

        logger.warning(f"Media by URL failed for {key} ({first_error}); retrying inline")
        try:
            data = await self.download(content.url)
            await self.channel.send_media(address, data, caption=content.caption)
        except Exception as e:
            logger.error(f"Inline media retry failed for {key} ({content.url}): {e}")
            self._record(key, kind, False, fallback=True, error=str(e))
            return False

        self._record(key, kind, True, fallback=True)
        return True

    async def download(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.download_timeout_s,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url, headers=DOWNLOAD_HEADERS) as response:
                response.raise_for_status()
                declared = int(response.headers.get("content-length") or 0)
                if declared > self.max_download_bytes:
                    raise MediaTooLargeError(f"{url} declares {declared} bytes")
                chunks = bytearray()
                async for chunk in response.aiter_bytes():
                    chunks.extend(chunk)
                    if len(chunks) > self.max_download_bytes:
                        raise MediaTooLargeError(f"{url} exceeds {self.max_download_bytes} bytes")
                return bytes(chunks)

    def _record(self, key: str, kind: str, success: bool, fallback: bool = False, error: str = "") -> None:
        if self.metrics is None:
            return
        self.metrics.record_delivery(contact=key, kind=kind, success=success, fallback=fallback, error=error)
