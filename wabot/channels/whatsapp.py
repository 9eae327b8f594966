"""WhatsApp transport over the Baileys bridge websocket."""

import asyncio
import base64
import json
import uuid
from typing import Any

from loguru import logger

from wabot.bus.queue import MessageBus
from wabot.channels.base import BaseChannel
from wabot.config.schema import WhatsAppConfig

BROADCAST_JID = "status@broadcast"
RECONNECT_DELAY_S = 5


class BridgeSendError(RuntimeError):
    """The bridge rejected or did not acknowledge a command."""


class WhatsAppChannel(BaseChannel):
    """
    Client for the local Node.js bridge that holds the WhatsApp Web session.

    The bridge speaks Baileys on one side and JSON frames over a websocket on
    the other. Each command we send carries an id; the matching `ack` frame
    resolves it, so a rejected or unacknowledged send raises here.
    """

    name = "whatsapp"

    def __init__(self, config: WhatsAppConfig, bus: MessageBus, send_timeout_s: float = 20.0):
        super().__init__(config, bus)
        self.config: WhatsAppConfig = config
        self.send_timeout_s = send_timeout_s
        self._ws = None
        self._connected = False
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}

    async def start(self) -> None:
        """Connect to the bridge and read frames, reconnecting until stopped."""
        import websockets

        bridge_url = self.config.bridge_url

        logger.info(f"WhatsApp bridge: {bridge_url}")

        self._running = True

        while self._running:
            try:
                async with websockets.connect(bridge_url) as ws:
                    self._ws = ws
                    self._connected = True
                    logger.info("WhatsApp bridge connected")

                    if self.config.bridge_token:
                        await ws.send(json.dumps({"type": "auth", "token": self.config.bridge_token}))
                        logger.debug("Bridge auth frame sent")

                    async for message in ws:
                        try:
                            await self._handle_bridge_message(message)
                        except Exception as e:
                            logger.error(f"Bridge frame handling failed: {e}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                self._connected = False
                self._ws = None
                self._fail_pending(f"bridge connection lost: {e}")
                logger.warning(f"WhatsApp bridge connection lost: {e}")

                if self._running:
                    logger.info(f"Reconnecting in {RECONNECT_DELAY_S} seconds...")
                    await asyncio.sleep(RECONNECT_DELAY_S)

    async def stop(self) -> None:
        """Close the socket and fail pending acknowledgements."""
        self._running = False
        self._connected = False
        self._fail_pending("channel stopped")

        if self._ws:
            await self._ws.close()
            self._ws = None

    async def send_text(self, chat_id: str, text: str) -> None:
        await self._send_command({"type": "send", "to": chat_id, "text": text})

    async def send_media(self, chat_id: str, media: str | bytes, caption: str = "") -> None:
        payload: dict[str, Any] = {"type": "send", "to": chat_id, "caption": caption or ""}
        if isinstance(media, (bytes, bytearray)):
            payload["mediaBase64"] = base64.b64encode(bytes(media)).decode("ascii")
            payload["mediaType"] = "image"
        else:
            payload["mediaUrl"] = str(media)
            payload["mediaType"] = "image"
        await self._send_command(payload)

    async def send_presence(self, chat_id: str, state: str) -> None:
        if not self._ws or not self._connected:
            return
        try:
            await self._ws.send(json.dumps({"type": "presence", "to": chat_id, "state": state}))
        except Exception as e:
            logger.debug(f"WhatsApp presence update failed ({state}) for {chat_id}: {e}")

    async def _send_command(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one command and wait for the bridge acknowledgement."""
        if not self._ws or not self._connected:
            raise BridgeSendError("WhatsApp bridge not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({**payload, "id": request_id}))
            ack = await asyncio.wait_for(future, timeout=self.send_timeout_s)
        except asyncio.TimeoutError as e:
            raise BridgeSendError(f"bridge did not acknowledge {payload.get('type')} in time") from e
        finally:
            self._pending.pop(request_id, None)

        if not ack.get("ok", False):
            raise BridgeSendError(str(ack.get("error") or "bridge rejected the message"))
        return ack

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_result({"ok": False, "error": reason})
        self._pending.clear()

    async def _handle_bridge_message(self, raw: str) -> None:
        """Dispatch one bridge frame by its `type`."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Bridge sent a non-JSON frame: {raw[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == "message":
            chat_jid = str(data.get("chatId", "") or data.get("sender", ""))
            if not chat_jid or chat_jid == BROADCAST_JID:
                return
            content = str(data.get("content", "") or "").strip()
            if not content:
                return
            from_me = bool(data.get("fromMe", False))
            # For own messages the chat JID is the other party, not the sender.
            sender_jid = str(data.get("sender", "") or ("" if from_me else chat_jid))

            await self._handle_message(
                sender_id=self._jid_to_identity(sender_jid),
                chat_id=chat_jid,
                content=content,
                metadata={
                    "message_id": data.get("id"),
                    "timestamp": data.get("timestamp"),
                    "is_group": data.get("isGroup", False),
                    "from_me": from_me,
                    "sender_jid": sender_jid,
                    "chat_jid": chat_jid,
                },
            )

        elif msg_type == "ack":
            future = self._pending.get(str(data.get("id", "")))
            if future and not future.done():
                future.set_result(data)

        elif msg_type == "status":
            status = data.get("status")
            logger.info(f"WhatsApp status: {status}")

            if status == "connected":
                self._connected = True
            elif status == "disconnected":
                self._connected = False

        elif msg_type == "qr":
            logger.info("Bridge is waiting for a QR scan (see the bridge terminal)")

        elif msg_type == "error":
            logger.error(f"WhatsApp bridge error: {data.get('error')}")

    def _jid_to_identity(self, jid: str) -> str:
        """`5491122334455:3@s.whatsapp.net` -> `5491122334455`."""
        value = (jid or "").strip()
        if not value:
            return ""
        left = value.split("@", 1)[0]
        if ":" in left:
            left = left.split(":", 1)[0]
        return left
