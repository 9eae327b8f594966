import asyncio
import base64
import json
from collections.abc import Callable
from unittest.mock import patch

import pytest

from wabot.bus.queue import MessageBus
from wabot.channels.whatsapp import BridgeSendError, WhatsAppChannel
from wabot.config.loader import convert_keys, convert_to_camel
from wabot.config.schema import WhatsAppConfig


class _FakeWsStream:
    def __init__(self, messages: list[str], on_first_message: Callable[[], None] | None = None):
        self._messages = messages
        self._index = 0
        self._on_first_message = on_first_message
        self._emitted_once = False
        self.sent: list[str] = []

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._index >= len(self._messages):
            raise StopAsyncIteration
        payload = self._messages[self._index]
        self._index += 1
        if not self._emitted_once and self._on_first_message:
            self._emitted_once = True
            self._on_first_message()
        return payload

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        pass


class _FakeConnectCtx:
    def __init__(self, ws: _FakeWsStream, on_exit: Callable[[], None] | None = None):
        self._ws = ws
        self._on_exit = on_exit

    async def __aenter__(self) -> _FakeWsStream:
        return self._ws

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._on_exit:
            self._on_exit()
        return False


class _AckingWs:
    """Bridge stand-in that answers every command with an ack frame."""

    def __init__(self, channel: WhatsAppChannel, ok: bool = True, error: str = ""):
        self.channel = channel
        self.ok = ok
        self.error = error
        self.sent: list[dict] = []

    async def send(self, data: str) -> None:
        payload = json.loads(data)
        self.sent.append(payload)
        if "id" in payload:
            ack = json.dumps({"type": "ack", "id": payload["id"], "ok": self.ok, "error": self.error})
            asyncio.get_running_loop().create_task(self.channel._handle_bridge_message(ack))


def _connected_channel(ok: bool = True, error: str = "") -> tuple[WhatsAppChannel, _AckingWs]:
    channel = WhatsAppChannel(WhatsAppConfig(), MessageBus(), send_timeout_s=1.0)
    ws = _AckingWs(channel, ok=ok, error=error)
    channel._ws = ws
    channel._connected = True
    return channel, ws


def test_bridge_token_roundtrip_camel_case():
    config = WhatsAppConfig(bridge_token="my-secret", operator_number="5491100000000")
    data = convert_to_camel(config.model_dump())
    assert data["bridgeToken"] == "my-secret"
    assert data["operatorNumber"] == "5491100000000"

    restored = WhatsAppConfig.model_validate(convert_keys(data))
    assert restored.bridge_token == "my-secret"


def test_whatsapp_channel_reconnects_after_bridge_failure(monkeypatch):
    channel = WhatsAppChannel(
        config=WhatsAppConfig(enabled=True, bridge_url="ws://local-bridge"),
        bus=MessageBus(),
    )

    sleep_calls: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    monkeypatch.setattr("wabot.channels.whatsapp.asyncio.sleep", fake_sleep)

    attempts = {"count": 0}
    ws = _FakeWsStream(
        messages=[json.dumps({"type": "status", "status": "connected"})],
        on_first_message=lambda: setattr(channel, "_running", False),
    )

    def fake_connect(url: str):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("bridge unavailable")
        assert url == "ws://local-bridge"
        return _FakeConnectCtx(ws)

    import websockets

    monkeypatch.setattr(websockets, "connect", fake_connect)

    asyncio.run(channel.start())

    assert attempts["count"] == 2
    assert sleep_calls == [5]
    assert channel._connected is True


def test_whatsapp_channel_sends_auth_on_connect():
    channel = WhatsAppChannel(WhatsAppConfig(bridge_token="test-secret"), MessageBus())
    ws = _FakeWsStream(messages=[])

    with patch("websockets.connect", return_value=_FakeConnectCtx(ws, on_exit=lambda: setattr(channel, "_running", False))):
        asyncio.run(asyncio.wait_for(channel.start(), timeout=5))

    assert json.loads(ws.sent[0]) == {"type": "auth", "token": "test-secret"}


def test_inbound_message_is_published_with_metadata():
    async def run_case():
        bus = MessageBus()
        channel = WhatsAppChannel(WhatsAppConfig(), bus)
        await channel._handle_bridge_message(
            json.dumps(
                {
                    "type": "message",
                    "id": "3EB0ABC",
                    "sender": "5491122334455:3@s.whatsapp.net",
                    "chatId": "5491122334455@s.whatsapp.net",
                    "content": "  hola  ",
                    "fromMe": False,
                    "timestamp": 1767225600,
                }
            )
        )
        await channel._handle_bridge_message(
            json.dumps({"type": "message", "chatId": "status@broadcast", "content": "story"})
        )
        await channel._handle_bridge_message(json.dumps({"type": "message", "chatId": "1@s.whatsapp.net", "content": ""}))
        return bus

    bus = asyncio.run(run_case())

    assert bus.inbound_size == 1
    msg = bus.inbound.get_nowait()
    assert msg.sender_id == "5491122334455"
    assert msg.chat_id == "5491122334455@s.whatsapp.net"
    assert msg.content == "hola"
    assert msg.message_id == "3EB0ABC"
    assert msg.from_me is False


def test_operator_messages_bypass_allow_list():
    async def run_case():
        bus = MessageBus()
        channel = WhatsAppChannel(WhatsAppConfig(allow_from=["+54 9 11 2233-4455"]), bus)
        for sender, from_me in [("5491199999999", False), ("5491100000000", True), ("5491122334455", False)]:
            await channel._handle_bridge_message(
                json.dumps(
                    {
                        "type": "message",
                        "id": sender,
                        "sender": f"{sender}@s.whatsapp.net",
                        "chatId": f"{sender}@s.whatsapp.net",
                        "content": "hola",
                        "fromMe": from_me,
                    }
                )
            )
        return [bus.inbound.get_nowait().sender_id for _ in range(bus.inbound_size)]

    assert asyncio.run(run_case()) == ["5491100000000", "5491122334455"]


def test_send_text_waits_for_ack():
    async def run_case():
        channel, ws = _connected_channel()
        await channel.send_text("5491122334455@s.whatsapp.net", "hola")
        return channel, ws

    channel, ws = asyncio.run(run_case())

    assert ws.sent[0]["type"] == "send"
    assert ws.sent[0]["to"] == "5491122334455@s.whatsapp.net"
    assert ws.sent[0]["text"] == "hola"
    assert channel._pending == {}


def test_send_media_url_and_inline_bytes():
    async def run_case():
        channel, ws = _connected_channel()
        await channel.send_media("1@s.whatsapp.net", "https://img.example/a.jpg", caption="A")
        await channel.send_media("1@s.whatsapp.net", b"\x89PNG", caption="B")
        return ws

    ws = asyncio.run(run_case())

    assert ws.sent[0]["mediaUrl"] == "https://img.example/a.jpg"
    assert ws.sent[0]["caption"] == "A"
    assert base64.b64decode(ws.sent[1]["mediaBase64"]) == b"\x89PNG"
    assert "mediaUrl" not in ws.sent[1]


def test_rejected_send_raises():
    async def run_case():
        channel, _ = _connected_channel(ok=False, error="media fetch failed")
        await channel.send_media("1@s.whatsapp.net", "https://img.example/a.jpg")

    with pytest.raises(BridgeSendError, match="media fetch failed"):
        asyncio.run(run_case())


def test_send_without_connection_raises():
    channel = WhatsAppChannel(WhatsAppConfig(), MessageBus())
    with pytest.raises(BridgeSendError):
        asyncio.run(channel.send_text("1@s.whatsapp.net", "hola"))


def test_presence_is_best_effort():
    async def run_case():
        channel, ws = _connected_channel()
        await channel.send_presence("1@s.whatsapp.net", "composing")
        disconnected = WhatsAppChannel(WhatsAppConfig(), MessageBus())
        await disconnected.send_presence("1@s.whatsapp.net", "composing")
        return ws

    ws = asyncio.run(run_case())
    assert ws.sent == [{"type": "presence", "to": "1@s.whatsapp.net", "state": "composing"}]


def test_own_message_without_sender_does_not_take_the_chat_identity():
    async def run_case():
        bus = MessageBus()
        channel = WhatsAppChannel(WhatsAppConfig(), bus)
        await channel._handle_bridge_message(
            json.dumps(
                {
                    "type": "message",
                    "id": "OWN-1",
                    "chatId": "5491122334455@s.whatsapp.net",
                    "content": "bot-pause",
                    "fromMe": True,
                }
            )
        )
        return bus.inbound.get_nowait()

    msg = asyncio.run(run_case())

    assert msg.from_me is True
    assert msg.sender_id == ""
    assert msg.chat_id == "5491122334455@s.whatsapp.net"
