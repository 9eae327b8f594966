import asyncio

from wabot.bus.events import OutboundMessage
from wabot.bus.queue import MessageBus
from wabot.channels.base import BaseChannel
from wabot.channels.manager import ChannelManager, RestartPolicy, RetryPolicy
from wabot.config.schema import Config


class StubChannel(BaseChannel):
    name = "stub"

    def __init__(self, bus: MessageBus, failures: int = 0):
        super().__init__(config=type("StubConfig", (), {"allow_from": []})(), bus=bus)
        self.failures = failures
        self.calls = 0
        self.sent: list[tuple[str, str]] = []

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send_text(self, chat_id: str, text: str) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("temporary send failure")
        self.sent.append((chat_id, text))

    async def send_media(self, chat_id: str, media: str | bytes, caption: str = "") -> None:
        self.sent.append((chat_id, f"[media] {caption}"))


class _HarnessChannel(StubChannel):
    """Crashes on first start, then reports a clean exit."""

    def __init__(self, bus: MessageBus, manager_ref: dict):
        super().__init__(bus)
        self.manager_ref = manager_ref
        self.starts = 0
        self.stops = 0

    async def start(self) -> None:
        self.starts += 1
        if self.starts == 1:
            raise RuntimeError("bridge exploded")
        self.manager_ref["manager"]._running = False

    async def stop(self) -> None:
        self.stops += 1


def _manager(bus: MessageBus, channel: BaseChannel, **kwargs) -> ChannelManager:
    return ChannelManager(Config(), bus, channels={"stub": channel}, **kwargs)


async def _run_dispatcher(manager: ChannelManager, messages: list[OutboundMessage], wait_s: float = 0.15) -> None:
    dispatch_task = asyncio.create_task(manager._dispatch_outbound())
    for msg in messages:
        await manager.bus.publish_outbound(msg)
    await asyncio.sleep(wait_s)
    dispatch_task.cancel()
    try:
        await dispatch_task
    except asyncio.CancelledError:
        pass
    for task in list(manager._retry_tasks):
        task.cancel()
    await asyncio.gather(*list(manager._retry_tasks), return_exceptions=True)


def test_outbound_idempotency_skips_duplicate():
    bus = MessageBus()
    stub = StubChannel(bus)
    manager = _manager(bus, stub)

    asyncio.run(
        _run_dispatcher(
            manager,
            [
                OutboundMessage(channel="stub", chat_id="1", content="hello", metadata={"idempotency_key": "k-1"}),
                OutboundMessage(channel="stub", chat_id="1", content="hello-again", metadata={"idempotency_key": "k-1"}),
            ],
        )
    )

    assert stub.sent == [("1", "hello")]


def test_outbound_without_idempotency_key_not_deduped():
    bus = MessageBus()
    stub = StubChannel(bus)
    manager = _manager(bus, stub)

    asyncio.run(
        _run_dispatcher(
            manager,
            [
                OutboundMessage(channel="stub", chat_id="1", content="a"),
                OutboundMessage(channel="stub", chat_id="1", content="a"),
            ],
        )
    )

    assert len(stub.sent) == 2


def test_outbound_media_uses_content_as_caption():
    bus = MessageBus()
    stub = StubChannel(bus)
    manager = _manager(bus, stub)

    asyncio.run(
        _run_dispatcher(
            manager,
            [OutboundMessage(channel="stub", chat_id="1", content="foto", media=["https://img.example/a.jpg"])],
        )
    )

    assert stub.sent == [("1", "[media] foto")]


def test_outbound_retry_after_transient_send_error():
    bus = MessageBus()
    flaky = StubChannel(bus, failures=1)
    manager = _manager(bus, flaky, retry=RetryPolicy(base_delay_s=0.01, max_delay_s=0.02, max_attempts=2))

    asyncio.run(
        _run_dispatcher(
            manager,
            [OutboundMessage(channel="stub", chat_id="1", content="retry-me", metadata={"idempotency_key": "k-retry"})],
            wait_s=0.3,
        )
    )

    assert flaky.calls == 2
    assert flaky.sent == [("1", "retry-me")]


def test_outbound_dropped_after_max_attempts():
    bus = MessageBus()
    broken = StubChannel(bus, failures=100)
    manager = _manager(bus, broken, retry=RetryPolicy(base_delay_s=0.01, max_delay_s=0.01, max_attempts=2))

    asyncio.run(
        _run_dispatcher(manager, [OutboundMessage(channel="stub", chat_id="1", content="x")], wait_s=0.3)
    )

    assert broken.calls == 3
    assert broken.sent == []


def test_unknown_channel_is_ignored():
    bus = MessageBus()
    stub = StubChannel(bus)
    manager = _manager(bus, stub)

    asyncio.run(_run_dispatcher(manager, [OutboundMessage(channel="telegram", chat_id="1", content="x")]))

    assert stub.calls == 0


def test_supervisor_restarts_crashed_channel():
    bus = MessageBus()
    ref: dict = {}
    channel = _HarnessChannel(bus, ref)
    manager = _manager(bus, channel, restart=RestartPolicy(initial_delay_s=0.01, max_delay_s=0.02))
    ref["manager"] = manager
    manager._running = True

    asyncio.run(asyncio.wait_for(manager._supervise("stub", channel), timeout=2))

    assert channel.starts == 2
    assert channel.stops == 1
    assert len(manager._restart_history["stub"]) == 1


def test_whatsapp_built_from_config_only_when_enabled():
    config = Config()
    assert ChannelManager(config, MessageBus()).enabled_channels == ["whatsapp"]

    config.channels.whatsapp.enabled = False
    manager = ChannelManager(config, MessageBus())
    assert manager.enabled_channels == []
    assert manager.get_status() == {}
