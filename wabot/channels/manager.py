"""Channel supervision and outbound dispatch."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from wabot.bus.events import OutboundMessage
from wabot.bus.queue import MessageBus
from wabot.channels.base import BaseChannel
from wabot.config.schema import Config


@dataclass
class RestartPolicy:
    """Backoff settings for restarting a crashed channel."""

    initial_delay_s: float = 5.0
    max_delay_s: float = 60.0
    burst_window_s: float = 120.0
    burst_max_restarts: int = 8
    burst_cooldown_s: float = 180.0
    stable_after_s: float = 180.0


@dataclass
class RetryPolicy:
    """Retry settings for bus-originated outbound messages."""

    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    max_attempts: int = 3
    idempotency_ttl_s: float = 120.0


class ChannelManager:
    """
    Owns the configured channels.

    Responsibilities:
    - Build the enabled channels from config (or accept prebuilt ones)
    - Keep each channel running, restarting it with backoff when it dies
    - Deliver messages published on the bus outbound queue (operator acks)
    """

    def __init__(
        self,
        config: Config,
        bus: MessageBus,
        channels: dict[str, BaseChannel] | None = None,
        restart: RestartPolicy | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.config = config
        self.bus = bus
        self.restart = restart or RestartPolicy()
        self.retry = retry or RetryPolicy()
        self.channels: dict[str, BaseChannel] = (
            dict(channels) if channels is not None else self._build_channels()
        )
        self._dispatch_task: asyncio.Task | None = None
        self._channel_tasks: dict[str, asyncio.Task[None]] = {}
        self._retry_tasks: set[asyncio.Task[None]] = set()
        self._restart_history: dict[str, list[float]] = {}
        self._delivered: dict[str, float] = {}
        self._running = False

    def _build_channels(self) -> dict[str, BaseChannel]:
        built: dict[str, BaseChannel] = {}
        wa_cfg = self.config.channels.whatsapp
        if wa_cfg.enabled:
            from wabot.channels.whatsapp import WhatsAppChannel

            built["whatsapp"] = WhatsAppChannel(wa_cfg, self.bus)
            logger.info("WhatsApp channel enabled")
        return built

    async def start_all(self) -> None:
        """Start every channel under supervision plus the outbound dispatcher."""
        if not self.channels:
            logger.warning("No channels enabled")
            return
        if self._running:
            logger.warning("Channel manager already running")
            return

        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_outbound())

        for name, channel in self.channels.items():
            logger.info(f"Starting {name} channel...")
            self._channel_tasks[name] = asyncio.create_task(self._supervise(name, channel))

        await asyncio.gather(*self._channel_tasks.values(), return_exceptions=True)

    async def stop_all(self) -> None:
        """Stop channels, the dispatcher and any pending retries."""
        logger.info("Stopping all channels...")
        self._running = False

        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                logger.debug("Outbound dispatcher task cancelled")
            self._dispatch_task = None

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

        pending = list(self._channel_tasks.values()) + list(self._retry_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._channel_tasks.clear()
        self._retry_tasks.clear()
        self._restart_history.clear()

    async def _supervise(self, name: str, channel: BaseChannel) -> None:
        """Run one channel, restarting it whenever start() returns or raises."""
        policy = self.restart
        delay = policy.initial_delay_s
        history = self._restart_history.setdefault(name, [])

        while self._running:
            started_at = time.monotonic()
            reason = "stopped unexpectedly"
            try:
                await channel.start()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                reason = f"crashed: {exc}"
            finally:
                if self._running:
                    try:
                        await channel.stop()
                    except Exception as stop_exc:
                        logger.debug(f"{name} channel stop hook failed during restart: {stop_exc}")

            if not self._running:
                break

            uptime = time.monotonic() - started_at
            if uptime >= policy.stable_after_s:
                delay = policy.initial_delay_s

            now = time.monotonic()
            history[:] = [stamp for stamp in history if stamp >= now - policy.burst_window_s]
            history.append(now)

            if len(history) > policy.burst_max_restarts:
                logger.error(
                    f"{name} channel restart burst ({len(history)} restarts in "
                    f"{policy.burst_window_s:.0f}s); cooling down {policy.burst_cooldown_s:.1f}s"
                )
                await asyncio.sleep(policy.burst_cooldown_s)
                delay = policy.initial_delay_s
                continue

            logger.warning(f"{name} channel {reason} after {uptime:.1f}s; restarting in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, policy.max_delay_s)

    async def _dispatch_outbound(self) -> None:
        """Deliver outbound bus messages to their channel."""
        logger.info("Outbound dispatcher started")

        while True:
            try:
                msg = await asyncio.wait_for(self.bus.consume_outbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            if self._already_delivered(msg):
                continue

            channel = self.channels.get(msg.channel)
            if channel is None:
                logger.warning(f"Unknown channel: {msg.channel}")
                continue

            try:
                await channel.send(msg)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error sending to {msg.channel}: {e}")
                self._schedule_retry(msg, str(e))
                continue

            key = self._idempotency_key(msg)
            if key:
                self._delivered[key] = time.time()

    @staticmethod
    def _idempotency_key(msg: OutboundMessage) -> str:
        metadata = msg.metadata if isinstance(msg.metadata, dict) else {}
        return str(metadata.get("idempotency_key", "")).strip()

    def _already_delivered(self, msg: OutboundMessage) -> bool:
        key = self._idempotency_key(msg)
        if not key:
            return False

        threshold = time.time() - self.retry.idempotency_ttl_s
        for stale in [k for k, at in self._delivered.items() if at < threshold]:
            self._delivered.pop(stale, None)

        if key in self._delivered:
            logger.warning(f"Skipping duplicate outbound message (key={key})")
            return True
        return False

    def _schedule_retry(self, msg: OutboundMessage, reason: str) -> None:
        """Requeue a failed outbound message with capped exponential backoff."""
        metadata = dict(msg.metadata if isinstance(msg.metadata, dict) else {})
        try:
            attempt = max(0, int(metadata.get("_dispatch_attempt", 0)))
        except (TypeError, ValueError):
            attempt = 0

        if attempt >= self.retry.max_attempts:
            logger.error(
                f"Dropping outbound message after retries: channel={msg.channel}, "
                f"chat_id={msg.chat_id}, reason={reason}"
            )
            return

        delay = min(self.retry.base_delay_s * (2**attempt), self.retry.max_delay_s)
        metadata["_dispatch_attempt"] = attempt + 1
        retry_msg = OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=msg.content,
            reply_to=msg.reply_to,
            media=list(msg.media),
            metadata=metadata,
        )

        async def _requeue() -> None:
            try:
                await asyncio.sleep(delay)
                await self.bus.publish_outbound(retry_msg)
            except asyncio.CancelledError:
                return

        task = asyncio.create_task(_requeue())
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)
        logger.warning(
            f"Retrying outbound message: channel={msg.channel}, chat_id={msg.chat_id}, "
            f"attempt={attempt + 1}, delay={delay:.1f}s, reason={reason}"
        )

    def get_channel(self, name: str) -> BaseChannel | None:
        """Get a channel by name."""
        return self.channels.get(name)

    def get_status(self) -> dict[str, Any]:
        """Running state of every channel."""
        return {
            name: {"enabled": True, "running": channel.is_running}
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
