"""Turn processing: one debounced batch in, paced replies out."""

import asyncio
import time
from enum import Enum

from loguru import logger

from wabot.agent.context import render_history
from wabot.agent.generator import MediaItem, ReplyGenerator
from wabot.channels.base import BaseChannel
from wabot.config.schema import ConversationConfig
from wabot.conversation.batcher import PendingBatch
from wabot.conversation.contacts import ContactBook
from wabot.conversation.orders import OrderLogger
from wabot.conversation.pause import PauseRegistry
from wabot.conversation.sender import SafeSender
from wabot.conversation.welcome import DailyWelcomeTracker
from wabot.observability.metrics import MetricsStore
from wabot.storage.conversations import ConversationStore


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    FALLBACK = "fallback"
    ABORTED = "aborted"
    EMPTY = "empty"
    UNDELIVERED = "undelivered"


class _TurnAborted(Exception):
    """Raised inside a turn once its contact is paused or its epoch is stale."""


class TurnProcessor:
    """
    Runs one conversational turn for a batch.

    The batch's contact is re-checked before every send; once it is paused
    or its epoch has moved on, the turn stops without sending, storing or
    logging anything further.
    """

    def __init__(
        self,
        settings: ConversationConfig,
        pauses: PauseRegistry,
        sender: SafeSender,
        generator: ReplyGenerator,
        conversations: ConversationStore,
        orders: OrderLogger,
        contacts: ContactBook,
        welcome: DailyWelcomeTracker | None = None,
        channel: BaseChannel | None = None,
        metrics: MetricsStore | None = None,
    ):
        self.settings = settings
        self.pauses = pauses
        self.sender = sender
        self.generator = generator
        self.conversations = conversations
        self.orders = orders
        self.contacts = contacts
        self.welcome = welcome or DailyWelcomeTracker()
        self.channel = channel
        self.metrics = metrics

    def _is_stale(self, batch: PendingBatch) -> bool:
        return self.pauses.is_paused(batch.key) or batch.captured_epoch != self.pauses.current_epoch(batch.key)

    async def process(self, batch: PendingBatch) -> TurnOutcome:
        started = time.monotonic()
        outcome, media_count = await self._process(batch)
        if self.metrics is not None:
            self.metrics.record_turn(
                contact=batch.key,
                outcome=outcome.value,
                latency_ms=(time.monotonic() - started) * 1000,
                media=media_count,
            )
        logger.info(f"Turn for {batch.key} finished: {outcome.value}")
        return outcome

    async def _process(self, batch: PendingBatch) -> tuple[TurnOutcome, int]:
        if self._is_stale(batch):
            logger.debug(f"Skipping turn for {batch.key}: paused or stale")
            return TurnOutcome.ABORTED, 0

        combined = batch.combined_text
        if not combined:
            return TurnOutcome.EMPTY, 0

        address = self.contacts.address_for(batch.key)
        await self._presence(address, "composing")
        try:
            return await self._run(batch, combined, address)
        except _TurnAborted:
            logger.info(f"Turn for {batch.key} aborted: contact paused or epoch changed")
            return TurnOutcome.ABORTED, 0
        finally:
            await self._presence(address, "paused")

    async def _run(self, batch: PendingBatch, combined: str, address: str) -> tuple[TurnOutcome, int]:
        key = batch.key
        settings = self.settings

        if settings.welcome_enabled and not self.welcome.welcomed_today(key):
            unit: str | MediaItem = settings.welcome_text
            if settings.welcome_media_url:
                unit = MediaItem(url=settings.welcome_media_url, caption=settings.welcome_text)
            if await self._deliver(batch, unit):
                self.welcome.mark(key)

        history_text = render_history(self.conversations.recent(key, settings.history_prompt_turns))
        try:
            payload = await asyncio.wait_for(
                self.generator.generate(combined, key, history_text),
                timeout=settings.generation_timeout_s,
            )
        except Exception as e:
            logger.warning(f"Reply generation failed for {key}: {type(e).__name__}: {e}")
            await self._deliver(batch, settings.fallback_text)
            return TurnOutcome.FALLBACK, 0

        for item in payload.media:
            await self._deliver(batch, item)
        if not await self._deliver(batch, payload.text):
            logger.warning(f"Reply text for {key} was not delivered; turn not stored")
            return TurnOutcome.UNDELIVERED, len(payload.media)

        self.conversations.append_turn(
            key,
            combined,
            payload.text,
            ai_media=[{"url": m.url, "caption": m.caption} for m in payload.media] or None,
            ai_order=payload.order,
        )
        if payload.order:
            self.orders.record(key, payload.order, combined, ai_text=payload.text, chat_address=address)
        return TurnOutcome.COMPLETED, len(payload.media)

    async def _deliver(self, batch: PendingBatch, content: str | MediaItem) -> bool:
        if self.settings.pacing_delay_s > 0:
            await asyncio.sleep(self.settings.pacing_delay_s)
        if self._is_stale(batch):
            raise _TurnAborted()
        return await self.sender.send(batch.key, content)

    async def _presence(self, address: str, state: str) -> None:
        if self.channel is None or not self.settings.presence_enabled:
            return
        try:
            await self.channel.send_presence(address, state)
        except Exception as e:
            logger.debug(f"Presence {state} failed for {address}: {e}")
