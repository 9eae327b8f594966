"""Inbound routing: commands, dedup, pause admission and debouncing."""

import asyncio

from loguru import logger

from wabot.agent.generator import ReplyGenerator
from wabot.bus.events import InboundMessage
from wabot.bus.queue import MessageBus
from wabot.channels.base import BaseChannel
from wabot.config.schema import ConversationConfig
from wabot.conversation.batcher import BatchScheduler, PendingBatch
from wabot.conversation.commands import CommandInterpreter
from wabot.conversation.contacts import ContactBook, contact_key
from wabot.conversation.dedup import DedupCache
from wabot.conversation.orders import OrderLogger
from wabot.conversation.pause import PauseRegistry
from wabot.conversation.sender import SafeSender
from wabot.conversation.turn import TurnOutcome, TurnProcessor
from wabot.conversation.welcome import DailyWelcomeTracker
from wabot.observability.metrics import MetricsStore
from wabot.storage.conversations import ConversationStore
from wabot.storage.orders import OrderStore


class ConversationOrchestrator:
    """
    Consumes inbound events from the bus and drives the conversation pipeline.

    Operator messages go to the command interpreter; customer messages pass
    the dedup cache and the pause registry before being debounced into turns.
    """

    def __init__(
        self,
        bus: MessageBus,
        channel: BaseChannel,
        generator: ReplyGenerator,
        conversations: ConversationStore,
        orders: OrderStore,
        settings: ConversationConfig | None = None,
        operator_number: str = "",
        metrics: MetricsStore | None = None,
        pauses: PauseRegistry | None = None,
        dedup: DedupCache | None = None,
        welcome: DailyWelcomeTracker | None = None,
        order_logger: OrderLogger | None = None,
    ):
        self.bus = bus
        self.settings = settings or ConversationConfig()
        self.pauses = pauses or PauseRegistry(ttl_s=self.settings.pause_ttl_s)
        self.dedup = dedup or DedupCache(
            ttl_s=self.settings.dedup_ttl_s,
            capacity=self.settings.dedup_capacity,
        )
        self.contacts = ContactBook()
        self.sender = SafeSender(channel, self.pauses, self.contacts, metrics=metrics)
        self.turns = TurnProcessor(
            settings=self.settings,
            pauses=self.pauses,
            sender=self.sender,
            generator=generator,
            conversations=conversations,
            orders=order_logger or OrderLogger(orders, metrics=metrics),
            contacts=self.contacts,
            welcome=welcome,
            channel=channel,
            metrics=metrics,
        )
        self.scheduler = BatchScheduler(
            self.pauses,
            self._run_turn,
            quiet_window_s=self.settings.quiet_window_s,
        )
        self.commands = CommandInterpreter(
            self.pauses,
            self.scheduler,
            self.contacts,
            bus=bus,
            operator_number=operator_number,
            send_ack=self.settings.command_ack,
        )
        self._running = False

    async def _run_turn(self, batch: PendingBatch) -> TurnOutcome:
        return await self.turns.process(batch)

    async def run(self) -> None:
        """Process inbound messages until stopped."""
        self._running = True
        logger.info("Conversation orchestrator started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                await self.handle(msg)
            except Exception as e:
                logger.error(f"Error handling inbound message from {msg.chat_id}: {e}")

    async def handle(self, msg: InboundMessage) -> bool:
        """Route one inbound event; returns True when it was buffered for a turn."""
        self.pauses.sweep()

        if msg.from_me:
            await self.commands.interpret(msg)
            return False

        key = contact_key(msg.chat_id)
        if not key:
            return False

        message_id = msg.message_id
        if message_id and not self.dedup.admit(message_id):
            logger.debug(f"Duplicate message {message_id} from {key} ignored")
            return False

        self.contacts.remember(key, msg.chat_id)

        if self.pauses.is_paused(key):
            logger.debug(f"Contact {key} is paused; message ignored")
            return False

        text = (msg.content or "").strip()
        if not text:
            return False
        return self.scheduler.enqueue(key, text)

    def stop(self) -> None:
        self._running = False
        logger.info("Conversation orchestrator stopping")

    async def shutdown(self) -> None:
        """Stop the loop, cancel pending windows and wait for running turns."""
        self.stop()
        await self.scheduler.close()
