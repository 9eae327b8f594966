"""Operator pause/resume commands typed from the bot's own account."""

import re
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from wabot.bus.events import InboundMessage, OutboundMessage
from wabot.bus.queue import MessageBus
from wabot.conversation.batcher import BatchScheduler
from wabot.conversation.contacts import ContactBook, contact_key, normalize_text
from wabot.conversation.pause import PauseRegistry

_COMMAND_RE = re.compile(r"^/?\s*bot(?:-|\s*)(pause|play|resume)\b(.*)$")
_MIN_TARGET_DIGITS = 6


class Directive(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"


@dataclass
class CommandResult:
    directive: Directive
    target: str
    chat_id: str
    was_paused: bool = False
    discarded_batch: bool = False
    ack_text: str = ""


def parse_command(text: str) -> tuple[Directive, str] | None:
    """Match `[/]bot[-| ]pause|play|resume [target]` on normalized text."""
    match = _COMMAND_RE.match(normalize_text(text))
    if not match:
        return None
    verb, rest = match.group(1), match.group(2)
    directive = Directive.PAUSE if verb == "pause" else Directive.RESUME
    return directive, rest.strip()


class CommandInterpreter:
    """
    Applies operator commands to the pause registry.

    Target selection: explicit digits after the command, else the chat the
    operator typed in (unless it is the operator's own number, taken from
    `operator_number` or, when unset, from the command's sender), else the
    contact that wrote most recently.
    """

    def __init__(
        self,
        pauses: PauseRegistry,
        scheduler: BatchScheduler,
        contacts: ContactBook,
        bus: MessageBus | None = None,
        operator_number: str = "",
        send_ack: bool = True,
    ):
        self.pauses = pauses
        self.scheduler = scheduler
        self.contacts = contacts
        self.bus = bus
        self.operator_key = re.sub(r"\D+", "", operator_number or "")
        self.send_ack = send_ack

    def own_keys(self, sender_id: str) -> set[str]:
        """Keys that identify the operator: the configured number, else the sender of the command."""
        if self.operator_key:
            return {self.operator_key}
        sender_key = contact_key(sender_id)
        return {sender_key} if sender_key else set()

    def resolve_target(self, remainder: str, chat_id: str, sender_id: str = "") -> str:
        digits = re.sub(r"\D+", "", remainder)
        if len(digits) >= _MIN_TARGET_DIGITS:
            return digits
        chat_key = contact_key(chat_id)
        if chat_key and chat_key not in self.own_keys(sender_id):
            return chat_key
        return self.contacts.last_contact

    async def interpret(self, msg: InboundMessage) -> CommandResult | None:
        if not msg.from_me:
            return None
        parsed = parse_command(msg.content)
        if parsed is None:
            return None

        directive, remainder = parsed
        target = self.resolve_target(remainder, msg.chat_id, msg.sender_id)
        if not target:
            logger.warning(f"Operator command '{directive.value}' has no target contact; ignored")
            return None

        result = CommandResult(directive=directive, target=target, chat_id=msg.chat_id)
        if directive is Directive.PAUSE:
            self.pauses.pause(target)
            result.discarded_batch = self.scheduler.discard(target)
            result.was_paused = True
        else:
            result.was_paused = self.pauses.resume(target)

        result.ack_text = self._ack_text(result)
        logger.info(f"Operator {directive.value} for {target} (from chat {msg.chat_id})")
        await self._acknowledge(msg, result)
        return result

    def _ack_text(self, result: CommandResult) -> str:
        here = contact_key(result.chat_id) == result.target
        where = "en este chat" if here else f"para {result.target}"
        if result.directive is Directive.PAUSE:
            hours = self.pauses.ttl_s / 3600
            resume_cmd = "bot-play" if here else f"bot-play {result.target}"
            return (
                f"🛑 Bot pausado {where} por {hours:g} horas. "
                f"Mandá \"{resume_cmd}\" en este chat para reanudar antes."
            )
        if result.was_paused:
            return f"▶️ Bot reanudado {where}."
        return f"▶️ El bot ya estaba activo {where}."

    async def _acknowledge(self, msg: InboundMessage, result: CommandResult) -> None:
        if not self.send_ack or self.bus is None or not result.ack_text:
            return
        metadata = {}
        if msg.message_id:
            metadata["idempotency_key"] = f"cmd:{msg.message_id}"
        await self.bus.publish_outbound(
            OutboundMessage(
                channel=msg.channel,
                chat_id=msg.chat_id,
                content=result.ack_text,
                metadata=metadata,
            )
        )
